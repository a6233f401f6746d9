"""Exception hierarchy shared by every pipeline stage."""

from __future__ import annotations


class FaceAnalysisError(Exception):
    """Base class for all errors raised by facepipe."""


class InvalidInputError(FaceAnalysisError, ValueError):
    """Empty batch, non-positive size, mismatched descriptor lengths."""


class ConfigurationError(FaceAnalysisError, ValueError):
    """Threshold out of range or unsupported option combination."""

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class BackendError(FaceAnalysisError, RuntimeError):
    """The inference backend failed to run a forward pass."""


class CancelledError(FaceAnalysisError):
    """A caller asked the cascade to stop before the next stage."""
