"""Face detector variants selected by their options type."""

from typing import Optional, Union

from ..errors import ConfigurationError
from ..options import DetectorOptions, MtcnnOptions, SsdOptions, TinyFaceDetectorOptions
from .mtcnn import MtcnnDetector, MtcnnStats
from .ssd import SsdDetector
from .tiny import TinyFaceDetector

Detector = Union[SsdDetector, TinyFaceDetector, MtcnnDetector]


def create_detector(options: Optional[DetectorOptions] = None) -> Detector:
    """Build the detector matching ``options``; SSD when none are given."""
    if options is None or isinstance(options, SsdOptions):
        return SsdDetector(options)
    if isinstance(options, TinyFaceDetectorOptions):
        return TinyFaceDetector(options)
    if isinstance(options, MtcnnOptions):
        return MtcnnDetector(options)
    raise ConfigurationError(f"unsupported detector options {type(options).__name__}")


__all__ = [
    "Detector",
    "MtcnnDetector",
    "MtcnnStats",
    "SsdDetector",
    "TinyFaceDetector",
    "create_detector",
]
