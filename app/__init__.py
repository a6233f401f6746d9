"""Application entry points for the facepipe project."""

from .cli import FaceAnalysisSystem, main

__all__ = ["FaceAnalysisSystem", "main"]
