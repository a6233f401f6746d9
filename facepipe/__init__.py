#!/usr/bin/env python3
"""
Python Face Analysis Pipeline
Init file for the facepipe package

Created: 2025
"""

from .backends import InferenceBackend, NetworkContext, OnnxBackend, NcnnBackend, load_onnx_context
from .config_manager import ConfigManager
from .detectors import MtcnnDetector, SsdDetector, TinyFaceDetector, create_detector
from .errors import BackendError, CancelledError, ConfigurationError, FaceAnalysisError, InvalidInputError
from .face_database import FaceDatabase
from .face_features import FaceFeatureExtractor
from .geometry import Box, Point, iou
from .matcher import FaceMatcher, euclidean_distance, match_gallery
from .nms import non_max_suppression
from .options import AlignmentOptions, LandmarkOptions, MtcnnOptions, SsdOptions, TinyFaceDetectorOptions
from .pipeline import (
    FacePipeline,
    detect_all_faces,
    detect_single_face,
    resize_results,
    with_age_and_gender,
    with_descriptors,
    with_expressions,
    with_landmarks,
)
from .types import Detection, FaceMatch, FaceResult, LabeledDescriptor, LandmarkSet

__version__ = "1.0.0"
__author__ = "Face Recognition Python Team"

__all__ = [
    'AlignmentOptions',
    'BackendError',
    'Box',
    'CancelledError',
    'ConfigManager',
    'ConfigurationError',
    'Detection',
    'FaceAnalysisError',
    'FaceDatabase',
    'FaceFeatureExtractor',
    'FaceMatch',
    'FaceMatcher',
    'FacePipeline',
    'FaceResult',
    'InferenceBackend',
    'InvalidInputError',
    'LabeledDescriptor',
    'LandmarkOptions',
    'LandmarkSet',
    'MtcnnDetector',
    'MtcnnOptions',
    'NcnnBackend',
    'NetworkContext',
    'OnnxBackend',
    'Point',
    'SsdDetector',
    'SsdOptions',
    'TinyFaceDetector',
    'TinyFaceDetectorOptions',
    'create_detector',
    'detect_all_faces',
    'detect_single_face',
    'euclidean_distance',
    'iou',
    'load_onnx_context',
    'match_gallery',
    'non_max_suppression',
    'resize_results',
    'with_age_and_gender',
    'with_descriptors',
    'with_expressions',
    'with_landmarks',
]
