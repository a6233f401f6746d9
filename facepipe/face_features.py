#!/usr/bin/env python3
"""
Face Descriptor Extraction - recognition network front end
Crops aligned faces, normalises them and reads one descriptor per face

Created: 2025
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np

from .alignment import extract_faces
from .backends import NetworkContext, forward_scope
from .detectors.common import require_outputs
from .errors import InvalidInputError
from .geometry import Box
from .net_input import to_net_input
from .options import AlignmentOptions
from .types import as_descriptor

logger = logging.getLogger(__name__)

FEATURE_NORMS = (None, "l2", "zscore")


class FaceFeatureExtractor:
    """Descriptor extractor driving the ``recognition`` network role.

    ``feature_norm`` optionally post-processes each descriptor: ``"l2"``
    scales it to unit length, ``"zscore"`` to zero mean and unit variance.
    Distances in the matcher assume the raw network output by default.
    """

    network_role = "recognition"

    def __init__(self, options: Optional[AlignmentOptions] = None, feature_norm: Optional[str] = None) -> None:
        if feature_norm not in FEATURE_NORMS:
            raise InvalidInputError(f"unknown feature norm {feature_norm!r}")
        self.options = options or AlignmentOptions()
        self.feature_norm = feature_norm

    def preprocess(self, batch: np.ndarray) -> np.ndarray:
        mean = np.asarray(self.options.mean, dtype=np.float32)
        return (batch - mean) * self.options.scale

    def compute_descriptors(self, context: NetworkContext, faces: Sequence[np.ndarray]) -> List[np.ndarray]:
        """One descriptor per already cropped face image."""
        if len(faces) == 0:
            return []
        net_input = to_net_input(list(faces), self.options.recognition_size, center=True)
        network = context.get(self.network_role)
        with forward_scope(context.backend, network, self.preprocess(net_input.batch)) as outputs:
            require_outputs(outputs, ("descriptor",), net_input.batch_size)
            raw = outputs["descriptor"].reshape(net_input.batch_size, -1)
        return [as_descriptor(self._normalize(row)) for row in raw]

    def extract(self, context: NetworkContext, image: np.ndarray, boxes: Sequence[Box]) -> List[np.ndarray]:
        """Crop ``boxes`` out of ``image`` and compute their descriptors."""
        if len(boxes) == 0:
            return []
        return self.compute_descriptors(context, extract_faces(image, boxes))

    def _normalize(self, feature: np.ndarray) -> np.ndarray:
        if self.feature_norm == "l2":
            norm = np.linalg.norm(feature)
            return feature if norm == 0 else feature / norm
        if self.feature_norm == "zscore":
            std = np.std(feature)
            if std < 1e-8:
                return feature - np.mean(feature)
            return (feature - np.mean(feature)) / std
        return feature
