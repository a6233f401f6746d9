"""Nearest-neighbour identity matching on face descriptors."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .errors import InvalidInputError
from .types import UNKNOWN_LABEL, FaceMatch, FaceResult, LabeledDescriptor

logger = logging.getLogger(__name__)

DEFAULT_DISTANCE_THRESHOLD = 0.6


def euclidean_distance(d1: Sequence[float], d2: Sequence[float]) -> float:
    a = np.asarray(d1, dtype=np.float64).reshape(-1)
    b = np.asarray(d2, dtype=np.float64).reshape(-1)
    if a.size != b.size:
        raise InvalidInputError(f"descriptor length mismatch: {a.size} vs {b.size}")
    return float(np.linalg.norm(a - b))


def match_gallery(
    query: Sequence[float],
    gallery: Sequence[LabeledDescriptor],
    threshold: float = DEFAULT_DISTANCE_THRESHOLD,
) -> FaceMatch:
    """Best gallery entry for ``query``.

    Each entry scores by the smallest distance over its descriptors. Equal
    distances resolve to the entry that comes first in ``gallery``. When the
    best distance is above ``threshold`` the label is ``"unknown"`` and the
    distance is still reported.
    """
    if not gallery:
        return FaceMatch(UNKNOWN_LABEL, float("inf"))

    best_label: Optional[str] = None
    best_distance = float("inf")
    for entry in gallery:
        distance = min(euclidean_distance(query, d) for d in entry.descriptors)
        if distance < best_distance:
            best_label, best_distance = entry.label, distance

    if best_distance > threshold:
        return FaceMatch(UNKNOWN_LABEL, best_distance)
    return FaceMatch(best_label, best_distance)


class FaceMatcher:
    """A fixed gallery plus the distance threshold used against it."""

    def __init__(self, gallery: Iterable[LabeledDescriptor], threshold: float = DEFAULT_DISTANCE_THRESHOLD) -> None:
        self.gallery: Tuple[LabeledDescriptor, ...] = tuple(gallery)
        if not self.gallery:
            raise InvalidInputError("FaceMatcher needs at least one labeled descriptor")
        if threshold < 0:
            raise InvalidInputError(f"distance threshold must be non-negative, got {threshold}")
        self.threshold = float(threshold)

    @classmethod
    def from_results(
        cls,
        results: Sequence[FaceResult],
        labels: Optional[Sequence[str]] = None,
        threshold: float = DEFAULT_DISTANCE_THRESHOLD,
    ) -> "FaceMatcher":
        """One gallery entry per described face, labelled ``person 1..n`` unless given."""
        described = [r for r in results if r.descriptor is not None]
        if labels is not None and len(labels) != len(described):
            raise InvalidInputError(f"got {len(labels)} labels for {len(described)} descriptors")
        gallery: List[LabeledDescriptor] = []
        for i, result in enumerate(described):
            label = labels[i] if labels is not None else f"person {i + 1}"
            gallery.append(LabeledDescriptor.create(label, [result.descriptor]))
        return cls(gallery, threshold)

    def find_best_match(self, query: Sequence[float]) -> FaceMatch:
        match = match_gallery(query, self.gallery, self.threshold)
        logger.debug("best match %s at %.4f", match.label, match.distance)
        return match

    def match_results(self, results: Sequence[FaceResult]) -> List[Optional[FaceMatch]]:
        return [self.find_best_match(r.descriptor) if r.descriptor is not None else None for r in results]
