"""Greedy non-maximum suppression."""

from __future__ import annotations

import logging
from typing import List, Sequence

from .errors import InvalidInputError
from .geometry import Box, iou
from .types import Detection

logger = logging.getLogger(__name__)


def non_max_suppression(
    boxes: Sequence[Box],
    scores: Sequence[float],
    iou_threshold: float,
    metric: str = "union",
) -> List[int]:
    """Return indices of the boxes kept, highest score first.

    Ties in score keep their input order. A box is suppressed when its
    overlap with an already picked box is strictly above ``iou_threshold``.
    """
    if len(boxes) != len(scores):
        raise InvalidInputError(
            f"got {len(boxes)} boxes but {len(scores)} scores"
        )
    if not 0.0 < iou_threshold <= 1.0:
        raise InvalidInputError(f"iou_threshold must be in (0, 1], got {iou_threshold}")
    if not boxes:
        return []

    order = sorted(range(len(boxes)), key=lambda i: -float(scores[i]))
    suppressed = [False] * len(boxes)
    picked: List[int] = []

    for pos, i in enumerate(order):
        if suppressed[i]:
            continue
        picked.append(i)
        for j in order[pos + 1:]:
            if suppressed[j]:
                continue
            if iou(boxes[i], boxes[j], metric) > iou_threshold:
                suppressed[j] = True

    logger.debug("nms(%s, %.2f): %d -> %d boxes", metric, iou_threshold, len(boxes), len(picked))
    return picked


def nms_detections(
    detections: Sequence[Detection],
    iou_threshold: float,
    metric: str = "union",
) -> List[Detection]:
    keep = non_max_suppression(
        [d.box for d in detections],
        [d.score for d in detections],
        iou_threshold,
        metric,
    )
    return [detections[i] for i in keep]
