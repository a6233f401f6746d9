"""Helpers shared by the single pass detectors."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np

from ..box_decoder import Candidate
from ..errors import BackendError
from ..geometry import Box, clip_box_to_image
from ..net_input import ImageFrame
from ..nms import non_max_suppression
from ..types import Detection

logger = logging.getLogger(__name__)


def require_outputs(outputs: Dict[str, np.ndarray], names: Sequence[str], batch_size: int) -> None:
    for name in names:
        if name not in outputs:
            raise BackendError(f"network output {name!r} missing")
        if outputs[name].shape[0] != batch_size:
            raise BackendError(
                f"output {name!r} has batch size {outputs[name].shape[0]}, expected {batch_size}"
            )


def to_original_box(box: Box, frame: ImageFrame) -> Box:
    x1, y1 = frame.to_original(box.x, box.y)
    x2, y2 = frame.to_original(box.x2, box.y2)
    return Box.from_corners(x1, y1, x2, y2)


def finalize_candidates(
    candidates: Sequence[Candidate],
    frame: ImageFrame,
    iou_threshold: float,
    max_results: Optional[int] = None,
) -> List[Detection]:
    """NMS in network space, then map to the image and drop degenerate boxes."""
    if not candidates:
        return []

    keep = non_max_suppression([c[0] for c in candidates], [c[1] for c in candidates], iou_threshold)
    if max_results is not None:
        keep = keep[:max_results]

    detections: List[Detection] = []
    for idx in keep:
        box, score = candidates[idx]
        clipped = clip_box_to_image(to_original_box(box, frame), frame.original_width, frame.original_height)
        if clipped.is_degenerate:
            logger.debug("dropping degenerate box %s (score %.3f)", clipped, score)
            continue
        detections.append(
            Detection(
                box=clipped,
                score=float(score),
                image_width=frame.original_width,
                image_height=frame.original_height,
            )
        )
    return detections
