"""Alignment boxes and face crops for the recognition network."""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .errors import InvalidInputError
from .geometry import Box, Point, clip_box_to_image, mean_point, min_bbox, pad_to_square
from .types import Detection, LandmarkSet

logger = logging.getLogger(__name__)

# 68 point layout
LEFT_EYE = slice(36, 42)
RIGHT_EYE = slice(42, 48)
MOUTH = slice(48, 68)


def reference_points(landmarks: LandmarkSet) -> Tuple[Point, Point, Point]:
    """Left eye centre, right eye centre and mouth centre."""
    pts = landmarks.positions
    if len(pts) == 68:
        return (mean_point(pts[LEFT_EYE]), mean_point(pts[RIGHT_EYE]), mean_point(pts[MOUTH]))
    if len(pts) == 5:
        return (pts[0], pts[1], mean_point(pts[3:5]))
    raise InvalidInputError(f"no alignment reference for {len(pts)} landmarks")


def _dlib_box(landmarks: LandmarkSet, refs: Tuple[Point, Point, Point]) -> Box:
    left_eye, right_eye, mouth = refs
    eye_to_mouth = ((mouth - left_eye).magnitude() + (mouth - right_eye).magnitude()) / 2
    size = math.floor(eye_to_mouth / 0.45)
    ref = mean_point(refs)
    x = math.floor(max(0.0, ref.x - 0.5 * size))
    y = math.floor(max(0.0, ref.y - 0.43 * size))
    return Box(x, y, max(min(size, landmarks.image_width - x), 0), max(min(size, landmarks.image_height - y), 0))


def alignment_box(
    detection: Optional[Detection],
    landmarks: LandmarkSet,
    margin: float = 1.0,
    method: str = "min_bbox",
) -> Box:
    """Square crop around the eyes and mouth, clipped to the image.

    ``margin`` is the fraction of the reference box size added in total
    along each axis before squaring.
    """
    refs = reference_points(landmarks)
    width = detection.image_width if detection is not None else landmarks.image_width
    height = detection.image_height if detection is not None else landmarks.image_height

    if method == "dlib":
        box = _dlib_box(landmarks, refs)
    elif method == "min_bbox":
        box = min_bbox(refs)
        box = box.pad(box.width * margin, box.height * margin)
    else:
        raise InvalidInputError(f"unknown alignment method {method!r}")

    aligned = clip_box_to_image(pad_to_square(box), width, height)
    if aligned.is_degenerate:
        logger.debug("alignment box %s degenerate after clipping", aligned)
    return aligned


def extract_faces(
    image: np.ndarray,
    boxes: Sequence[Box],
    size: Optional[int] = None,
) -> List[np.ndarray]:
    """Crop ``boxes`` out of ``image``; pixels outside the image are zero.

    With ``size`` every crop is resized to ``size x size``.
    """
    img_h, img_w = image.shape[:2]
    crops: List[np.ndarray] = []
    for box in boxes:
        x1, y1 = int(round(box.x)), int(round(box.y))
        x2, y2 = int(round(box.x2)), int(round(box.y2))
        w, h = max(x2 - x1, 1), max(y2 - y1, 1)
        x2, y2 = x1 + w, y1 + h

        crop = np.zeros((h, w) + image.shape[2:], dtype=image.dtype)
        sx1, sy1 = max(x1, 0), max(y1, 0)
        sx2, sy2 = min(x2, img_w), min(y2, img_h)
        if sx2 > sx1 and sy2 > sy1:
            crop[sy1 - y1:sy2 - y1, sx1 - x1:sx2 - x1] = image[sy1:sy2, sx1:sx2]

        if size is not None:
            crop = cv2.resize(crop, (int(size), int(size)), interpolation=cv2.INTER_LINEAR)
            if crop.ndim == 2 and image.ndim == 3:
                crop = crop[:, :, np.newaxis]
        crops.append(crop)
    return crops
