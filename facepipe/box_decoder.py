"""Turn raw detector head outputs into scored candidate boxes.

All boxes produced here live in network input pixel space; mapping back to
the original image is the caller's job (see ``ImageFrame.to_original``).
"""

from __future__ import annotations

import math
from typing import List, Sequence, Tuple

import numpy as np

from .errors import InvalidInputError
from .geometry import Box

Candidate = Tuple[Box, float]


def sigmoid(x: np.ndarray) -> np.ndarray:
    x = np.clip(np.asarray(x, dtype=np.float64), -60.0, 60.0)
    return 1.0 / (1.0 + np.exp(-x))


def generate_anchors(
    input_size: int,
    feature_maps: Sequence[Tuple[int, Sequence[float]]],
) -> np.ndarray:
    """Build (cx, cy, w, h) anchors for every cell of every feature map.

    ``feature_maps`` lists ``(stride, sizes)`` pairs. Anchors are ordered by
    feature map, then row, then column, then size.
    """
    anchors: List[np.ndarray] = []
    for stride, sizes in feature_maps:
        if stride <= 0:
            raise InvalidInputError(f"anchor stride must be positive, got {stride}")
        cells = int(math.ceil(input_size / float(stride)))
        centers = (np.arange(cells, dtype=np.float32) + 0.5) * stride
        cy, cx = np.meshgrid(centers, centers, indexing="ij")
        for_cell = []
        for size in sizes:
            size_col = np.full(cx.shape, float(size), dtype=np.float32)
            for_cell.append(np.stack([cx, cy, size_col, size_col], axis=-1))
        # (rows, cols, sizes, 4)
        anchors.append(np.stack(for_cell, axis=2).reshape(-1, 4))
    if not anchors:
        return np.zeros((0, 4), dtype=np.float32)
    return np.concatenate(anchors, axis=0)


def decode_anchor_boxes(
    scores: np.ndarray,
    regressions: np.ndarray,
    anchors: np.ndarray,
    min_confidence: float,
    scale_factors: Sequence[float] = (10.0, 10.0, 5.0, 5.0),
) -> List[Candidate]:
    """Decode SSD style (dx, dy, dw, dh) offsets against ``anchors``.

    Anchors scoring below ``min_confidence`` are dropped before decoding;
    a score equal to the threshold is kept.
    """
    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    regressions = np.asarray(regressions, dtype=np.float64).reshape(-1, 4)
    anchors = np.asarray(anchors, dtype=np.float64).reshape(-1, 4)
    if not (len(scores) == len(regressions) == len(anchors)):
        raise InvalidInputError(
            f"anchor count mismatch: {len(scores)} scores, {len(regressions)} regressions, "
            f"{len(anchors)} anchors"
        )

    keep = np.flatnonzero(scores >= min_confidence)
    if keep.size == 0:
        return []

    fx, fy, fw, fh = (float(f) for f in scale_factors)
    reg = regressions[keep]
    anc = anchors[keep]
    cx = anc[:, 0] + reg[:, 0] / fx * anc[:, 2]
    cy = anc[:, 1] + reg[:, 1] / fy * anc[:, 3]
    w = anc[:, 2] * np.exp(reg[:, 2] / fw)
    h = anc[:, 3] * np.exp(reg[:, 3] / fh)

    return [
        (Box(float(cx[i] - w[i] / 2), float(cy[i] - h[i] / 2), float(w[i]), float(h[i])), float(scores[k]))
        for i, k in enumerate(keep)
    ]


def decode_grid_boxes(
    grid: np.ndarray,
    anchors: Sequence[Tuple[float, float]],
    stride: float,
    min_confidence: float,
) -> List[Candidate]:
    """Decode a YOLO style (rows, cols, anchors, 5) output grid.

    Each cell predicts (tx, ty, tw, th, confidence logit) per anchor, with
    anchor sizes given in cell units.
    """
    grid = np.asarray(grid, dtype=np.float64)
    if grid.ndim != 4 or grid.shape[-1] < 5:
        raise InvalidInputError(f"expected a (rows, cols, anchors, 5) grid, got {grid.shape}")
    if grid.shape[2] != len(anchors):
        raise InvalidInputError(
            f"grid has {grid.shape[2]} boxes per cell but {len(anchors)} anchors were given"
        )

    scores = sigmoid(grid[..., 4])
    rows, cols, idx = np.nonzero(scores >= min_confidence)
    candidates: List[Candidate] = []
    for row, col, a in zip(rows, cols, idx):
        tx, ty, tw, th = grid[row, col, a, :4]
        anchor_w, anchor_h = anchors[a]
        cx = (col + float(sigmoid(tx))) * stride
        cy = (row + float(sigmoid(ty))) * stride
        w = math.exp(tw) * anchor_w * stride
        h = math.exp(th) * anchor_h * stride
        candidates.append((Box(cx - w / 2, cy - h / 2, w, h), float(scores[row, col, a])))
    return candidates
