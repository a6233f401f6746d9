#!/usr/bin/env python3
"""
MTCNN Cascade - proposal, refine and output networks
Image pyramid, per stage thresholding, NMS and box regression

Created: 2025
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from ..alignment import extract_faces
from ..backends import NetworkContext, forward_scope
from ..errors import CancelledError, InvalidInputError
from ..geometry import Box, Point, clip_box_to_image, pad_to_square
from ..landmarks import CoordinateFrame, remap_points
from ..net_input import ImageLike, load_batch
from ..nms import non_max_suppression
from ..options import MtcnnOptions
from ..types import Detection, LandmarkSet
from .common import require_outputs

logger = logging.getLogger(__name__)

CELL_STRIDE = 2


def normalize(pixels: np.ndarray) -> np.ndarray:
    return (pixels.astype(np.float32) - 127.5) * 0.0078125


@dataclass
class MtcnnStats:
    """Candidate counts and wall time per stage for the last image."""

    scales: List[float] = field(default_factory=list)
    counts: Dict[str, int] = field(default_factory=dict)
    durations: Dict[str, float] = field(default_factory=dict)

    @property
    def total_time(self) -> float:
        return sum(self.durations.values())


@dataclass
class _Candidates:
    boxes: List[Box]
    scores: List[float]
    landmarks: List[Tuple[Point, ...]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.boxes)


class MtcnnDetector:
    """Three stage cascade detector producing boxes and 5 landmarks.

    ``should_stop`` is polled between stages; when it returns true the
    detection is abandoned with ``CancelledError``.
    """

    roles = ("pnet", "rnet", "onet")

    def __init__(
        self,
        options: Optional[MtcnnOptions] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> None:
        self.options = options or MtcnnOptions()
        self.should_stop = should_stop
        self.last_stats: List[MtcnnStats] = []

    def pyramid_scales(self, width: int, height: int) -> List[float]:
        opts = self.options
        if opts.scale_steps is not None:
            return [float(s) for s in opts.scale_steps]

        cell_size = opts.proposal_size
        m = cell_size / float(opts.min_face_size)
        min_layer = min(width, height) * m
        scales: List[float] = []
        factor_count = 0
        while min_layer >= cell_size and len(scales) < opts.max_num_scales:
            scales.append(m * opts.scale_factor ** factor_count)
            min_layer *= opts.scale_factor
            factor_count += 1
        return scales

    def detect(self, context: NetworkContext, images: Sequence[ImageLike]) -> List[List[Detection]]:
        return [[det for det, _ in faces] for faces in self.detect_with_landmarks(context, images)]

    def detect_with_landmarks(
        self,
        context: NetworkContext,
        images: Sequence[ImageLike],
    ) -> List[List[Tuple[Detection, LandmarkSet]]]:
        batch = load_batch(images)
        if not batch:
            raise InvalidInputError("cannot run detection on an empty batch")

        self.last_stats = []
        results = []
        for image in batch:
            stats = MtcnnStats()
            self.last_stats.append(stats)
            results.append(self._detect_image(context, image, stats))
        return results

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _detect_image(
        self,
        context: NetworkContext,
        image: np.ndarray,
        stats: MtcnnStats,
    ) -> List[Tuple[Detection, LandmarkSet]]:
        height, width = image.shape[:2]

        started = time.perf_counter()
        stats.scales = self.pyramid_scales(width, height)
        proposals = self._stage_proposal(context, image, stats.scales)
        self._record(stats, "proposal", proposals, started)

        self._check_cancelled("refine")
        started = time.perf_counter()
        refined = self._stage_refine(context, image, proposals)
        self._record(stats, "refine", refined, started)

        self._check_cancelled("output")
        started = time.perf_counter()
        final = self._stage_output(context, image, refined)
        self._record(stats, "output", final, started)

        faces = []
        for box, score, points in zip(final.boxes, final.scores, final.landmarks):
            detection = Detection(box=box, score=score, image_width=width, image_height=height)
            landmarks = LandmarkSet(positions=points, image_width=width, image_height=height)
            faces.append((detection, landmarks))
        return faces

    def _stage_proposal(self, context: NetworkContext, image: np.ndarray, scales: Sequence[float]) -> _Candidates:
        opts = self.options
        cell_size = opts.proposal_size
        height, width = image.shape[:2]
        pooled = _Candidates([], [])
        pooled_regions: List[np.ndarray] = []

        for scale in scales:
            scaled_w = int(math.ceil(width * scale))
            scaled_h = int(math.ceil(height * scale))
            if min(scaled_w, scaled_h) < cell_size:
                continue
            resized = cv2.resize(image, (scaled_w, scaled_h), interpolation=cv2.INTER_AREA)
            batch = normalize(resized)[np.newaxis]

            with forward_scope(context.backend, context.get("pnet"), batch) as outputs:
                require_outputs(outputs, ("prob", "regions"), 1)
                prob = outputs["prob"].reshape(outputs["prob"].shape[1:3])
                regions = outputs["regions"].reshape(prob.shape + (4,))

            rows, cols = np.nonzero(prob >= opts.score_thresholds[0])
            if len(rows) == 0:
                continue

            boxes = []
            for row, col in zip(rows, cols):
                cell = Box.from_corners(
                    (col * CELL_STRIDE + 1) / scale,
                    (row * CELL_STRIDE + 1) / scale,
                    (col * CELL_STRIDE + cell_size) / scale,
                    (row * CELL_STRIDE + cell_size) / scale,
                ).round()
                boxes.append(cell)
            scores = [float(prob[r, c]) for r, c in zip(rows, cols)]
            keep = non_max_suppression(boxes, scores, opts.proposal_scale_iou, "union")
            for idx in keep:
                r, c = rows[idx], cols[idx]
                pooled.boxes.append(boxes[idx])
                pooled.scores.append(scores[idx])
                pooled_regions.append(regions[r, c])

        if not pooled:
            return pooled

        keep = non_max_suppression(pooled.boxes, pooled.scores, opts.proposal_iou, "union")
        boxes = [pooled.boxes[i].regress(*[float(v) for v in pooled_regions[i]]) for i in keep]
        return self._squared(boxes, [pooled.scores[i] for i in keep], width, height)

    def _stage_refine(self, context: NetworkContext, image: np.ndarray, proposals: _Candidates) -> _Candidates:
        if not proposals:
            return _Candidates([], [])
        opts = self.options
        height, width = image.shape[:2]

        crops = extract_faces(image, proposals.boxes, opts.refine_size)
        with forward_scope(context.backend, context.get("rnet"), normalize(np.stack(crops))) as outputs:
            require_outputs(outputs, ("prob", "regions"), len(proposals))
            prob = outputs["prob"].reshape(-1)
            regions = outputs["regions"].reshape(-1, 4)

        selected = [i for i in range(len(proposals)) if prob[i] >= opts.score_thresholds[1]]
        if not selected:
            return _Candidates([], [])

        keep = non_max_suppression(
            [proposals.boxes[i] for i in selected],
            [float(prob[i]) for i in selected],
            opts.refine_iou,
            opts.refine_metric,
        )
        picked = [selected[k] for k in keep]
        boxes = [proposals.boxes[i].regress(*[float(v) for v in regions[i]]) for i in picked]
        return self._squared(boxes, [float(prob[i]) for i in picked], width, height)

    def _stage_output(self, context: NetworkContext, image: np.ndarray, refined: _Candidates) -> _Candidates:
        if not refined:
            return _Candidates([], [])
        opts = self.options
        height, width = image.shape[:2]

        crops = extract_faces(image, refined.boxes, opts.output_size)
        with forward_scope(context.backend, context.get("onet"), normalize(np.stack(crops))) as outputs:
            require_outputs(outputs, ("prob", "regions", "points"), len(refined))
            prob = outputs["prob"].reshape(-1)
            regions = outputs["regions"].reshape(-1, 4)
            points = outputs["points"].reshape(-1, 10)

        selected = [i for i in range(len(refined)) if prob[i] >= opts.score_thresholds[2]]
        if not selected:
            return _Candidates([], [])

        boxes = [refined.boxes[i].regress(*[float(v) for v in regions[i]]) for i in selected]
        keep = non_max_suppression(boxes, [float(prob[i]) for i in selected], opts.output_iou, opts.output_metric)

        result = _Candidates([], [])
        for k in keep:
            i = selected[k]
            box = clip_box_to_image(boxes[k], width, height)
            if box.is_degenerate:
                logger.debug("dropping degenerate output box %s", box)
                continue
            result.boxes.append(box)
            result.scores.append(float(prob[i]))
            result.landmarks.append(self._remap_points(points[i], refined.boxes[i]))
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _remap_points(self, raw: np.ndarray, crop: Box) -> Tuple[Point, ...]:
        size = float(self.options.output_size)
        network_points = [Point(float(raw[j]) * size, float(raw[j + 5]) * size) for j in range(5)]
        frame = CoordinateFrame(
            origin=crop.top_left,
            scale=size / crop.width,
            scale_y=size / crop.height,
        )
        return remap_points(network_points, frame)

    @staticmethod
    def _squared(boxes: Sequence[Box], scores: Sequence[float], width: int, height: int) -> _Candidates:
        result = _Candidates([], [])
        for box, score in zip(boxes, scores):
            squared = clip_box_to_image(pad_to_square(box).round(), width, height)
            if squared.is_degenerate:
                logger.debug("dropping degenerate candidate %s", squared)
                continue
            result.boxes.append(squared)
            result.scores.append(score)
        return result

    def _check_cancelled(self, stage: str) -> None:
        if self.should_stop is not None and self.should_stop():
            raise CancelledError(f"MTCNN detection cancelled before {stage} stage")

    @staticmethod
    def _record(stats: MtcnnStats, stage: str, candidates: _Candidates, started: float) -> None:
        stats.counts[stage] = len(candidates)
        stats.durations[stage] = time.perf_counter() - started
        logger.debug("mtcnn %s stage: %d candidates", stage, len(candidates))
