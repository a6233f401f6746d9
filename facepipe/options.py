"""Per-detector option objects, validated on construction."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

from .errors import ConfigurationError

OVERLAP_METRICS = ("union", "min")

# SSD MobileNet v1 style feature maps for a 512 input: (stride, anchor sizes).
DEFAULT_SSD_FEATURE_MAPS: Tuple[Tuple[int, Tuple[float, ...]], ...] = (
    (16, (32.0, 45.0)),
    (32, (64.0, 90.0)),
    (64, (128.0, 181.0)),
    (128, (256.0, 362.0)),
)

# Tiny face detector anchor boxes, in grid cell units.
DEFAULT_TINY_ANCHORS: Tuple[Tuple[float, float], ...] = (
    (1.603231, 2.094468),
    (6.041143, 7.080126),
    (2.882459, 3.518061),
    (4.266906, 5.178857),
    (9.041765, 10.66308),
)


def _check_unit(errors: List[str], name: str, value: float, allow_zero: bool = True) -> None:
    low_ok = value >= 0.0 if allow_zero else value > 0.0
    if not (low_ok and value <= 1.0):
        bound = "[0, 1]" if allow_zero else "(0, 1]"
        errors.append(f"{name} must be in {bound}, got {value}")


def _check_positive(errors: List[str], name: str, value: float) -> None:
    if not value > 0:
        errors.append(f"{name} must be positive, got {value}")


def _check_metric(errors: List[str], name: str, value: str) -> None:
    if value not in OVERLAP_METRICS:
        errors.append(f"{name} must be one of {OVERLAP_METRICS}, got {value!r}")


@dataclass(frozen=True)
class SsdOptions:
    min_confidence: float = 0.5
    iou_threshold: float = 0.5
    input_size: int = 512
    max_results: int = 100
    feature_maps: Tuple[Tuple[int, Tuple[float, ...]], ...] = DEFAULT_SSD_FEATURE_MAPS
    scale_factors: Tuple[float, float, float, float] = (10.0, 10.0, 5.0, 5.0)

    def __post_init__(self) -> None:
        errors: List[str] = []
        _check_unit(errors, "min_confidence", self.min_confidence)
        _check_unit(errors, "iou_threshold", self.iou_threshold, allow_zero=False)
        _check_positive(errors, "input_size", self.input_size)
        _check_positive(errors, "max_results", self.max_results)
        if len(self.scale_factors) != 4 or any(f <= 0 for f in self.scale_factors):
            errors.append("scale_factors must be four positive numbers")
        if errors:
            raise ConfigurationError(errors)


@dataclass(frozen=True)
class TinyFaceDetectorOptions:
    input_size: int = 416
    score_threshold: float = 0.5
    iou_threshold: float = 0.4
    stride: int = 32
    anchors: Tuple[Tuple[float, float], ...] = DEFAULT_TINY_ANCHORS

    def __post_init__(self) -> None:
        errors: List[str] = []
        _check_positive(errors, "input_size", self.input_size)
        _check_positive(errors, "stride", self.stride)
        if self.input_size > 0 and self.stride > 0 and self.input_size % self.stride != 0:
            errors.append(f"input_size must be divisible by {self.stride}, got {self.input_size}")
        _check_unit(errors, "score_threshold", self.score_threshold)
        _check_unit(errors, "iou_threshold", self.iou_threshold, allow_zero=False)
        if not self.anchors:
            errors.append("anchors must not be empty")
        if errors:
            raise ConfigurationError(errors)


@dataclass(frozen=True)
class MtcnnOptions:
    """Tunables of the three stage cascade.

    ``score_thresholds`` and the ``*_iou`` values are per stage; the
    proposal stage runs one NMS per pyramid scale and one over the pooled
    candidates of all scales.
    """

    min_face_size: float = 20.0
    scale_factor: float = 0.709
    max_num_scales: int = 10
    scale_steps: Optional[Tuple[float, ...]] = None
    score_thresholds: Tuple[float, float, float] = (0.6, 0.7, 0.7)
    proposal_scale_iou: float = 0.5
    proposal_iou: float = 0.7
    refine_iou: float = 0.7
    output_iou: float = 0.7
    refine_metric: str = "min"
    output_metric: str = "min"
    proposal_size: int = 12
    refine_size: int = 24
    output_size: int = 48

    def __post_init__(self) -> None:
        errors: List[str] = []
        _check_positive(errors, "min_face_size", self.min_face_size)
        if not 0.0 < self.scale_factor < 1.0:
            errors.append(f"scale_factor must be in (0, 1), got {self.scale_factor}")
        _check_positive(errors, "max_num_scales", self.max_num_scales)
        if self.scale_steps is not None:
            if not self.scale_steps:
                errors.append("scale_steps must not be empty when given")
            for step in self.scale_steps:
                _check_positive(errors, "scale_steps entry", step)
        if len(self.score_thresholds) != 3:
            errors.append("score_thresholds needs one value per stage (3)")
        for i, thr in enumerate(self.score_thresholds):
            _check_unit(errors, f"score_thresholds[{i}]", thr)
        for name in ("proposal_scale_iou", "proposal_iou", "refine_iou", "output_iou"):
            _check_unit(errors, name, getattr(self, name), allow_zero=False)
        _check_metric(errors, "refine_metric", self.refine_metric)
        _check_metric(errors, "output_metric", self.output_metric)
        for name in ("proposal_size", "refine_size", "output_size"):
            _check_positive(errors, name, getattr(self, name))
        if errors:
            raise ConfigurationError(errors)


@dataclass(frozen=True)
class LandmarkOptions:
    input_size: int = 112
    num_points: int = 68

    def __post_init__(self) -> None:
        errors: List[str] = []
        _check_positive(errors, "input_size", self.input_size)
        if self.num_points not in (5, 68):
            errors.append(f"num_points must be 5 or 68, got {self.num_points}")
        if errors:
            raise ConfigurationError(errors)


@dataclass(frozen=True)
class AlignmentOptions:
    margin: float = 1.0
    method: str = "min_bbox"
    recognition_size: int = 150
    mean: Tuple[float, float, float] = (122.782, 117.001, 104.298)
    scale: float = 1.0 / 256.0

    def __post_init__(self) -> None:
        errors: List[str] = []
        if self.margin < 0:
            errors.append(f"margin must be non-negative, got {self.margin}")
        if self.method not in ("min_bbox", "dlib"):
            errors.append(f"method must be 'min_bbox' or 'dlib', got {self.method!r}")
        _check_positive(errors, "recognition_size", self.recognition_size)
        _check_positive(errors, "scale", self.scale)
        if errors:
            raise ConfigurationError(errors)


DetectorOptions = Union[SsdOptions, TinyFaceDetectorOptions, MtcnnOptions]


def as_tuple(values: Sequence) -> tuple:
    """Recursively turn JSON lists into tuples so frozen options stay hashable."""
    return tuple(as_tuple(v) if isinstance(v, (list, tuple)) else v for v in values)
