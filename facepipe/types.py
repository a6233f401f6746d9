"""Result value objects produced by the detection pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .errors import InvalidInputError
from .geometry import Box, Point

UNKNOWN_LABEL = "unknown"

EXPRESSION_LABELS: Tuple[str, ...] = (
    "neutral",
    "happy",
    "sad",
    "angry",
    "fearful",
    "disgusted",
    "surprised",
)


@dataclass(frozen=True)
class Detection:
    """A face location in original image pixel space."""

    box: Box
    score: float
    image_width: int
    image_height: int
    class_label: Optional[str] = None

    @property
    def relative_box(self) -> Box:
        return self.box.rescale(1.0 / self.image_width, 1.0 / self.image_height)

    def for_size(self, width: int, height: int) -> "Detection":
        """Rescale to an image of ``width`` x ``height``, e.g. a display canvas."""
        box = self.box.rescale(width / self.image_width, height / self.image_height)
        return Detection(box, self.score, width, height, self.class_label)


@dataclass(frozen=True)
class LandmarkSet:
    """Landmark positions in absolute original image coordinates.

    ``shift`` is the top-left corner of the frame the points were predicted
    in, zero when the network saw the whole image.
    """

    positions: Tuple[Point, ...]
    image_width: int
    image_height: int
    shift: Point = Point(0.0, 0.0)

    def __len__(self) -> int:
        return len(self.positions)

    @property
    def relative_positions(self) -> Tuple[Point, ...]:
        return tuple(p - self.shift for p in self.positions)

    def as_array(self) -> np.ndarray:
        return np.array([p.as_tuple() for p in self.positions], dtype=np.float32)

    def for_size(self, width: int, height: int) -> "LandmarkSet":
        sx, sy = width / self.image_width, height / self.image_height
        return LandmarkSet(
            positions=tuple(p.mul(sx, sy) for p in self.positions),
            image_width=width,
            image_height=height,
            shift=self.shift.mul(sx, sy),
        )


def as_descriptor(values: Sequence[float]) -> np.ndarray:
    """Freeze ``values`` into a read-only float32 descriptor vector."""
    arr = np.array(values, dtype=np.float32).reshape(-1)
    if arr.size == 0:
        raise InvalidInputError("descriptor must not be empty")
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class LabeledDescriptor:
    label: str
    descriptors: Tuple[np.ndarray, ...]

    @classmethod
    def create(cls, label: str, descriptors: Sequence[Sequence[float]]) -> "LabeledDescriptor":
        if len(descriptors) == 0:
            raise InvalidInputError(f"gallery entry {label!r} has no descriptors")
        return cls(str(label), tuple(as_descriptor(d) for d in descriptors))


@dataclass(frozen=True)
class FaceMatch:
    label: str
    distance: float

    @property
    def is_unknown(self) -> bool:
        return self.label == UNKNOWN_LABEL


@dataclass(frozen=True)
class FaceExpressions:
    probabilities: Dict[str, float] = field(default_factory=dict)

    def as_sorted(self) -> List[Tuple[str, float]]:
        return sorted(self.probabilities.items(), key=lambda kv: kv[1], reverse=True)

    @property
    def dominant(self) -> str:
        return self.as_sorted()[0][0]


@dataclass(frozen=True)
class AgeAndGender:
    age: float
    gender: str
    gender_probability: float


@dataclass(frozen=True, eq=False)
class FaceResult:
    """One face, filled in incrementally by successive pipeline stages."""

    detection: Detection
    landmarks: Optional[LandmarkSet] = None
    aligned_box: Optional[Box] = None
    descriptor: Optional[np.ndarray] = None
    expressions: Optional[FaceExpressions] = None
    age_gender: Optional[AgeAndGender] = None

    def for_size(self, width: int, height: int) -> "FaceResult":
        """Rescale every geometric field; descriptors and classifications are kept."""
        sx = width / self.detection.image_width
        sy = height / self.detection.image_height
        return FaceResult(
            detection=self.detection.for_size(width, height),
            landmarks=None if self.landmarks is None else self.landmarks.for_size(width, height),
            aligned_box=None if self.aligned_box is None else self.aligned_box.rescale(sx, sy),
            descriptor=self.descriptor,
            expressions=self.expressions,
            age_gender=self.age_gender,
        )
