"""Points, boxes and rectangle algebra used by every detector stage."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Tuple

from .errors import InvalidInputError


@dataclass(frozen=True)
class Point:
    x: float
    y: float

    def __add__(self, other: "Point") -> "Point":
        return Point(self.x + other.x, self.y + other.y)

    def __sub__(self, other: "Point") -> "Point":
        return Point(self.x - other.x, self.y - other.y)

    def mul(self, fx: float, fy: float | None = None) -> "Point":
        return Point(self.x * fx, self.y * (fx if fy is None else fy))

    def div(self, fx: float, fy: float | None = None) -> "Point":
        return Point(self.x / fx, self.y / (fx if fy is None else fy))

    def magnitude(self) -> float:
        return math.hypot(self.x, self.y)

    def as_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)


@dataclass(frozen=True)
class Box:
    """Axis aligned box stored as top-left corner plus extents."""

    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        if self.width < 0 or self.height < 0:
            raise InvalidInputError(
                f"box extents must be non-negative, got {self.width}x{self.height}"
            )

    @classmethod
    def from_corners(cls, x1: float, y1: float, x2: float, y2: float) -> "Box":
        # inverted corners collapse to an empty box instead of a negative one
        return cls(float(x1), float(y1), max(float(x2) - float(x1), 0.0), max(float(y2) - float(y1), 0.0))

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> Point:
        return Point(self.x + self.width * 0.5, self.y + self.height * 0.5)

    @property
    def top_left(self) -> Point:
        return Point(self.x, self.y)

    @property
    def is_degenerate(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def corners(self) -> Tuple[float, float, float, float]:
        return (self.x, self.y, self.x2, self.y2)

    def shift(self, dx: float, dy: float) -> "Box":
        return Box(self.x + dx, self.y + dy, self.width, self.height)

    def rescale(self, sx: float, sy: float | None = None) -> "Box":
        sy = sx if sy is None else sy
        return Box(self.x * sx, self.y * sy, self.width * sx, self.height * sy)

    def pad(self, dx: float, dy: float) -> "Box":
        """Grow by ``dx``/``dy`` in total, split evenly over both sides."""
        return Box.from_corners(self.x - dx / 2, self.y - dy / 2, self.x2 + dx / 2, self.y2 + dy / 2)

    def round(self) -> "Box":
        x1, y1 = round(self.x), round(self.y)
        return Box.from_corners(x1, y1, round(self.x2), round(self.y2))

    def regress(self, dx1: float, dy1: float, dx2: float, dy2: float) -> "Box":
        """Apply MTCNN style corner offsets given relative to the box size."""
        w, h = self.width, self.height
        return Box.from_corners(
            self.x + dx1 * w,
            self.y + dy1 * h,
            self.x2 + dx2 * w,
            self.y2 + dy2 * h,
        )


def intersection_area(a: Box, b: Box) -> float:
    ix1 = max(a.x, b.x)
    iy1 = max(a.y, b.y)
    ix2 = min(a.x2, b.x2)
    iy2 = min(a.y2, b.y2)
    if ix2 <= ix1 or iy2 <= iy1:
        return 0.0
    return (ix2 - ix1) * (iy2 - iy1)


def iou(a: Box, b: Box, metric: str = "union") -> float:
    """Overlap of two boxes.

    ``metric="union"`` divides the intersection by the union area,
    ``metric="min"`` by the smaller of the two areas.
    """
    if metric not in ("union", "min"):
        raise InvalidInputError(f"unknown overlap metric: {metric!r}")
    inter = intersection_area(a, b)
    if inter <= 0.0:
        return 0.0
    if metric == "union":
        denom = a.area + b.area - inter
    else:
        denom = min(a.area, b.area)
    if denom <= 0.0:
        return 0.0
    return inter / denom


def clip_box_to_image(box: Box, width: float, height: float) -> Box:
    """Clamp ``box`` into ``[0, width] x [0, height]``.

    The result may be degenerate; callers drop such boxes.
    """
    x1 = min(max(box.x, 0.0), float(width))
    y1 = min(max(box.y, 0.0), float(height))
    x2 = min(max(box.x2, 0.0), float(width))
    y2 = min(max(box.y2, 0.0), float(height))
    return Box.from_corners(x1, y1, x2, y2)


def pad_to_square(box: Box) -> Box:
    side = max(box.width, box.height)
    cx, cy = box.center.as_tuple()
    return Box(cx - side / 2, cy - side / 2, side, side)


def min_bbox(points: Iterable[Point]) -> Box:
    pts = list(points)
    if not pts:
        raise InvalidInputError("cannot bound an empty point set")
    xs = [p.x for p in pts]
    ys = [p.y for p in pts]
    return Box.from_corners(min(xs), min(ys), max(xs), max(ys))


def mean_point(points: Iterable[Point]) -> Point:
    pts = list(points)
    if not pts:
        raise InvalidInputError("cannot average an empty point set")
    return Point(sum(p.x for p in pts) / len(pts), sum(p.y for p in pts) / len(pts))
