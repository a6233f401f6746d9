"""Map landmark predictions from network space back to the source image.

The transforms here are pure: they take the frame parameters explicitly
and return new points, so applying a remap never changes the input.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import numpy as np

from .errors import InvalidInputError
from .geometry import Box, Point
from .net_input import ImageFrame
from .types import LandmarkSet


@dataclass(frozen=True)
class CoordinateFrame:
    """How a network input relates to the original image.

    ``origin`` is the crop's top-left corner in the original image,
    ``scale`` the resize factor applied to the crop and ``shift`` the
    padding added before the network saw it. ``scale_y`` is only set when
    the crop was resized unevenly.
    """

    origin: Point = Point(0.0, 0.0)
    scale: float = 1.0
    shift: Point = Point(0.0, 0.0)
    scale_y: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.scale > 0 or (self.scale_y is not None and not self.scale_y > 0):
            raise InvalidInputError(f"frame scale must be positive, got {self.scale}, {self.scale_y}")

    @property
    def scales(self) -> Tuple[float, float]:
        return (self.scale, self.scale if self.scale_y is None else self.scale_y)

    @classmethod
    def from_image_frame(cls, frame: ImageFrame, crop_box: Optional[Box] = None) -> "CoordinateFrame":
        origin = crop_box.top_left if crop_box is not None else Point(0.0, 0.0)
        return cls(origin=origin, scale=frame.scale, shift=Point(frame.offset_x, frame.offset_y))


def remap_points(points: Iterable[Point], frame: CoordinateFrame) -> Tuple[Point, ...]:
    """network point -> original image point."""
    sx, sy = frame.scales
    return tuple(frame.origin + (p - frame.shift).div(sx, sy) for p in points)


def unmap_points(points: Iterable[Point], frame: CoordinateFrame) -> Tuple[Point, ...]:
    """original image point -> network point."""
    sx, sy = frame.scales
    return tuple((p - frame.origin).mul(sx, sy) + frame.shift for p in points)


def points_from_array(values: np.ndarray) -> Tuple[Point, ...]:
    """Read an interleaved ``(x0, y0, x1, y1, ...)`` vector as points."""
    flat = np.asarray(values, dtype=np.float64).reshape(-1)
    if flat.size % 2:
        raise InvalidInputError(f"landmark vector has odd length {flat.size}")
    return tuple(Point(float(flat[i]), float(flat[i + 1])) for i in range(0, flat.size, 2))


def decode_landmarks(
    raw: np.ndarray,
    frame: ImageFrame,
    input_size: int,
    image_width: int,
    image_height: int,
    crop_box: Optional[Box] = None,
) -> LandmarkSet:
    """Build a ``LandmarkSet`` from one normalised landmark net output.

    ``raw`` holds coordinates in [0, 1] relative to the padded network
    input; ``frame`` describes how the (optionally cropped) image was placed
    in it.
    """
    network_points = [p.mul(float(input_size)) for p in points_from_array(raw)]
    coords = CoordinateFrame.from_image_frame(frame, crop_box)
    return LandmarkSet(
        positions=remap_points(network_points, coords),
        image_width=int(image_width),
        image_height=int(image_height),
        shift=coords.origin,
    )
