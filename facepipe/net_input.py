"""Batch construction for network inputs.

Every image is resized so that its longer side equals the network input
size and zero padded to a square canvas. The per-image scale and padding
offset are kept so decoders can map network coordinates back to the
original image.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Sequence, Tuple, Union

import cv2
import numpy as np

from .errors import InvalidInputError

ImageLike = Union[np.ndarray, str, os.PathLike]


@dataclass(frozen=True)
class ImageFrame:
    """Placement of one source image inside the padded network canvas."""

    original_width: int
    original_height: int
    padded_width: int
    padded_height: int
    offset_x: float
    offset_y: float
    scale: float

    def to_original(self, x: float, y: float) -> Tuple[float, float]:
        return ((x - self.offset_x) / self.scale, (y - self.offset_y) / self.scale)

    def to_network(self, x: float, y: float) -> Tuple[float, float]:
        return (x * self.scale + self.offset_x, y * self.scale + self.offset_y)


@dataclass(frozen=True)
class NetInput:
    frames: Tuple[ImageFrame, ...]
    input_size: int
    batch: np.ndarray

    @property
    def batch_size(self) -> int:
        return len(self.frames)


def load_image(source: ImageLike) -> np.ndarray:
    """Return ``source`` as an H x W x 3 array.

    Files are read with OpenCV and converted to RGB; arrays keep whatever
    channel order the caller uses. Grayscale input is replicated to three
    channels and an alpha channel is dropped.
    """
    if isinstance(source, np.ndarray):
        image = source
    else:
        path = os.fspath(source)
        if not os.path.exists(path):
            raise InvalidInputError(f"Image file not found: {path}")
        image = cv2.imread(path)
        if image is None:
            raise InvalidInputError(f"Could not load image: {path}")
        image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)

    if image.ndim == 2:
        image = image[:, :, np.newaxis]
    if image.ndim != 3:
        raise InvalidInputError(f"expected an H x W x C image, got shape {image.shape}")
    if image.shape[0] == 0 or image.shape[1] == 0:
        raise InvalidInputError("image has zero width or height")
    return _as_rgb(image)


def _as_rgb(image: np.ndarray) -> np.ndarray:
    channels = image.shape[2]
    if channels == 1:
        return np.repeat(image, 3, axis=2)
    if channels == 3:
        return image
    if channels == 4:
        return image[:, :, :3]
    raise InvalidInputError(f"expected 1, 3 or 4 channels, got {channels}")


def load_batch(images: Union[ImageLike, Sequence[ImageLike]]) -> List[np.ndarray]:
    if isinstance(images, (np.ndarray, str, os.PathLike)):
        if isinstance(images, np.ndarray) and images.ndim == 4:
            return [load_image(img) for img in images]
        return [load_image(images)]
    return [load_image(img) for img in images]


def resize_to_fit(image: np.ndarray, input_size: int) -> Tuple[np.ndarray, float]:
    h, w = image.shape[:2]
    scale = float(input_size) / float(max(w, h))
    resized_w = min(max(int(round(w * scale)), 1), input_size)
    resized_h = min(max(int(round(h * scale)), 1), input_size)
    if (resized_w, resized_h) == (w, h):
        resized = image
    else:
        resized = cv2.resize(image, (resized_w, resized_h), interpolation=cv2.INTER_LINEAR)
    return resized, scale


def to_net_input(
    images: Union[ImageLike, Sequence[ImageLike]],
    input_size: int,
    *,
    center: bool = False,
) -> NetInput:
    """Resize and pad ``images`` into one float32 N x S x S x 3 batch.

    ``center=False`` places each image at the top-left corner (detectors),
    ``center=True`` centres it (landmark and recognition networks).
    """
    if int(input_size) <= 0:
        raise InvalidInputError(f"input size must be positive, got {input_size}")
    input_size = int(input_size)

    batch_images = load_batch(images)
    if not batch_images:
        raise InvalidInputError("cannot build a network input from an empty batch")

    batch = np.zeros((len(batch_images), input_size, input_size, 3), dtype=np.float32)
    frames: List[ImageFrame] = []

    for idx, image in enumerate(batch_images):
        h, w = image.shape[:2]
        resized, scale = resize_to_fit(image, input_size)
        resized_h, resized_w = resized.shape[:2]

        if center:
            offset_x = (input_size - resized_w) // 2
            offset_y = (input_size - resized_h) // 2
        else:
            offset_x = offset_y = 0

        batch[idx, offset_y:offset_y + resized_h, offset_x:offset_x + resized_w, :] = resized
        side = max(w, h)
        frames.append(
            ImageFrame(
                original_width=w,
                original_height=h,
                padded_width=side,
                padded_height=side,
                offset_x=float(offset_x),
                offset_y=float(offset_y),
                scale=scale,
            )
        )

    return NetInput(frames=tuple(frames), input_size=input_size, batch=batch)
