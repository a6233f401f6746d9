"""Lightweight single shot detector with a YOLO style output grid."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

import numpy as np

from ..backends import NetworkContext, forward_scope
from ..box_decoder import decode_grid_boxes
from ..errors import BackendError
from ..net_input import ImageLike, NetInput, to_net_input
from ..options import TinyFaceDetectorOptions
from ..types import Detection
from .common import finalize_candidates, require_outputs

MEAN_RGB = np.array([117.001, 114.697, 97.404], dtype=np.float32)


class TinyFaceDetector:
    network_role = "tiny"

    def __init__(self, options: Optional[TinyFaceDetectorOptions] = None) -> None:
        self.options = options or TinyFaceDetectorOptions()

    @property
    def grid_size(self) -> int:
        return self.options.input_size // self.options.stride

    @staticmethod
    def preprocess(batch: np.ndarray) -> np.ndarray:
        return (batch - MEAN_RGB) / 256.0

    def detect(self, context: NetworkContext, images: Sequence[ImageLike]) -> List[List[Detection]]:
        net_input = to_net_input(images, self.options.input_size)
        network = context.get(self.network_role)
        with forward_scope(context.backend, network, self.preprocess(net_input.batch)) as outputs:
            return self.decode(outputs, net_input)

    def decode(self, outputs: Dict[str, np.ndarray], net_input: NetInput) -> List[List[Detection]]:
        require_outputs(outputs, ("grid",), net_input.batch_size)
        cells = self.grid_size
        num_anchors = len(self.options.anchors)
        grid = outputs["grid"]
        expected = cells * cells * num_anchors * 5
        if grid[0].size != expected:
            raise BackendError(f"tiny detector grid has {grid[0].size} values, expected {expected}")
        grid = grid.reshape(net_input.batch_size, cells, cells, num_anchors, 5)

        results: List[List[Detection]] = []
        for i, frame in enumerate(net_input.frames):
            candidates = decode_grid_boxes(
                grid[i],
                self.options.anchors,
                self.options.stride,
                self.options.score_threshold,
            )
            results.append(finalize_candidates(candidates, frame, self.options.iou_threshold))
        return results
