"""SSD MobileNet style anchor based face detector."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

import numpy as np

from ..backends import NetworkContext, forward_scope
from ..box_decoder import decode_anchor_boxes, generate_anchors
from ..errors import BackendError
from ..net_input import ImageLike, NetInput, to_net_input
from ..options import SsdOptions
from ..types import Detection
from .common import finalize_candidates, require_outputs


class SsdDetector:
    """Decodes per-anchor scores and (dx, dy, dw, dh) offsets."""

    network_role = "ssd"

    def __init__(self, options: Optional[SsdOptions] = None, anchors: Optional[np.ndarray] = None) -> None:
        self.options = options or SsdOptions()
        # models that ship their own priors pass them in; otherwise build the grid
        self._anchors = anchors

    @property
    def anchors(self) -> np.ndarray:
        if self._anchors is None:
            self._anchors = generate_anchors(self.options.input_size, self.options.feature_maps)
        return self._anchors

    @staticmethod
    def preprocess(batch: np.ndarray) -> np.ndarray:
        return batch / 127.5 - 1.0

    def detect(self, context: NetworkContext, images: Sequence[ImageLike]) -> List[List[Detection]]:
        net_input = to_net_input(images, self.options.input_size)
        network = context.get(self.network_role)
        with forward_scope(context.backend, network, self.preprocess(net_input.batch)) as outputs:
            return self.decode(outputs, net_input)

    def decode(self, outputs: Dict[str, np.ndarray], net_input: NetInput) -> List[List[Detection]]:
        require_outputs(outputs, ("scores", "boxes"), net_input.batch_size)
        anchors = self.anchors
        scores = outputs["scores"].reshape(net_input.batch_size, -1)
        boxes = outputs["boxes"].reshape(net_input.batch_size, -1, 4)
        if scores.shape[1] != len(anchors) or boxes.shape[1] != len(anchors):
            raise BackendError(
                f"SSD output has {scores.shape[1]} scores and {boxes.shape[1]} boxes "
                f"for {len(anchors)} anchors"
            )

        results: List[List[Detection]] = []
        for i, frame in enumerate(net_input.frames):
            candidates = decode_anchor_boxes(
                scores[i],
                boxes[i],
                anchors,
                self.options.min_confidence,
                self.options.scale_factors,
            )
            results.append(
                finalize_candidates(candidates, frame, self.options.iou_threshold, self.options.max_results)
            )
        return results
