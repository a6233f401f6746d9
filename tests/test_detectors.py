from __future__ import annotations

import math

import numpy as np
import pytest

from facepipe.box_decoder import generate_anchors
from facepipe.detectors import SsdDetector, TinyFaceDetector
from facepipe.errors import BackendError
from facepipe.options import SsdOptions, TinyFaceDetectorOptions


def ssd_network(options, boxes_per_image, score=0.9):
    """Fake SSD head that encodes the given network space boxes exactly."""
    anchors = generate_anchors(options.input_size, options.feature_maps).astype(np.float64)
    fx, fy, fw, fh = options.scale_factors

    def run(inputs):
        n = inputs.shape[0]
        scores = np.zeros((n, len(anchors)))
        regs = np.zeros((n, len(anchors), 4))
        for i in range(n):
            for x, y, w, h in boxes_per_image[i]:
                cx, cy = x + w / 2, y + h / 2
                a = int(np.argmin((anchors[:, 0] - cx) ** 2 + (anchors[:, 1] - cy) ** 2 + (anchors[:, 2] - w) ** 2))
                acx, acy, aw, ah = anchors[a]
                scores[i, a] = score
                regs[i, a] = [(cx - acx) / aw * fx, (cy - acy) / ah * fy, math.log(w / aw) * fw, math.log(h / ah) * fh]
        return [scores, regs]

    return run


def test_ssd_decodes_boxes_into_image_space(make_context):
    options = SsdOptions()
    image = np.zeros((480, 640, 3), dtype=np.uint8)
    scale = options.input_size / 640.0
    truth = [(100, 80, 60, 70), (400, 200, 90, 110)]
    network_boxes = [[(x * scale, y * scale, w * scale, h * scale) for x, y, w, h in truth]]
    context = make_context({"ssd": ssd_network(options, network_boxes)})

    detections = SsdDetector(options).detect(context, [image])[0]

    assert len(detections) == 2
    found = sorted((d.box.x, d.box.y, d.box.width, d.box.height) for d in detections)
    for got, want in zip(found, sorted(truth)):
        assert got == pytest.approx(want, abs=1e-3)
    assert all(d.image_width == 640 and d.image_height == 480 for d in detections)
    assert context.backend.num_tensors == 0


def test_ssd_scores_below_threshold_are_dropped(make_context):
    options = SsdOptions(min_confidence=0.95)
    context = make_context({"ssd": ssd_network(options, [[(10, 10, 50, 50)]], score=0.9)})
    assert SsdDetector(options).detect(context, [np.zeros((512, 512, 3), np.uint8)]) == [[]]


def test_ssd_rejects_wrong_anchor_count(make_context):
    context = make_context({"ssd": lambda x: [np.zeros((1, 3)), np.zeros((1, 3, 4))]})
    with pytest.raises(BackendError):
        SsdDetector().detect(context, [np.zeros((64, 64, 3), np.uint8)])
    assert context.backend.num_tensors == 0


def test_tiny_detector_grid(make_context):
    options = TinyFaceDetectorOptions()
    cells = options.input_size // options.stride

    def run(inputs):
        grid = np.full((inputs.shape[0], cells, cells, len(options.anchors), 5), -10.0)
        grid[:, 3, 4, 0] = [0.0, 0.0, 0.0, 0.0, 5.0]
        return [grid]

    context = make_context({"tiny": run})
    detections = TinyFaceDetector(options).detect(context, [np.zeros((416, 416, 3), np.uint8)])[0]

    assert len(detections) == 1
    aw, ah = options.anchors[0]
    box = detections[0].box
    assert box.center.as_tuple() == pytest.approx((4.5 * 32, 3.5 * 32))
    assert (box.width, box.height) == pytest.approx((aw * 32, ah * 32))
    assert detections[0].score == pytest.approx(1 / (1 + math.exp(-5.0)))


def test_ssd_accepts_alpha_and_mixed_channel_batches(make_context):
    options = SsdOptions()
    scale = options.input_size / 640.0
    context = make_context({"ssd": ssd_network(options, [[(100 * scale, 80 * scale, 60 * scale, 70 * scale)], []])})
    images = [np.zeros((480, 640, 4), np.uint8), np.zeros((100, 100, 3), np.uint8)]

    results = SsdDetector(options).detect(context, images)

    assert [len(r) for r in results] == [1, 0]
    assert all(shape[-1] == 3 for _, shape in context.backend.calls)


def test_tiny_detector_accepts_alpha_and_gray_images(make_context):
    options = TinyFaceDetectorOptions()
    cells = options.input_size // options.stride

    def run(inputs):
        grid = np.full((inputs.shape[0], cells, cells, len(options.anchors), 5), -10.0)
        grid[:, 3, 4, 0] = [0.0, 0.0, 0.0, 0.0, 5.0]
        return [grid]

    context = make_context({"tiny": run})
    images = [np.zeros((416, 416, 4), np.uint8), np.zeros((416, 416), np.uint8)]

    results = TinyFaceDetector(options).detect(context, images)

    assert [len(r) for r in results] == [1, 1]
    assert context.backend.calls[0][1] == (2, 416, 416, 3)


def test_ssd_drops_boxes_that_fall_in_the_padding(make_context):
    options = SsdOptions()
    # a 640 x 480 image fills only the top 384 network rows
    boxes = [[(80.0, 64.0, 48.0, 56.0), (50.0, 400.0, 40.0, 50.0)]]
    context = make_context({"ssd": ssd_network(options, boxes)})

    detections = SsdDetector(options).detect(context, [np.zeros((480, 640, 3), np.uint8)])[0]

    assert len(detections) == 1
    box = detections[0].box
    assert (box.x, box.y, box.width, box.height) == pytest.approx((100, 80, 60, 70), abs=1e-3)
