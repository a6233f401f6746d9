from __future__ import annotations

import math

import numpy as np
import pytest

from facepipe.box_decoder import decode_anchor_boxes, decode_grid_boxes, generate_anchors


def test_generate_anchors_layout():
    anchors = generate_anchors(64, [(32, (10.0, 20.0))])
    assert anchors.shape == (2 * 2 * 2, 4)
    # first cell, both sizes
    assert anchors[0].tolist() == [16.0, 16.0, 10.0, 10.0]
    assert anchors[1].tolist() == [16.0, 16.0, 20.0, 20.0]
    # row 0, col 1
    assert anchors[2].tolist() == [48.0, 16.0, 10.0, 10.0]


def test_zero_offsets_reproduce_anchor():
    anchors = np.array([[50.0, 40.0, 20.0, 10.0]])
    candidates = decode_anchor_boxes(np.array([0.9]), np.zeros((1, 4)), anchors, 0.5)
    box, score = candidates[0]
    assert (box.x, box.y, box.width, box.height) == pytest.approx((40.0, 35.0, 20.0, 10.0))
    assert score == pytest.approx(0.9)


def test_offsets_are_scaled_by_factors():
    anchors = np.array([[50.0, 50.0, 20.0, 20.0]])
    reg = np.array([[10.0, -10.0, 5.0 * math.log(2.0), 0.0]])
    box, _ = decode_anchor_boxes(np.array([1.0]), reg, anchors, 0.5)[0]
    assert box.center.as_tuple() == pytest.approx((70.0, 30.0))
    assert (box.width, box.height) == pytest.approx((40.0, 20.0))


def test_anchor_threshold_is_inclusive():
    anchors = np.tile([[10.0, 10.0, 4.0, 4.0]], (3, 1))
    scores = np.array([0.49, 0.5, 0.51])
    kept = decode_anchor_boxes(scores, np.zeros((3, 4)), anchors, 0.5)
    assert [s for _, s in kept] == pytest.approx([0.5, 0.51])


def test_grid_decoding():
    grid = np.full((3, 3, 1, 5), -20.0)
    grid[1, 2, 0] = [0.0, 0.0, 0.0, math.log(2.0), 4.0]
    candidates = decode_grid_boxes(grid, [(1.5, 1.0)], 32, 0.5)

    assert len(candidates) == 1
    box, score = candidates[0]
    assert box.center.as_tuple() == pytest.approx(((2 + 0.5) * 32, (1 + 0.5) * 32))
    assert (box.width, box.height) == pytest.approx((48.0, 64.0))
    assert score == pytest.approx(1 / (1 + math.exp(-4.0)))


def test_grid_without_confident_cells_is_empty():
    assert decode_grid_boxes(np.full((2, 2, 2, 5), -5.0), [(1, 1), (2, 2)], 16, 0.5) == []
