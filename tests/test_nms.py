from __future__ import annotations

import random

import pytest

from facepipe.errors import InvalidInputError
from facepipe.geometry import Box, iou
from facepipe.nms import non_max_suppression


def _random_boxes(n: int, seed: int = 7):
    rng = random.Random(seed)
    boxes = [Box(rng.uniform(0, 80), rng.uniform(0, 80), rng.uniform(5, 40), rng.uniform(5, 40)) for _ in range(n)]
    scores = [rng.random() for _ in range(n)]
    return boxes, scores


def test_kept_boxes_do_not_overlap_above_threshold():
    boxes, scores = _random_boxes(60)
    keep = non_max_suppression(boxes, scores, 0.3)
    assert set(keep) <= set(range(len(boxes)))
    for i in keep:
        for j in keep:
            if i != j:
                assert iou(boxes[i], boxes[j]) <= 0.3


def test_kept_indices_are_in_descending_score_order():
    boxes, scores = _random_boxes(30)
    keep = non_max_suppression(boxes, scores, 0.5)
    kept_scores = [scores[i] for i in keep]
    assert kept_scores == sorted(kept_scores, reverse=True)


def test_threshold_one_keeps_everything():
    boxes = [Box(0, 0, 10, 10)] * 4
    assert sorted(non_max_suppression(boxes, [0.1, 0.9, 0.5, 0.3], 1.0)) == [0, 1, 2, 3]


def test_tiny_threshold_keeps_one_of_overlapping_cluster():
    boxes = [Box(0, 0, 10, 10), Box(1, 1, 10, 10), Box(2, 0, 10, 10)]
    assert non_max_suppression(boxes, [0.2, 0.8, 0.5], 1e-6) == [1]


def test_equal_scores_keep_input_order():
    boxes = [Box(0, 0, 10, 10), Box(0, 0, 10, 10)]
    assert non_max_suppression(boxes, [0.5, 0.5], 0.5) == [0]


def test_min_metric_suppresses_nested_box():
    boxes = [Box(0, 0, 100, 100), Box(10, 10, 20, 20)]
    assert non_max_suppression(boxes, [0.9, 0.8], 0.5, "union") == [0, 1]
    assert non_max_suppression(boxes, [0.9, 0.8], 0.5, "min") == [0]


def test_empty_input_and_validation():
    assert non_max_suppression([], [], 0.5) == []
    with pytest.raises(InvalidInputError):
        non_max_suppression([Box(0, 0, 1, 1)], [], 0.5)
    with pytest.raises(InvalidInputError):
        non_max_suppression([Box(0, 0, 1, 1)], [0.5], 0.0)
