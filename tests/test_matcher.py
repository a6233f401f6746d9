from __future__ import annotations

import numpy as np
import pytest

from facepipe.errors import InvalidInputError
from facepipe.geometry import Box
from facepipe.matcher import FaceMatcher, euclidean_distance, match_gallery
from facepipe.types import Detection, FaceResult, LabeledDescriptor, as_descriptor


def _gallery():
    return [
        LabeledDescriptor.create("alice", [[0.0, 0.0, 1.0], [0.0, 0.1, 0.9]]),
        LabeledDescriptor.create("bob", [[1.0, 0.0, 0.0]]),
    ]


def test_exact_descriptor_matches_with_zero_distance():
    match = match_gallery([1.0, 0.0, 0.0], _gallery(), 0.6)
    assert match.label == "bob"
    assert match.distance == pytest.approx(0.0)


def test_entry_scores_by_its_closest_sample():
    match = match_gallery([0.0, 0.1, 0.9], _gallery(), 0.6)
    assert match.label == "alice"
    assert match.distance == pytest.approx(0.0, abs=1e-6)


def test_far_query_is_unknown_but_reports_distance():
    match = match_gallery([5.0, 5.0, 5.0], _gallery(), 0.6)
    assert match.is_unknown
    assert match.distance == pytest.approx(euclidean_distance([5, 5, 5], [0, 0.1, 0.9]), rel=1e-5)


def test_ties_go_to_first_gallery_entry():
    gallery = [LabeledDescriptor.create("first", [[1.0, 0.0]]), LabeledDescriptor.create("second", [[-1.0, 0.0]])]
    assert match_gallery([0.0, 0.0], gallery, 2.0).label == "first"


def test_length_mismatch_raises():
    with pytest.raises(InvalidInputError):
        euclidean_distance([1.0, 2.0], [1.0, 2.0, 3.0])


def test_descriptors_are_read_only():
    descriptor = as_descriptor([1, 2, 3])
    assert descriptor.dtype == np.float32
    with pytest.raises(ValueError):
        descriptor[0] = 5.0


def test_face_matcher_from_results():
    results = [
        FaceResult(Detection(Box(0, 0, 10, 10), 0.9, 50, 50), descriptor=as_descriptor([0.0, 1.0])),
        FaceResult(Detection(Box(20, 20, 10, 10), 0.8, 50, 50)),
        FaceResult(Detection(Box(30, 0, 10, 10), 0.7, 50, 50), descriptor=as_descriptor([1.0, 0.0])),
    ]
    matcher = FaceMatcher.from_results(results)
    assert [entry.label for entry in matcher.gallery] == ["person 1", "person 2"]

    matches = matcher.match_results(results)
    assert matches[0].label == "person 1"
    assert matches[1] is None
    assert matches[2].label == "person 2"
    assert matcher.threshold == 0.6

    with pytest.raises(InvalidInputError):
        FaceMatcher([])
