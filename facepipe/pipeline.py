#!/usr/bin/env python3
"""
Face Analysis Pipeline - detection, landmarks, alignment and descriptors
Each stage takes FaceResults and returns new ones with one more field set

Created: 2025
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Callable, List, Optional, Sequence

import numpy as np

from .alignment import alignment_box, extract_faces
from .backends import NETWORK_OUTPUTS, NetworkContext, forward_scope
from .classifiers import decode_age_gender, decode_expressions
from .detectors import MtcnnDetector, create_detector
from .detectors.common import require_outputs
from .errors import BackendError, CancelledError
from .face_features import FaceFeatureExtractor
from .geometry import Box
from .landmarks import decode_landmarks
from .net_input import ImageLike, load_batch, load_image, to_net_input
from .options import AlignmentOptions, DetectorOptions, LandmarkOptions
from .types import FaceResult

logger = logging.getLogger(__name__)

# landmark, expression and age/gender nets share one input layout
CLASSIFIER_INPUT_SIZE = 112
CLASSIFIER_MEAN = np.array([122.782, 117.001, 104.298], dtype=np.float32)


def _preprocess_face_batch(batch: np.ndarray) -> np.ndarray:
    return (batch - CLASSIFIER_MEAN) / 255.0


def _crop_boxes(results: Sequence[FaceResult]) -> List[Box]:
    return [r.detection.box.round() for r in results]


def detect_all_faces(
    context: NetworkContext,
    images: Sequence[ImageLike],
    options: Optional[DetectorOptions] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> List[List[FaceResult]]:
    """Detect faces in every image; result ``i`` belongs to image ``i``.

    The cascade detector also fills in its 5 point landmarks.
    """
    detector = create_detector(options)
    if isinstance(detector, MtcnnDetector):
        detector.should_stop = should_stop
        return [
            [FaceResult(detection=det, landmarks=lms) for det, lms in faces]
            for faces in detector.detect_with_landmarks(context, images)
        ]
    return [[FaceResult(detection=det) for det in dets] for dets in detector.detect(context, images)]


def detect_single_face(
    context: NetworkContext,
    image: ImageLike,
    options: Optional[DetectorOptions] = None,
) -> Optional[FaceResult]:
    """Highest scoring face in ``image``, or None."""
    faces = detect_all_faces(context, [load_image(image)], options)[0]
    if not faces:
        return None
    return max(faces, key=lambda r: r.detection.score)


def with_landmarks(
    context: NetworkContext,
    image: ImageLike,
    results: Sequence[FaceResult],
    options: Optional[LandmarkOptions] = None,
) -> List[FaceResult]:
    """Predict landmarks inside each detection box."""
    options = options or LandmarkOptions()
    if not results:
        return []
    image = load_image(image)
    height, width = image.shape[:2]

    boxes = _crop_boxes(results)
    net_input = to_net_input(extract_faces(image, boxes), options.input_size, center=True)
    with forward_scope(context.backend, context.get("landmarks"), _preprocess_face_batch(net_input.batch)) as outputs:
        require_outputs(outputs, ("landmarks",), net_input.batch_size)
        raw = outputs["landmarks"].reshape(net_input.batch_size, -1)

    if raw.shape[1] != 2 * options.num_points:
        raise BackendError(f"landmark net returned {raw.shape[1] // 2} points, expected {options.num_points}")

    return [
        dataclasses.replace(
            result,
            landmarks=decode_landmarks(raw[i], net_input.frames[i], options.input_size, width, height, boxes[i]),
        )
        for i, result in enumerate(results)
    ]


def resize_results(results: Sequence[FaceResult], width: int, height: int) -> List[FaceResult]:
    """Rescale results to a ``width`` x ``height`` canvas, such as a scaled preview."""
    return [r.for_size(width, height) for r in results]


def with_alignment(
    results: Sequence[FaceResult],
    options: Optional[AlignmentOptions] = None,
) -> List[FaceResult]:
    """Set ``aligned_box`` from the landmarks, or the detection box without them."""
    options = options or AlignmentOptions()
    aligned = []
    for result in results:
        box = result.detection.box
        if result.landmarks is not None:
            candidate = alignment_box(result.detection, result.landmarks, options.margin, options.method)
            if candidate.is_degenerate:
                logger.debug("falling back to detection box for %s", result.detection.box)
            else:
                box = candidate
        aligned.append(dataclasses.replace(result, aligned_box=box))
    return aligned


def with_descriptors(
    context: NetworkContext,
    image: ImageLike,
    results: Sequence[FaceResult],
    options: Optional[AlignmentOptions] = None,
    extractor: Optional[FaceFeatureExtractor] = None,
) -> List[FaceResult]:
    if not results:
        return []
    image = load_image(image)
    extractor = extractor or FaceFeatureExtractor(options)
    results = list(results)
    if any(r.aligned_box is None for r in results):
        results = with_alignment(results, extractor.options)

    descriptors = extractor.extract(context, image, [r.aligned_box for r in results])
    return [dataclasses.replace(r, descriptor=d) for r, d in zip(results, descriptors)]


def _run_face_classifier(context: NetworkContext, role: str, image: np.ndarray, results: Sequence[FaceResult]):
    net_input = to_net_input(extract_faces(image, _crop_boxes(results)), CLASSIFIER_INPUT_SIZE, center=True)
    with forward_scope(context.backend, context.get(role), _preprocess_face_batch(net_input.batch)) as outputs:
        require_outputs(outputs, NETWORK_OUTPUTS[role], net_input.batch_size)
        return outputs


def with_expressions(context: NetworkContext, image: ImageLike, results: Sequence[FaceResult]) -> List[FaceResult]:
    if not results:
        return []
    outputs = _run_face_classifier(context, "expression", load_image(image), results)
    logits = outputs["expressions"].reshape(len(results), -1)
    return [dataclasses.replace(r, expressions=decode_expressions(logits[i])) for i, r in enumerate(results)]


def with_age_and_gender(context: NetworkContext, image: ImageLike, results: Sequence[FaceResult]) -> List[FaceResult]:
    if not results:
        return []
    outputs = _run_face_classifier(context, "age_gender", load_image(image), results)
    ages = outputs["age"].reshape(len(results), -1)
    genders = outputs["gender"].reshape(len(results), -1)
    return [
        dataclasses.replace(r, age_gender=decode_age_gender(ages[i], genders[i]))
        for i, r in enumerate(results)
    ]


class FacePipeline:
    """Configured sequence of stages run over a batch of images.

    Stages after detection run per image in batch order; ``should_stop`` is
    polled between stages.
    """

    def __init__(
        self,
        context: NetworkContext,
        detector_options: Optional[DetectorOptions] = None,
        landmark_options: Optional[LandmarkOptions] = None,
        alignment_options: Optional[AlignmentOptions] = None,
        landmarks: bool = True,
        descriptors: bool = False,
        expressions: bool = False,
        age_gender: bool = False,
        feature_norm: Optional[str] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> None:
        self.context = context
        self.detector_options = detector_options
        self.landmark_options = landmark_options or LandmarkOptions()
        self.alignment_options = alignment_options or AlignmentOptions()
        self.landmarks = landmarks
        self.descriptors = descriptors
        self.expressions = expressions
        self.age_gender = age_gender
        self.extractor = FaceFeatureExtractor(self.alignment_options, feature_norm)
        self.should_stop = should_stop

    def run(self, images: Sequence[ImageLike]) -> List[List[FaceResult]]:
        batch = load_batch(images)
        detected = detect_all_faces(self.context, batch, self.detector_options, self.should_stop)
        return [self._run_stages(image, faces) for image, faces in zip(batch, detected)]

    def _run_stages(self, image: np.ndarray, faces: List[FaceResult]) -> List[FaceResult]:
        if self.landmarks and self.context.has("landmarks"):
            self._check_cancelled("landmarks")
            faces = with_landmarks(self.context, image, faces, self.landmark_options)
        if self.descriptors:
            self._check_cancelled("descriptors")
            faces = with_alignment(faces, self.alignment_options)
            faces = with_descriptors(self.context, image, faces, extractor=self.extractor)
        if self.expressions:
            self._check_cancelled("expressions")
            faces = with_expressions(self.context, image, faces)
        if self.age_gender:
            self._check_cancelled("age_gender")
            faces = with_age_and_gender(self.context, image, faces)
        return faces

    def _check_cancelled(self, stage: str) -> None:
        if self.should_stop is not None and self.should_stop():
            raise CancelledError(f"pipeline cancelled before {stage} stage")
