from __future__ import annotations

import os
from pathlib import Path

import numpy as np
import pytest

from facepipe.errors import BackendError, CancelledError
from facepipe.matcher import FaceMatcher
from facepipe.options import AlignmentOptions, MtcnnOptions, SsdOptions, TinyFaceDetectorOptions
from facepipe.pipeline import (
    FacePipeline,
    detect_all_faces,
    detect_single_face,
    with_age_and_gender,
    with_descriptors,
    with_expressions,
    with_landmarks,
)

from test_detectors import ssd_network

# six faces in a 640 x 480 image, (x, y, w, h)
FACES = [
    (20, 30, 80, 100),
    (150, 40, 90, 110),
    (300, 20, 70, 90),
    (450, 60, 100, 120),
    (60, 280, 95, 105),
    (350, 300, 110, 130),
]
IMAGE_SIZE = (480, 640)


def six_face_image() -> np.ndarray:
    image = np.zeros(IMAGE_SIZE + (3,), dtype=np.uint8)
    for i, (x, y, w, h) in enumerate(FACES):
        image[y:y + h, x:x + w] = 40 * (i + 1)
    return image


def landmark_network(inputs):
    points = np.full((68, 2), 0.5)
    points[36:42] = (0.35, 0.4)
    points[42:48] = (0.65, 0.4)
    points[48:68] = (0.5, 0.75)
    return [np.tile(points.reshape(-1), (inputs.shape[0], 1))]


def recognition_network(inputs):
    # NHWC input; descriptor tracks mean intensity so every face differs
    means = inputs.reshape(inputs.shape[0], -1).mean(axis=1)
    return [np.repeat(means[:, None], 128, axis=1)]


def full_context(make_context, boxes_per_image):
    options = SsdOptions()
    networks = {
        "ssd": ssd_network(options, boxes_per_image),
        "landmarks": landmark_network,
        "recognition": recognition_network,
        "expression": lambda x: [np.tile(np.arange(7, dtype=np.float64), (x.shape[0], 1))],
        "age_gender": lambda x: [np.full((x.shape[0],), 30.0), np.tile([2.0, 0.0], (x.shape[0], 1))],
    }
    return make_context(networks)


def network_boxes(faces, width, height, input_size=512):
    scale = input_size / float(max(width, height))
    return [(x * scale, y * scale, w * scale, h * scale) for x, y, w, h in faces]


def test_six_faces_end_to_end(make_context):
    image = six_face_image()
    context = full_context(make_context, [network_boxes(FACES, 640, 480)])

    results = FacePipeline(context, descriptors=True).run([image])[0]

    assert len(results) == 6
    by_position = sorted(results, key=lambda r: (r.detection.box.y > 200, r.detection.box.x))
    expected = sorted(FACES, key=lambda f: (f[1] > 200, f[0]))
    for result, (x, y, w, h) in zip(by_position, expected):
        box = result.detection.box
        assert (box.x, box.y, box.width, box.height) == pytest.approx((x, y, w, h), abs=5)
        assert len(result.landmarks) == 68
        # left eye centre sits at 35% / 40% of the crop
        eye = np.mean([p.as_tuple() for p in result.landmarks.positions[36:42]], axis=0)
        assert eye[0] == pytest.approx(x + 0.35 * max(w, h) - (max(w, h) - w) / 2, abs=4)
        assert result.aligned_box is not None
        assert result.aligned_box.width == pytest.approx(result.aligned_box.height)
        assert result.descriptor.shape == (128,)

    matcher = FaceMatcher.from_results(results, labels=[f"face {i}" for i in range(6)])
    for i, match in enumerate(matcher.match_results(results)):
        assert match.label == f"face {i}"
        assert match.distance == pytest.approx(0.0)

    assert context.backend.num_tensors == 0


def test_batch_results_follow_input_order(make_context):
    small = np.zeros((200, 300, 3), np.uint8)
    tall = np.zeros((400, 100, 3), np.uint8)
    boxes = [network_boxes([(10, 10, 50, 50)], 300, 200), network_boxes([(20, 100, 60, 60), (20, 250, 60, 60)], 100, 400)]
    context = full_context(make_context, boxes)

    results = detect_all_faces(context, [small, tall])

    assert [len(r) for r in results] == [1, 2]
    assert results[0][0].detection.image_width == 300
    assert all(r.detection.image_height == 400 for r in results[1])


def test_single_face_takes_highest_score(make_context):
    options = SsdOptions()
    boxes = network_boxes([(10, 10, 50, 50)], 300, 200)

    def two_scores(inputs):
        scores, regs = ssd_network(options, [boxes])(inputs)
        scores[scores > 0] = 0.7
        return [scores, regs]

    context = make_context({"ssd": two_scores})
    face = detect_single_face(context, np.zeros((200, 300, 3), np.uint8))
    assert face.detection.score == pytest.approx(0.7)

    empty = make_context({"ssd": ssd_network(options, [[]])})
    assert detect_single_face(empty, np.zeros((200, 300, 3), np.uint8)) is None


def test_individual_stages_fill_their_fields(make_context):
    image = six_face_image()
    context = full_context(make_context, [network_boxes(FACES[:2], 640, 480)])

    faces = detect_all_faces(context, [image])[0]
    faces = with_landmarks(context, image, faces)
    faces = with_descriptors(context, image, faces, AlignmentOptions(method="dlib"))
    faces = with_expressions(context, image, faces)
    faces = with_age_and_gender(context, image, faces)

    for face in faces:
        assert face.expressions.dominant == "surprised"
        assert face.age_gender.gender == "male"
        assert face.age_gender.age == pytest.approx(30.0)
    assert context.backend.num_tensors == 0


def test_backend_failure_releases_tensors(make_context):
    def broken(inputs):
        raise RuntimeError("device lost")

    context = make_context({"ssd": ssd_network(SsdOptions(), [network_boxes(FACES, 640, 480)]), "landmarks": broken})
    faces = detect_all_faces(context, [six_face_image()])[0]

    with pytest.raises(BackendError):
        with_landmarks(context, six_face_image(), faces)
    assert context.backend.num_tensors == 0


def test_missing_network_is_reported(make_context):
    context = make_context({})
    with pytest.raises(BackendError):
        detect_all_faces(context, [six_face_image()])


def test_cascade_landmarks_feed_alignment(make_context):
    from test_mtcnn import onet, pnet, rnet

    context = make_context({"pnet": pnet(), "rnet": rnet, "onet": onet, "recognition": recognition_network})
    pipeline = FacePipeline(context, detector_options=MtcnnOptions(scale_steps=(1.0,)), descriptors=True)
    results = pipeline.run([np.full((48, 48, 3), 90, np.uint8)])[0]

    assert len(results) == 1
    assert len(results[0].landmarks) == 5
    assert results[0].descriptor is not None


def test_pipeline_cancellation(make_context):
    context = full_context(make_context, [network_boxes(FACES, 640, 480)])
    pipeline = FacePipeline(context, should_stop=lambda: True)
    with pytest.raises(CancelledError):
        pipeline.run([six_face_image()])
    assert context.backend.called("landmarks") == 0


MODELS_DIR = Path(os.environ.get("FACEPIPE_MODELS", Path(__file__).resolve().parents[1] / "models"))
SAMPLE_IMAGE = MODELS_DIR.parent / "test_images" / "faces.jpg"


def test_real_models_find_six_faces():
    if not (MODELS_DIR / "ssd.onnx").exists() or not SAMPLE_IMAGE.exists():
        pytest.skip(f"models or sample image not found under {MODELS_DIR.parent}")
    pytest.importorskip("onnxruntime")

    from facepipe.backends import load_onnx_context

    context = load_onnx_context(str(MODELS_DIR))
    try:
        results = detect_all_faces(context, [str(SAMPLE_IMAGE)])[0]
        assert len(results) == 6
        assert context.backend.num_tensors == 0
    finally:
        context.dispose()


def test_alpha_channel_image_runs_every_stage(make_context):
    rgba = np.dstack([six_face_image(), np.full(IMAGE_SIZE, 255, np.uint8)])
    context = full_context(make_context, [network_boxes(FACES[:3], 640, 480)])

    faces = detect_all_faces(context, [rgba])[0]
    faces = with_landmarks(context, rgba, faces)
    faces = with_descriptors(context, rgba, faces)
    faces = with_expressions(context, rgba, faces)

    assert len(faces) == 3
    assert all(f.descriptor is not None and f.expressions is not None for f in faces)
    assert all(shape[-1] == 3 for _, shape in context.backend.calls)
    assert context.backend.num_tensors == 0


def test_alpha_channel_image_with_tiny_detector(make_context):
    options = TinyFaceDetectorOptions()
    cells = options.input_size // options.stride

    def tiny(inputs):
        grid = np.full((inputs.shape[0], cells, cells, len(options.anchors), 5), -10.0)
        grid[:, 2, 2, 0] = [0.0, 0.0, 0.0, 0.0, 5.0]
        return [grid]

    context = make_context({"tiny": tiny, "landmarks": landmark_network})
    results = FacePipeline(context, detector_options=options).run([np.zeros((100, 120, 4), np.uint8)])[0]

    assert len(results) == 1
    assert len(results[0].landmarks) == 68
