from __future__ import annotations

import json

import pytest

from facepipe.config_manager import ConfigManager
from facepipe.errors import ConfigurationError
from facepipe.options import MtcnnOptions, SsdOptions, TinyFaceDetectorOptions


def test_defaults_build_valid_options(tmp_path):
    config = ConfigManager(str(tmp_path / "config.json"))
    assert config.validate_config()
    assert config.detector_options() == SsdOptions()
    assert config.get("mtcnn.score_thresholds") == [0.6, 0.7, 0.7]
    assert config.get("missing.key", "fallback") == "fallback"


def test_file_values_are_merged_over_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"detector": "mtcnn", "mtcnn": {"min_face_size": 40}}))

    config = ConfigManager(str(path))
    options = config.detector_options()
    assert isinstance(options, MtcnnOptions)
    assert options.min_face_size == 40
    assert options.score_thresholds == (0.6, 0.7, 0.7)


def test_set_with_dot_notation():
    config = ConfigManager("does-not-exist.json")
    config.set("detector", "tiny")
    config.set("tiny.input_size", 320)
    options = config.detector_options()
    assert isinstance(options, TinyFaceDetectorOptions)
    assert options.input_size == 320


def test_validate_lists_every_problem(tmp_path):
    config = ConfigManager(str(tmp_path / "config.json"))
    config.set("ssd.min_confidence", 1.5)
    config.set("ssd.iou_threshold", 0.0)
    config.set("max_database_items", 0)

    with pytest.raises(ConfigurationError) as exc_info:
        config.validate_config()
    assert len(exc_info.value.errors) == 3


def test_unknown_option_and_detector_are_rejected(tmp_path):
    config = ConfigManager(str(tmp_path / "config.json"))
    config.set("ssd.min_score", 0.3)
    with pytest.raises(ConfigurationError):
        config.detector_options()

    config.set("detector", "yolo")
    with pytest.raises(ConfigurationError):
        config.detector_options()


def test_save_creates_backup(tmp_path):
    path = tmp_path / "config.json"
    config = ConfigManager(str(path))
    assert config.save_config() == ""

    config.set("detector", "mtcnn")
    backup = config.save_config()
    assert backup.startswith(str(path) + ".backup.")
    assert json.loads(path.read_text())["detector"] == "mtcnn"


def test_invalid_json_raises(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("[1, 2")
    with pytest.raises(ConfigurationError):
        ConfigManager(str(path))
