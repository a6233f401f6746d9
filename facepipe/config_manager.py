#!/usr/bin/env python3
"""
Configuration Management Module
Handles loading and validating configuration files

Created: 2025
"""

import dataclasses
import json
import logging
import os
import shutil
from datetime import datetime
from typing import Any, Dict, List, Optional

from .errors import ConfigurationError
from .options import (
    AlignmentOptions,
    DetectorOptions,
    LandmarkOptions,
    MtcnnOptions,
    SsdOptions,
    TinyFaceDetectorOptions,
    as_tuple,
)

logger = logging.getLogger(__name__)

DETECTOR_SECTIONS = {
    "ssd": SsdOptions,
    "tiny": TinyFaceDetectorOptions,
    "mtcnn": MtcnnOptions,
}


def _options_defaults(options_cls) -> Dict[str, Any]:
    """JSON friendly defaults of an options dataclass."""
    return json.loads(json.dumps(dataclasses.asdict(options_cls())))


def build_options(options_cls, values: Dict[str, Any]):
    """Instantiate ``options_cls`` from a config section.

    Lists become tuples; unknown keys are reported as configuration errors.
    """
    known = {f.name for f in dataclasses.fields(options_cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigurationError([f"{options_cls.__name__}: unknown option {key!r}" for key in unknown])
    kwargs = {k: as_tuple(v) if isinstance(v, list) else v for k, v in values.items()}
    try:
        return options_cls(**kwargs)
    except TypeError as exc:
        raise ConfigurationError(f"{options_cls.__name__}: {exc}") from exc


class ConfigManager:
    """Configuration manager for the face analysis pipeline"""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager
        Args:
            config_path: Path to configuration file
        """
        self.config_path = config_path or "config.json"
        self.config = self._get_default_config()

        if os.path.exists(self.config_path):
            self.load_config()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration"""
        return {
            "detector": "ssd",
            "ssd": _options_defaults(SsdOptions),
            "tiny": _options_defaults(TinyFaceDetectorOptions),
            "mtcnn": _options_defaults(MtcnnOptions),
            "landmarks": _options_defaults(LandmarkOptions),
            "alignment": _options_defaults(AlignmentOptions),
            "recognition": {
                "distance_threshold": 0.6,
                "feature_norm": None
            },
            "models": {
                "directory": "models",
                "backend": "onnx",
                "providers": ["CPUExecutionProvider"]
            },
            "database_path": "face_database.json",
            "max_database_items": 2000,
            "logging": {
                "level": "INFO"
            }
        }

    def load_config(self) -> bool:
        """
        Load configuration from file and merge it over the defaults
        Returns:
            True if loaded successfully
        """
        try:
            with open(self.config_path, 'r') as f:
                loaded_config = json.load(f)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"{self.config_path} is not valid JSON: {exc}") from exc

        if not isinstance(loaded_config, dict):
            raise ConfigurationError(f"{self.config_path} must hold a JSON object")

        self._deep_update(self.config, loaded_config)
        logger.info("Configuration loaded from %s", self.config_path)
        return True

    def save_config(self) -> str:
        """
        Save current configuration to file, keeping a timestamped backup of
        the previous file
        Returns:
            Path of the backup, or "" when there was nothing to back up
        """
        backup_path = ""
        if os.path.exists(self.config_path):
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            backup_path = f"{self.config_path}.backup.{timestamp}"
            shutil.copy2(self.config_path, backup_path)
            logger.info("Backup created: %s", backup_path)

        with open(self.config_path, 'w') as f:
            json.dump(self.config, f, indent=2)

        logger.info("Configuration saved to %s", self.config_path)
        return backup_path

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value
        Args:
            key: Configuration key (supports dot notation, e.g., 'mtcnn.min_face_size')
            default: Default value if key not found
        Returns:
            Configuration value or default
        """
        keys = key.split('.')
        value = self.config

        try:
            for k in keys:
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any):
        """
        Set configuration value
        Args:
            key: Configuration key (supports dot notation)
            value: Value to set
        """
        keys = key.split('.')
        config = self.config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def _deep_update(self, base_dict: Dict, update_dict: Dict):
        for key, value in update_dict.items():
            if key in base_dict and isinstance(base_dict[key], dict) and isinstance(value, dict):
                self._deep_update(base_dict[key], value)
            else:
                base_dict[key] = value

    def detector_options(self) -> DetectorOptions:
        name = self.get('detector')
        if name not in DETECTOR_SECTIONS:
            raise ConfigurationError(f"detector must be one of {sorted(DETECTOR_SECTIONS)}, got {name!r}")
        return build_options(DETECTOR_SECTIONS[name], self.get(name, {}))

    def landmark_options(self) -> LandmarkOptions:
        return build_options(LandmarkOptions, self.get('landmarks', {}))

    def alignment_options(self) -> AlignmentOptions:
        return build_options(AlignmentOptions, self.get('alignment', {}))

    def validate_config(self) -> bool:
        """
        Validate configuration values
        Returns:
            True if configuration is valid
        Raises:
            ConfigurationError listing every problem found
        """
        errors: List[str] = []

        for build in (self.detector_options, self.landmark_options, self.alignment_options):
            try:
                build()
            except ConfigurationError as exc:
                errors.extend(exc.errors)

        threshold = self.get('recognition.distance_threshold', 0)
        if not isinstance(threshold, (int, float)) or threshold < 0:
            errors.append("recognition.distance_threshold must be a non-negative number")

        if self.get('recognition.feature_norm') not in (None, "l2", "zscore"):
            errors.append("recognition.feature_norm must be null, 'l2' or 'zscore'")

        if self.get('models.backend') not in ("onnx", "ncnn"):
            errors.append("models.backend must be 'onnx' or 'ncnn'")

        if self.get('max_database_items', 0) <= 0:
            errors.append("max_database_items must be positive")

        database_path = self.get('database_path')
        if database_path:
            database_dir = os.path.dirname(database_path)
            if database_dir and not os.path.exists(database_dir):
                errors.append(f"Database directory does not exist: {database_dir}")

        models_dir = self.get('models.directory')
        if models_dir and not os.path.isdir(models_dir):
            logger.warning("Models directory does not exist: %s", models_dir)

        if errors:
            raise ConfigurationError(errors)
        return True
