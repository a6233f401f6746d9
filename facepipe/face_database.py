#!/usr/bin/env python3
"""
Face Database Management Module
Stores labeled face descriptors on disk as JSON and builds matcher galleries

Created: 2025
"""

import base64
import json
import logging
import os
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from .errors import InvalidInputError
from .matcher import DEFAULT_DISTANCE_THRESHOLD, FaceMatcher, euclidean_distance
from .types import UNKNOWN_LABEL, FaceMatch, LabeledDescriptor, as_descriptor

logger = logging.getLogger(__name__)


class FaceDatabase:
    """Labeled descriptors persisted as JSON"""

    def __init__(self, database_path: str = "face_database.json", max_items: int = 2000,
                 distance_threshold: float = DEFAULT_DISTANCE_THRESHOLD, autoload: bool = True):
        """
        Initialize face database
        Args:
            database_path: Path to save/load database
            max_items: Maximum number of descriptors in database
            distance_threshold: Largest distance still reported as a match
            autoload: Load ``database_path`` right away when it exists
        """
        self.database_path = database_path
        self.max_items = max_items
        self.distance_threshold = distance_threshold

        self.faces: Dict[str, List[np.ndarray]] = {}
        self.face_names: List[str] = []

        if autoload:
            self.load_database()

    @property
    def total_faces(self) -> int:
        return sum(len(features) for features in self.faces.values())

    def add_descriptor(self, name: str, descriptor: Sequence[float]) -> bool:
        """
        Add one descriptor for ``name``
        Returns:
            False if the database is full
        """
        if not name or name == UNKNOWN_LABEL:
            raise InvalidInputError(f"invalid person name {name!r}")
        if self.total_faces >= self.max_items:
            logger.warning("Database full (max %d faces)", self.max_items)
            return False

        vector = as_descriptor(descriptor)
        existing = self._feature_dim()
        if existing is not None and vector.size != existing:
            raise InvalidInputError(f"descriptor has {vector.size} values, database holds {existing}")

        if name not in self.faces:
            self.faces[name] = []
            self.face_names.append(name)
        self.faces[name].append(vector)
        logger.debug("Added descriptor for %s (total: %d)", name, len(self.faces[name]))
        return True

    def recognize(self, descriptor: Sequence[float], threshold: Optional[float] = None) -> FaceMatch:
        if not self.faces:
            return FaceMatch(UNKNOWN_LABEL, float("inf"))
        return self.matcher(threshold).find_best_match(descriptor)

    def recognize_all(
        self,
        descriptors: Sequence[Optional[Sequence[float]]],
        threshold: Optional[float] = None,
    ) -> List[Optional[FaceMatch]]:
        """Match every descriptor against one gallery snapshot; ``None`` entries stay ``None``."""
        if not self.faces:
            return [None if d is None else FaceMatch(UNKNOWN_LABEL, float("inf")) for d in descriptors]
        matcher = self.matcher(threshold)
        return [None if d is None else matcher.find_best_match(d) for d in descriptors]

    def matcher(self, threshold: Optional[float] = None) -> FaceMatcher:
        return FaceMatcher(self.to_gallery(), self.distance_threshold if threshold is None else threshold)

    def to_gallery(self) -> List[LabeledDescriptor]:
        return [LabeledDescriptor.create(name, self.faces[name]) for name in self.face_names]

    def _deduplicate_person(self, name: str, min_distance: float) -> int:
        kept: List[np.ndarray] = []
        for vec in self.faces.get(name, []):
            if any(euclidean_distance(vec, other) <= min_distance for other in kept):
                continue
            kept.append(vec)
        removed = len(self.faces.get(name, [])) - len(kept)
        if removed:
            self.faces[name] = kept
        return removed

    def deduplicate(self, min_distance: float = 0.05) -> Dict[str, int]:
        """
        Drop descriptors within ``min_distance`` of an earlier one for the same person.

        Returns:
            Dict mapping person names to the number of entries removed.
        """
        summary: Dict[str, int] = {}
        for name in list(self.faces.keys()):
            removed = self._deduplicate_person(name, min_distance)
            if removed:
                summary[name] = removed
        return summary

    def remove_person(self, name: str) -> bool:
        if name in self.faces:
            del self.faces[name]
            self.face_names.remove(name)
            logger.info("Removed %s from database", name)
            return True
        return False

    def save_database(self, path: Optional[str] = None) -> str:
        """
        Save database to ``path`` (defaults to ``database_path``)
        Returns:
            The path written
        """
        path = path or self.database_path
        database_data = {
            'face_names': self.face_names,
            'faces': {name: [vec.tolist() for vec in self.faces[name]] for name in self.face_names},
            'max_items': self.max_items,
        }
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(database_data, f, indent=2)
        logger.info("Database saved to %s", path)
        return path

    def load_database(self, path: Optional[str] = None) -> bool:
        """
        Load database from file
        Returns:
            False if the file does not exist
        """
        path = path or self.database_path
        if not os.path.exists(path):
            logger.info("Database file not found: %s", path)
            return False

        try:
            with open(path, 'r') as f:
                database_data = json.load(f)
        except json.JSONDecodeError as exc:
            raise InvalidInputError(f"corrupt database file {path}: {exc}") from exc

        faces = self._normalise_faces(database_data.get('faces', {}))
        names = [n for n in database_data.get('face_names', []) if n in faces]
        names += [n for n in faces if n not in names]

        self.faces = faces
        self.face_names = names
        self.max_items = database_data.get('max_items', self.max_items)
        logger.info("Database loaded: %d people, %d total faces", len(self.face_names), self.total_faces)
        return True

    @staticmethod
    def _normalise_faces(raw_faces: Dict[str, List[Any]]) -> Dict[str, List[np.ndarray]]:
        """Accept plain lists or ``{"features": <base64 float32>}`` entries."""
        normalised: Dict[str, List[np.ndarray]] = {}
        for name, entries in raw_faces.items():
            vectors = []
            for entry in entries:
                if isinstance(entry, dict):
                    payload = entry.get('features')
                    if isinstance(payload, str):
                        try:
                            payload = np.frombuffer(base64.b64decode(payload), dtype=np.float32)
                        except (ValueError, TypeError) as exc:
                            raise InvalidInputError(f"undecodable descriptor for {name!r}") from exc
                    entry = payload
                if entry is None or len(entry) == 0:
                    continue
                vectors.append(as_descriptor(entry))
            if vectors:
                normalised[name] = vectors
        return normalised

    def _feature_dim(self) -> Optional[int]:
        for vectors in self.faces.values():
            if vectors:
                return int(vectors[0].size)
        return None

    def get_statistics(self) -> Dict:
        total_faces = self.total_faces
        return {
            'total_people': len(self.face_names),
            'total_faces': total_faces,
            'max_items': self.max_items,
            'feature_dim': self._feature_dim(),
            'usage_percent': (total_faces / self.max_items) * 100 if self.max_items > 0 else 0,
            'person_stats': {name: len(self.faces.get(name, [])) for name in self.face_names},
        }

    def print_statistics(self):
        stats = self.get_statistics()
        print("=== Face Database Statistics ===")
        print(f"Total People: {stats['total_people']}")
        print(f"Total Faces: {stats['total_faces']}")
        print(f"Database Usage: {stats['usage_percent']:.1f}%")
        print("\nPer-person breakdown:")
        for name, count in stats['person_stats'].items():
            print(f"  {name}: {count} faces")
