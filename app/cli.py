#!/usr/bin/env python3
"""CLI entry point for the face analysis pipeline."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

# Ensure facepipe is importable regardless of entry location
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from facepipe.backends import NetworkContext, load_ncnn_context, load_onnx_context
from facepipe.config_manager import ConfigManager
from facepipe.errors import FaceAnalysisError
from facepipe.face_database import FaceDatabase
from facepipe.net_input import load_image
from facepipe.pipeline import FacePipeline
from facepipe.types import FaceMatch, FaceResult

logger = logging.getLogger(__name__)


class FaceAnalysisSystem:
    """Loaded networks, the configured pipeline and the face gallery."""

    def __init__(self, config: ConfigManager, context: Optional[NetworkContext] = None,
                 database_path: Optional[str] = None) -> None:
        self.config = config
        self.context = context or self._load_context()
        self.face_database = FaceDatabase(
            database_path or config.get("database_path"),
            max_items=config.get("max_database_items", 2000),
            distance_threshold=config.get("recognition.distance_threshold", 0.6),
        )
        self.landmarks_enabled = False
        self.descriptors_enabled = False
        self.pipeline = self._build_pipeline()

    def _load_context(self) -> NetworkContext:
        models_dir = self.config.get("models.directory", "models")
        if self.config.get("models.backend") == "ncnn":
            return load_ncnn_context(
                models_dir,
                self.config.get("models.ncnn_blobs", {}),
                self.config.get("models.ncnn_inputs"),
                use_vulkan=bool(self.config.get("models.use_vulkan", False)),
            )
        return load_onnx_context(models_dir, providers=self.config.get("models.providers"))

    def _build_pipeline(self) -> FacePipeline:
        return FacePipeline(
            self.context,
            detector_options=self.config.detector_options(),
            landmark_options=self.config.landmark_options(),
            alignment_options=self.config.alignment_options(),
            landmarks=self.landmarks_enabled,
            descriptors=self.descriptors_enabled,
            feature_norm=self.config.get("recognition.feature_norm"),
        )

    def configure(self, landmarks: bool, descriptors: bool) -> None:
        self.landmarks_enabled = landmarks
        self.descriptors_enabled = descriptors
        self.pipeline = self._build_pipeline()

    def analyze(self, images: Sequence[np.ndarray]) -> List[List[FaceResult]]:
        return self.pipeline.run(images)

    def recognize(self, results: Sequence[FaceResult]) -> List[Optional[FaceMatch]]:
        if not self.face_database.faces:
            return [None] * len(results)
        return self.face_database.recognize_all([r.descriptor for r in results])

    def enroll(self, name: str, image: np.ndarray) -> bool:
        """Add the highest scoring face of ``image`` under ``name``."""
        described = [r for r in self.analyze([image])[0] if r.descriptor is not None]
        if not described:
            print(f"No face found to enroll for {name}")
            return False
        best = max(described, key=lambda r: r.detection.score)
        return self.face_database.add_descriptor(name, best.descriptor)

    def draw_results(self, image: np.ndarray, results: Sequence[FaceResult],
                     matches: Sequence[Optional[FaceMatch]]) -> np.ndarray:
        frame = cv2.cvtColor(image, cv2.COLOR_RGB2BGR)
        for result, match in zip(results, matches):
            self._draw_single_face(frame, result, match)
        return frame

    def _draw_single_face(self, frame: np.ndarray, result: FaceResult, match: Optional[FaceMatch]) -> None:
        box = result.detection.box.round()
        x, y, x2, y2 = (int(v) for v in box.corners())
        color = (255, 255, 255) if match is None or not match.is_unknown else (80, 255, 255)
        cv2.rectangle(frame, (x, y), (x2, y2), color, 2)

        if result.landmarks is not None:
            for point in result.landmarks.positions:
                cv2.circle(frame, (int(round(point.x)), int(round(point.y))), 2, (0, 255, 255), -1)

        label = match.label if match is not None else f"{result.detection.score:.2f}"
        self._draw_label(frame, label, (x, y), color)

    def _draw_label(self, frame: np.ndarray, text: str, pos: Tuple[int, int], color: Tuple[int, int, int]) -> None:
        x, y = pos
        font = cv2.FONT_HERSHEY_SIMPLEX
        font_scale = 0.6
        thickness = 1
        (text_width, text_height), baseline = cv2.getTextSize(text, font, font_scale, thickness)
        if y < text_height + baseline:
            y = text_height + baseline
        if x + text_width > frame.shape[1]:
            x = frame.shape[1] - text_width
        cv2.rectangle(frame, (x, y - text_height - baseline), (x + text_width, y + baseline), color, -1)
        cv2.putText(frame, text, (x, y), font, font_scale, (0, 0, 0), thickness)

    def close(self) -> None:
        self.context.dispose()


def result_to_dict(result: FaceResult, match: Optional[FaceMatch]) -> Dict[str, object]:
    box = result.detection.box
    payload: Dict[str, object] = {
        "box": [box.x, box.y, box.width, box.height],
        "score": result.detection.score,
    }
    if result.landmarks is not None:
        payload["landmarks"] = [list(p.as_tuple()) for p in result.landmarks.positions]
    if result.aligned_box is not None:
        aligned = result.aligned_box
        payload["aligned_box"] = [aligned.x, aligned.y, aligned.width, aligned.height]
    if result.descriptor is not None:
        payload["descriptor"] = [float(v) for v in result.descriptor]
    if match is not None:
        payload["match"] = {"label": match.label, "distance": match.distance}
    return payload


def print_results(path: str, results: Sequence[FaceResult], matches: Sequence[Optional[FaceMatch]]) -> None:
    print(f"{path}: {len(results)} face(s)")
    for i, (result, match) in enumerate(zip(results, matches)):
        box = result.detection.box
        line = (f"  [{i}] box=({box.x:.1f}, {box.y:.1f}, {box.width:.1f}, {box.height:.1f}) "
                f"score={result.detection.score:.3f}")
        if result.landmarks is not None:
            line += f" landmarks={len(result.landmarks)}"
        if match is not None:
            line += f" match={match.label} ({match.distance:.3f})"
        print(line)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Face Analysis - detection, landmarks, alignment and descriptor matching",
        formatter_class=argparse.RawTextHelpFormatter,
    )

    parser.add_argument("images", type=str, nargs="+", help="Image files to analyse")
    parser.add_argument("--config", type=str, help="Configuration file path")
    parser.add_argument("--models", type=str, help="Directory holding <role>.onnx model files")
    parser.add_argument("--detector", type=str, choices=["ssd", "tiny", "mtcnn"], help="Override the configured detector")
    parser.add_argument("--landmarks", action="store_true", help="Predict facial landmarks")
    parser.add_argument("--descriptors", action="store_true", help="Compute face descriptors (implies --landmarks)")
    parser.add_argument("--gallery", type=str, help="Face database JSON to match descriptors against")
    parser.add_argument("--enroll", type=str, metavar="NAME", help="Add the best face of each image to the gallery as NAME")
    parser.add_argument("--threshold", type=float, help="Distance threshold for a match")
    parser.add_argument("--output", type=str, help="Directory for annotated copies of the images")
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    args = parser.parse_args(argv)

    config = ConfigManager(args.config)
    if args.models:
        config.set("models.directory", args.models)
    if args.detector:
        config.set("detector", args.detector)
    if args.threshold is not None:
        config.set("recognition.distance_threshold", args.threshold)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, str(config.get("logging.level", "INFO")).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config.validate_config()
        system = FaceAnalysisSystem(config, database_path=args.gallery)
    except FaceAnalysisError as exc:
        print(f"Error: {exc}")
        return 2

    use_descriptors = args.descriptors or bool(args.gallery) or bool(args.enroll)
    system.configure(landmarks=args.landmarks or use_descriptors, descriptors=use_descriptors)

    report = {}
    try:
        for path in args.images:
            image = load_image(path)

            if args.enroll:
                if system.enroll(args.enroll, image):
                    print(f"Enrolled {args.enroll} from {path}")
                continue

            results = system.analyze([image])[0]
            matches = system.recognize(results) if args.gallery else [None] * len(results)

            if args.json:
                report[path] = [result_to_dict(r, m) for r, m in zip(results, matches)]
            else:
                print_results(path, results, matches)

            if args.output:
                out_dir = Path(args.output)
                out_dir.mkdir(parents=True, exist_ok=True)
                cv2.imwrite(str(out_dir / Path(path).name), system.draw_results(image, results, matches))

        if args.enroll:
            system.face_database.save_database()
            system.face_database.print_statistics()
    except FaceAnalysisError as exc:
        print(f"Error: {exc}")
        return 1
    finally:
        system.close()

    if args.json:
        print(json.dumps(report, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
