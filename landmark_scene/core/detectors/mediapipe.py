"""MediaPipe Tasks landmark detector integration.

MediaPipe is imported lazily so the rest of the service (and the test suite)
works without it; the detectors raise on construction when it is missing or
when the `.task` model asset cannot be loaded.
"""

from __future__ import annotations

import importlib
import logging
from pathlib import Path
from typing import Any

import cv2
import numpy as np

from landmark_scene.core.config.settings import SceneSettings
from landmark_scene.core.types import DetectionResult, Landmark, LandmarkSet

logger = logging.getLogger(__name__)

FACE_LANDMARK_COUNT = 478
POSE_LANDMARK_COUNT = 33


def _import_mediapipe() -> Any:
    try:
        return importlib.import_module("mediapipe")
    except ModuleNotFoundError as exc:
        raise RuntimeError(
            "mediapipe is not installed; install the 'detectors' extra"
        ) from exc


def _import_tasks() -> tuple[Any, Any]:
    """Return the (vision, base) task modules of an installed MediaPipe."""

    vision = importlib.import_module("mediapipe.tasks.python.vision")
    base = importlib.import_module("mediapipe.tasks.python")
    return vision, base


def _check_model(model_path: str) -> str:
    path = Path(model_path)
    if not path.exists():
        raise FileNotFoundError(f"Landmarker model not found: {path}")
    return str(path)


def _to_mp_image(mp: Any, frame: np.ndarray) -> Any:
    rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
    return mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)


def face_result_to_detection(result: Any, timestamp_ms: int) -> DetectionResult:
    """Convert a `FaceLandmarkerResult` to a `DetectionResult` (first face only)."""

    faces = getattr(result, "face_landmarks", None) if result is not None else None
    if not faces:
        return DetectionResult(timestamp_ms=timestamp_ms)
    landmarks: LandmarkSet = tuple(
        Landmark(u=float(lm.x), v=float(lm.y), depth=float(lm.z)) for lm in faces[0]
    )
    return DetectionResult(timestamp_ms=timestamp_ms, landmarks=landmarks or None)


def pose_result_to_detection(result: Any, timestamp_ms: int) -> DetectionResult:
    """Convert a `PoseLandmarkerResult` to a `DetectionResult` (first person only).

    Both the normalized list and the world list must be present; otherwise the
    result reports no subject.
    """

    if result is None:
        return DetectionResult(timestamp_ms=timestamp_ms)
    image_lists = getattr(result, "pose_landmarks", None)
    world_lists = getattr(result, "pose_world_landmarks", None)
    if not image_lists or not world_lists:
        return DetectionResult(timestamp_ms=timestamp_ms)

    image = tuple(
        Landmark(u=float(lm.x), v=float(lm.y), depth=float(lm.z)) for lm in image_lists[0]
    )
    # World entries keep the matching image coordinates so both lists stay index-aligned.
    world = tuple(
        Landmark(u=img.u, v=img.v, world=(float(lm.x), float(lm.y), float(lm.z)))
        for img, lm in zip(image, world_lists[0])
    )
    if not image or not world:
        return DetectionResult(timestamp_ms=timestamp_ms)
    return DetectionResult(timestamp_ms=timestamp_ms, landmarks=image, world_landmarks=world)


class MediaPipeFaceDetector:
    """Face mesh detector wrapper around MediaPipe `FaceLandmarker` (VIDEO mode)."""

    mode = "face"
    max_landmarks = FACE_LANDMARK_COUNT

    def __init__(
        self,
        model_path: str,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
    ) -> None:
        self._mp = _import_mediapipe()
        vision, base = _import_tasks()
        self.model_path = _check_model(model_path)
        options = vision.FaceLandmarkerOptions(
            base_options=base.BaseOptions(model_asset_path=self.model_path),
            running_mode=vision.RunningMode.VIDEO,
            num_faces=1,
            output_face_blendshapes=False,
            output_facial_transformation_matrixes=False,
            min_face_detection_confidence=min_detection_confidence,
            min_tracking_confidence=min_tracking_confidence,
        )
        self.model = vision.FaceLandmarker.create_from_options(options)
        logger.info("Loaded MediaPipe face landmarker: %s", self.model_path)

    def detect(self, frame: np.ndarray, timestamp_ms: int) -> DetectionResult:
        """Run the landmarker on one BGR frame; timestamps must increase."""

        result = self.model.detect_for_video(_to_mp_image(self._mp, frame), int(timestamp_ms))
        return face_result_to_detection(result, int(timestamp_ms))

    def close(self) -> None:
        self.model.close()


class MediaPipePoseDetector:
    """Body pose detector wrapper around MediaPipe `PoseLandmarker` (VIDEO mode)."""

    mode = "pose"
    max_landmarks = POSE_LANDMARK_COUNT

    def __init__(
        self,
        model_path: str,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
    ) -> None:
        self._mp = _import_mediapipe()
        vision, base = _import_tasks()
        self.model_path = _check_model(model_path)
        options = vision.PoseLandmarkerOptions(
            base_options=base.BaseOptions(model_asset_path=self.model_path),
            running_mode=vision.RunningMode.VIDEO,
            num_poses=1,
            min_pose_detection_confidence=min_detection_confidence,
            min_tracking_confidence=min_tracking_confidence,
        )
        self.model = vision.PoseLandmarker.create_from_options(options)
        logger.info("Loaded MediaPipe pose landmarker: %s", self.model_path)

    def detect(self, frame: np.ndarray, timestamp_ms: int) -> DetectionResult:
        """Run the landmarker on one BGR frame; timestamps must increase."""

        result = self.model.detect_for_video(_to_mp_image(self._mp, frame), int(timestamp_ms))
        return pose_result_to_detection(result, int(timestamp_ms))

    def close(self) -> None:
        self.model.close()


def build_detector(settings: SceneSettings) -> MediaPipeFaceDetector | MediaPipePoseDetector:
    """Instantiate the detector matching `settings.tracking_mode`."""

    if settings.tracking_mode == "pose":
        return MediaPipePoseDetector(
            settings.pose_model_path,
            settings.min_detection_confidence,
            settings.min_tracking_confidence,
        )
    return MediaPipeFaceDetector(
        settings.face_model_path,
        settings.min_detection_confidence,
        settings.min_tracking_confidence,
    )
