"""Landmark pipeline orchestration.

This module ties together landmark detection, camera setup and projection into
a single per-frame processing pipeline that fills a `MarkerBuffer`.
"""

from __future__ import annotations

import time
from typing import Protocol

import numpy as np

from landmark_scene.core.camera import PerspectiveCamera
from landmark_scene.core.config.settings import SceneParams
from landmark_scene.core.markers import MarkerBuffer
from landmark_scene.core.projectors.base import LandmarkProjector
from landmark_scene.core.types import DetectionResult, FrameSummary, uv_array


class LandmarkDetector(Protocol):
    """Minimal detector interface expected by `LandmarkPipeline`."""

    # Detectors may also expose `max_landmarks`; the pipeline checks it
    # against the marker buffer capacity.

    def detect(self, frame: np.ndarray, timestamp_ms: int) -> DetectionResult:
        """Return the primary subject's landmarks for one frame."""

    def close(self) -> None:
        """Release model resources."""


class LandmarkPipeline:
    """End-to-end per-frame landmark processing.

    Responsibilities:
    - drop frames whose timestamp does not advance
    - keep the camera's aspect ratio and field of view in sync with the frame
      and the live parameters
    - run the detector and hand its result to the projector
    - summarize the marker buffer for publishing

    The projector and the marker buffer are only touched from the thread that
    calls `process`.
    """

    def __init__(
        self,
        detector: LandmarkDetector,
        projector: LandmarkProjector,
        camera: PerspectiveCamera | None = None,
        params: SceneParams | None = None,
        markers: MarkerBuffer | None = None,
    ) -> None:
        self.detector = detector
        self.projector = projector
        self.camera = camera or PerspectiveCamera()
        self.params = params or SceneParams()
        self.markers = markers or MarkerBuffer(478)
        max_landmarks = getattr(detector, "max_landmarks", None)
        if max_landmarks is not None and int(max_landmarks) > self.markers.capacity:
            raise ValueError(
                f"marker capacity {self.markers.capacity} is smaller than the "
                f"{max_landmarks} landmarks the detector can report"
            )
        self.frame_id = 0
        self.last_timestamp_ms: int | None = None
        self._last_summary: FrameSummary | None = None
        # Use a monotonic clock for FPS deltas; keep wall-clock timestamps for payloads.
        self._last_fps_at = time.perf_counter()
        self._fps = 0.0

    @property
    def mode(self) -> str:
        return self.projector.mode

    def _sync_camera(self, frame: np.ndarray, params: SceneParams) -> None:
        h, w = frame.shape[:2]
        if h > 0 and w > 0:
            self.camera.aspect = float(w) / float(h)
        self.camera.fov = float(params.fov)
        self.camera.update_projection_matrix()

    def _update_fps(self) -> None:
        now_perf = time.perf_counter()
        dt = now_perf - self._last_fps_at
        if dt > 0:
            instant_fps = 1.0 / dt
            alpha = 0.1
            self._fps = (
                instant_fps if self._fps == 0 else (self._fps * (1.0 - alpha) + instant_fps * alpha)
            )
        self._last_fps_at = now_perf

    def _is_stale(self, timestamp_ms: int) -> bool:
        return self.last_timestamp_ms is not None and timestamp_ms <= self.last_timestamp_ms

    def _process_internal(
        self, frame: np.ndarray, timestamp_ms: int, profile: bool
    ) -> tuple[FrameSummary, np.ndarray, dict[str, float]]:
        """Process one frame and return (summary, frame, timings)."""

        timings: dict[str, float] = {}
        t_all0 = time.perf_counter() if profile else 0.0

        if self._is_stale(timestamp_ms) and self._last_summary is not None:
            if profile:
                timings["stale"] = 1.0
                timings["pipeline_ms"] = (time.perf_counter() - t_all0) * 1000.0
            return self._last_summary, frame, timings

        self.last_timestamp_ms = int(timestamp_ms)
        self.frame_id += 1
        h, w = frame.shape[:2]

        # One params object per frame; live updates swap in a new one.
        params = self.params
        self._sync_camera(frame, params)

        t_det0 = time.perf_counter() if profile else 0.0
        result = self.detector.detect(frame, int(timestamp_ms))
        if profile:
            timings["detect_ms"] = (time.perf_counter() - t_det0) * 1000.0

        t_proj0 = time.perf_counter() if profile else 0.0
        report = self.projector.project(result, self.camera, params, self.markers)
        if profile:
            timings["project_ms"] = (time.perf_counter() - t_proj0) * 1000.0

        self._update_fps()

        landmarks_2d = uv_array(result.landmarks).tolist() if result.landmarks else None
        summary = FrameSummary(
            frame_id=self.frame_id,
            timestamp=time.time(),
            mode=self.projector.mode,
            count=report.count,
            positions=self.markers.positions().tolist(),
            marker_scale=self.projector.marker_scale,
            fps=self._fps,
            frame_size=(w, h),
            skipped=report.skipped,
            alignment_cost=report.cost,
            landmarks_2d=landmarks_2d,
        )

        if profile:
            timings["pipeline_ms"] = (time.perf_counter() - t_all0) * 1000.0
            summary.profile = dict(timings)
        self._last_summary = summary
        return summary, frame, timings

    def process(self, frame: np.ndarray, timestamp_ms: int) -> tuple[FrameSummary, np.ndarray]:
        """Process a frame and return (summary, frame).

        A timestamp that does not advance past the last processed one returns
        the previous summary without running the detector or projector.
        """

        summary, out_frame, _timings = self._process_internal(frame, timestamp_ms, profile=False)
        return summary, out_frame

    def process_with_profile(
        self, frame: np.ndarray, timestamp_ms: int
    ) -> tuple[FrameSummary, np.ndarray, dict[str, float]]:
        """Process a frame and return (summary, frame, timings).

        The `timings` dict contains stage durations in milliseconds
        (`detect_ms`, `project_ms`, `pipeline_ms`).
        """

        return self._process_internal(frame, timestamp_ms, profile=True)

    def close(self) -> None:
        self.detector.close()
