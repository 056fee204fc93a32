from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from collections.abc import AsyncGenerator
from dataclasses import replace
from pathlib import Path
from queue import Empty, Queue

import cv2
import numpy as np

from landmark_scene.core.camera import PerspectiveCamera
from landmark_scene.core.config.settings import SceneParams, SceneSettings, params_from_settings
from landmark_scene.core.detectors.mediapipe import build_detector
from landmark_scene.core.markers import MarkerBuffer
from landmark_scene.core.overlay.draw import draw_overlays
from landmark_scene.core.pipeline import LandmarkDetector, LandmarkPipeline
from landmark_scene.core.projectors.base import build_projector
from landmark_scene.core.types import FrameSummary
from landmark_scene.core.video_sources.base import (
    FileSource,
    RTSPSource,
    VideoFrame,
    VideoSource,
    WebcamSource,
)

logger = logging.getLogger(__name__)


class SceneEngine:
    """Runs the capture → process → encode pipeline.

    The engine is designed for low-latency streaming:
    - capture thread continuously reads timestamped frames
    - process thread runs `LandmarkPipeline.process()` and draws overlays (optional)
    - encode thread JPEG-encodes frames and drops old frames under load

    The projector, its marker buffer and its session state are only touched by
    the process thread.
    """

    def __init__(self, settings: SceneSettings) -> None:
        self.settings = settings
        self.params: SceneParams = params_from_settings(settings)
        self.camera = PerspectiveCamera(
            fov=settings.fov,
            near=settings.camera_near,
            far=settings.camera_far,
            position=settings.camera_position,
        )
        self.markers = MarkerBuffer(settings.marker_capacity)
        self.projector = build_projector(settings.tracking_mode, settings)
        self.detector: LandmarkDetector | None = None
        self.pipeline: LandmarkPipeline | None = None

        if settings.target_fps is not None:
            self._target_fps = float(settings.target_fps)
        else:
            # Default caps:
            # - webcam: keep CPU reasonable in dev
            # - file: FileSource already paces playback to the file's FPS
            # - rtsp/other: keep a sane upper bound
            if settings.video_source == "webcam":
                self._target_fps = 30.0
            elif settings.video_source == "file":
                self._target_fps = 0.0
            else:
                self._target_fps = 30.0

        # Process FPS: based on successful pipeline runs over a rolling window.
        self._processed_fps = 0.0
        self._processed_times: deque[float] = deque()
        # Require a minimum time span before reporting processed FPS to avoid startup spikes.
        self._processed_fps_min_span_s = 0.25
        # Input FPS: based on capture timestamps.
        self._camera_fps = 0.0
        self._camera_alpha = 0.2
        self._last_captured_at: float | None = None

        self.source: VideoSource | None = None
        self.running = False
        self._capture_thread: threading.Thread | None = None
        self._process_thread: threading.Thread | None = None
        self._encode_thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._latest_frame: bytes | None = None
        self._latest_summary: FrameSummary | None = None
        self._latest_stream_packet: tuple[bytes, FrameSummary] | None = None
        self._capture_lock = threading.Lock()
        self._capture_event = threading.Event()
        self._latest_captured: VideoFrame | None = None
        self._latest_capture_ms: float | None = None
        self._encode_queue: Queue[tuple[np.ndarray, FrameSummary]] = Queue(maxsize=1)
        self._encode_event = threading.Event()
        self.last_error: str | None = None
        self._output_resize_cache: tuple[int, int, int, int] | None = None

    @property
    def mode(self) -> str:
        return self.projector.mode

    def _make_source(self) -> VideoSource:
        """Instantiate the configured `VideoSource`."""

        if self.settings.video_source == "file" and self.settings.video_path:
            video_path = Path(self.settings.video_path)
            if not video_path.exists():
                raise RuntimeError(f"Video path not found: {video_path}")
            return FileSource(str(video_path))
        if self.settings.video_source == "rtsp" and self.settings.rtsp_url:
            return RTSPSource(self.settings.rtsp_url)
        return WebcamSource(self.settings.webcam_index)

    def _make_detector(self) -> LandmarkDetector:
        """Instantiate the landmark detector for the configured tracking mode."""

        return build_detector(self.settings)

    def start(self) -> None:
        """Open the source and detector, then start background threads.

        Safe to call multiple times; subsequent calls while running are ignored.
        Initialization failures are recorded in `last_error` and not retried.
        """

        if self.running:
            return
        try:
            self.source = self._make_source()
        except Exception:
            self.last_error = "Failed to initialize video source"
            logger.exception(self.last_error)
            return
        try:
            self.detector = self._make_detector()
        except Exception:
            self.last_error = "Failed to initialize landmark detector"
            logger.exception(self.last_error)
            self.source.close()
            self.source = None
            return
        try:
            self.pipeline = LandmarkPipeline(
                detector=self.detector,
                projector=self.projector,
                camera=self.camera,
                params=self.params,
                markers=self.markers,
            )
        except ValueError:
            self.last_error = "Marker capacity too small for landmark detector"
            logger.exception(self.last_error)
            self.detector.close()
            self.detector = None
            self.source.close()
            self.source = None
            return
        logger.info("Scene engine started in %s mode", self.mode)
        self.running = True
        self.last_error = None
        self._capture_event.clear()
        self._encode_event.clear()
        self._capture_thread = threading.Thread(target=self._capture_loop, daemon=True)
        self._process_thread = threading.Thread(target=self._process_loop, daemon=True)
        self._encode_thread = threading.Thread(target=self._encode_loop, daemon=True)
        self._capture_thread.start()
        self._process_thread.start()
        self._encode_thread.start()

    def stop(self) -> None:
        """Stop background threads and release the source and detector."""

        self.running = False
        self._capture_event.set()
        self._encode_event.set()
        if self._capture_thread and self._capture_thread.is_alive():
            self._capture_thread.join(timeout=2)
        if self._process_thread and self._process_thread.is_alive():
            self._process_thread.join(timeout=2)
        if self._encode_thread and self._encode_thread.is_alive():
            self._encode_thread.join(timeout=2)
        if self.source:
            self.source.close()
            self.source = None
        if self.detector:
            try:
                self.detector.close()
            except Exception:
                logger.exception("Failed to close landmark detector")
            self.detector = None

    def update_params(self, fov: float | None = None, depth_scalar: float | None = None) -> SceneParams:
        """Apply live FoV / depth scalar changes; read by the next processed frame."""

        with self._lock:
            # Replaced, never mutated: the process thread reads one params object per frame.
            updated = replace(self.params)
            updated.update(fov=fov, depth_scalar=depth_scalar)
            self.params = updated
            if self.pipeline is not None:
                self.pipeline.params = updated
            return replace(updated)

    def _capture_loop(self) -> None:
        """Continuously read frames from the configured source."""

        logger.debug("Capture loop started")
        while self.running and self.source:
            capture_ms: float | None = None
            if self.settings.profile_steps:
                t0 = time.perf_counter()
                captured = self.source.read()
                t1 = time.perf_counter()
                capture_ms = (t1 - t0) * 1000.0
                now = t1
            else:
                captured = self.source.read()
                now = time.perf_counter()
            if captured is None:
                time.sleep(0.02)
                continue
            with self._lock:
                if self._last_captured_at is not None:
                    dt = now - self._last_captured_at
                    if dt > 0:
                        instant = 1.0 / dt
                        self._camera_fps = (
                            instant
                            if self._camera_fps == 0.0
                            else (
                                self._camera_fps * (1.0 - self._camera_alpha)
                                + instant * self._camera_alpha
                            )
                        )
                self._last_captured_at = now
            with self._capture_lock:
                self._latest_captured = captured
                self._latest_capture_ms = capture_ms
            self._capture_event.set()

    def _update_processed_fps(self) -> None:
        now = time.perf_counter()
        self._processed_times.append(now)
        while self._processed_times and (now - self._processed_times[0]) > 1.0:
            self._processed_times.popleft()
        if len(self._processed_times) >= 2:
            span = now - self._processed_times[0]
            if span >= self._processed_fps_min_span_s:
                self._processed_fps = float((len(self._processed_times) - 1) / span)

    def _process_loop(self) -> None:
        """Run the landmark pipeline on captured frames and enqueue frames for encoding."""

        logger.debug("Process loop started")
        while self.running:
            if not self._capture_event.wait(timeout=0.5):
                continue
            with self._capture_lock:
                captured = self._latest_captured
                capture_ms = self._latest_capture_ms
                self._latest_captured = None
                self._latest_capture_ms = None
                self._capture_event.clear()
            if captured is None or self.pipeline is None:
                continue

            last_ts = self.pipeline.last_timestamp_ms
            if last_ts is not None and captured.timestamp_ms <= last_ts:
                # Stale or repeated frame; the source did not advance.
                time.sleep(0.001)
                continue

            profile_steps = bool(self.settings.profile_steps)
            start = time.perf_counter()
            try:
                profile: dict[str, float] | None = None
                if profile_steps:
                    summary, processed_frame, timings = self.pipeline.process_with_profile(
                        captured.image, captured.timestamp_ms
                    )
                    profile = dict(timings)
                else:
                    summary, processed_frame = self.pipeline.process(
                        captured.image, captured.timestamp_ms
                    )
                self.last_error = None
            except Exception:
                self.last_error = "Pipeline processing failed"
                logger.exception(self.last_error)
                continue
            duration = time.perf_counter() - start

            self._update_processed_fps()
            if profile is not None:
                profile.setdefault("pipeline_ms", duration * 1000.0)
                profile["capture_ms"] = float(capture_ms or 0.0)
                summary = replace(summary, fps=float(self._processed_fps), profile=profile)
            else:
                summary = replace(summary, fps=float(self._processed_fps))

            with self._lock:
                self._latest_summary = summary

            if self.settings.enable_backend_overlays:
                t_ov0 = time.perf_counter()
                annotated = draw_overlays(processed_frame, summary)
                if profile is not None:
                    profile["overlay_ms"] = (time.perf_counter() - t_ov0) * 1000.0
            else:
                annotated = processed_frame
                if profile is not None:
                    profile["overlay_ms"] = 0.0

            try:
                if self._encode_queue.full():
                    try:
                        self._encode_queue.get_nowait()
                    except Empty:
                        pass
                self._encode_queue.put_nowait((annotated, summary))
                self._encode_event.set()
            except Exception:
                logger.exception("Failed to enqueue frame for encoding")
            if self._target_fps > 0:
                desired_interval = max(0.0, (1.0 / self._target_fps) - duration)
                if desired_interval > 0:
                    time.sleep(desired_interval)

    def _resize_for_output(self, frame: np.ndarray) -> np.ndarray:
        out_w = int(self.settings.output_width or 0)
        h0, w0 = frame.shape[:2]
        if out_w <= 0 or w0 <= out_w:
            return frame
        cache = self._output_resize_cache
        if cache is None or cache[:3] != (w0, h0, out_w):
            out_h = max(1, int(h0 * out_w / float(w0)))
            self._output_resize_cache = (w0, h0, out_w, out_h)
        else:
            out_h = cache[3]
        return cv2.resize(frame, (out_w, out_h), interpolation=cv2.INTER_LINEAR)

    def _encode_loop(self) -> None:
        """JPEG-encode processed frames, dropping old frames under load."""

        logger.debug("Encode loop started")
        while self.running:
            if not self._encode_event.wait(timeout=0.5):
                continue
            try:
                annotated, summary = self._encode_queue.get_nowait()
            except Empty:
                self._encode_event.clear()
                continue
            if self._encode_queue.empty():
                self._encode_event.clear()

            try:
                t_enc0 = time.perf_counter()
                out = self._resize_for_output(annotated)
                encode_param = [int(cv2.IMWRITE_JPEG_QUALITY), self.settings.jpeg_quality]
                ok, jpg = cv2.imencode(".jpg", out, encode_param)
                if not ok:
                    continue
                if summary.profile is not None:
                    updated = dict(summary.profile)
                    updated["encode_ms"] = (time.perf_counter() - t_enc0) * 1000.0
                    summary = replace(summary, profile=updated)
                frame_bytes = jpg.tobytes()
                with self._lock:
                    self._latest_frame = frame_bytes
                    self._latest_stream_packet = (frame_bytes, summary)
            except Exception:
                logger.exception("JPEG encoding failed")

    def latest_frame(self) -> bytes | None:
        """Return the latest encoded JPEG bytes (or `None` if not ready)."""

        with self._lock:
            return self._latest_frame

    def latest_summary(self) -> FrameSummary | None:
        """Return the latest processed summary (not necessarily aligned to JPEG)."""

        with self._lock:
            return self._latest_summary

    def latest_stream_packet(self) -> tuple[bytes | None, FrameSummary | None]:
        """Return (jpeg_bytes, summary) aligned to the same frame."""

        with self._lock:
            if self._latest_stream_packet is None:
                return None, None
            frame, summary = self._latest_stream_packet
            return frame, summary

    def stream_fps(self) -> float:
        """Approximate input FPS based on capture timestamps."""

        with self._lock:
            return float(self._camera_fps)

    async def mjpeg_generator(self) -> AsyncGenerator[bytes, None]:
        """Yield MJPEG multipart chunks for HTTP streaming."""

        last_sent = None
        while True:
            frame = self.latest_frame()
            if frame is not None and frame != last_sent:
                yield (b"--frame\r\n" b"Content-Type: image/jpeg\r\n\r\n" + frame + b"\r\n")
                last_sent = frame
            await asyncio.sleep(0.02)

    async def metadata_stream(self) -> AsyncGenerator[FrameSummary, None]:
        """Yield per-frame summaries for WebSocket streaming."""

        last_id = -1
        while True:
            summary = self.latest_summary()
            if summary and summary.frame_id != last_id:
                last_id = summary.frame_id
                yield summary
            await asyncio.sleep(0.02)
