"""Video source abstractions.

The engine consumes timestamped frames through a small interface
(`VideoSource`) so the capture implementation (webcam/file/RTSP) can be swapped
without affecting the landmark pipeline. Timestamps are milliseconds and
strictly increase for the lifetime of a source, which MediaPipe's VIDEO mode
requires.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

import cv2

from landmark_scene.core.types import Frame

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VideoFrame:
    """A captured image and its presentation timestamp."""

    image: Frame
    timestamp_ms: int


class VideoSource(ABC):
    """Base interface for anything that can produce video frames."""

    @abstractmethod
    def read(self) -> VideoFrame | None:
        """Return the next frame, or `None` when unavailable."""

        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """Release any underlying resources."""

        raise NotImplementedError


class OpenCVSource(VideoSource):
    """A `VideoSource` backed by `cv2.VideoCapture`, stamped with a monotonic clock."""

    def __init__(self, source: str | int) -> None:
        self.cap = cv2.VideoCapture(source)
        if not self.cap.isOpened():
            raise RuntimeError(f"Failed to open video source: {source}")
        self._t0 = time.perf_counter()
        self._last_ts = -1

    def _stamp(self) -> int:
        ts = int((time.perf_counter() - self._t0) * 1000.0)
        ts = max(ts, self._last_ts + 1)
        self._last_ts = ts
        return ts

    def read(self) -> VideoFrame | None:
        """Read the next frame from the underlying OpenCV capture."""

        ok, frame = self.cap.read()
        if not ok:
            return None
        return VideoFrame(frame, self._stamp())

    def close(self) -> None:
        """Release the underlying OpenCV capture."""

        self.cap.release()


class WebcamSource(OpenCVSource):
    """Webcam capture that always hands out the newest frame.

    A reader thread drains the driver buffer continuously; `read()` returns
    `None` until a frame newer than the last delivered one arrives.
    """

    def __init__(self, index: int = 0, width: int = 1280, height: int = 720) -> None:
        super().__init__(index)
        # Some backends ignore these; capture still works at the native size.
        self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        logger.info("Opened webcam index=%s", index)

        self._lock = threading.Lock()
        self._running = True
        self._latest: VideoFrame | None = None
        self._delivered_ts = -1
        self._reader_error: Exception | None = None
        self._reader_thread = threading.Thread(target=self._reader_loop, daemon=True)
        self._reader_thread.start()

    def _reader_loop(self) -> None:
        """Continuously drain the driver buffer and keep only the newest frame."""

        try:
            while self._running:
                ok, frame = self.cap.read()
                if not ok:
                    time.sleep(0.01)
                    continue
                stamped = VideoFrame(frame, self._stamp())
                with self._lock:
                    self._latest = stamped
        except Exception as exc:
            logger.exception("Webcam reader stopped")
            with self._lock:
                self._reader_error = exc

    def read(self) -> VideoFrame | None:
        """Return the most recent frame captured by the background reader."""

        with self._lock:
            latest = self._latest
            error = self._reader_error
        if error is not None:
            raise RuntimeError("Webcam reader failed") from error
        if latest is None or latest.timestamp_ms == self._delivered_ts:
            return None
        self._delivered_ts = latest.timestamp_ms
        return latest

    def close(self) -> None:
        """Stop the background reader thread and release the camera."""

        self._running = False
        try:
            if self._reader_thread.is_alive():
                self._reader_thread.join(timeout=1)
        finally:
            self.cap.release()


class FileSource(OpenCVSource):
    """Video file played back at its native rate, looping at EOF.

    Timestamps come from the container position and keep increasing across
    loops.
    """

    def __init__(self, path: str, realtime: bool = True) -> None:
        super().__init__(path)
        self._path = path
        self._realtime = realtime
        self._loop_base_ms = 0
        self._loop_len_ms = 0
        self._start_perf: float | None = None
        fps = float(self.cap.get(cv2.CAP_PROP_FPS) or 0.0)
        self._frame_ms = 1000.0 / fps if fps > 0.0 else 1000.0 / 30.0

    def _pace(self, ts_ms: int) -> None:
        if not self._realtime:
            return
        if self._start_perf is None:
            self._start_perf = time.perf_counter() - ts_ms / 1000.0
        delay = self._start_perf + ts_ms / 1000.0 - time.perf_counter()
        if delay > 0:
            time.sleep(delay)

    def read(self) -> VideoFrame | None:
        ok, frame = self.cap.read()
        if not ok:
            # EOF: rewind and shift the timestamp base past the last frame.
            if not self.cap.set(cv2.CAP_PROP_POS_FRAMES, 0):
                return None
            self._loop_base_ms += self._loop_len_ms + int(round(self._frame_ms))
            self._loop_len_ms = 0
            ok, frame = self.cap.read()
            if not ok:
                return None

        pos_ms = int(self.cap.get(cv2.CAP_PROP_POS_MSEC) or 0)
        self._loop_len_ms = max(self._loop_len_ms, pos_ms)
        ts = max(self._loop_base_ms + pos_ms, self._last_ts + 1)
        self._last_ts = ts
        self._pace(ts)
        return VideoFrame(frame, ts)


class RTSPSource(OpenCVSource):
    """RTSP stream source, preferring the FFmpeg backend when available."""

    def __init__(self, url: str) -> None:
        ffmpeg = getattr(cv2, "CAP_FFMPEG", None)
        cap = cv2.VideoCapture(url, ffmpeg) if ffmpeg is not None else cv2.VideoCapture(url)
        if not cap.isOpened():
            cap.release()
            cap = cv2.VideoCapture(url)
        if not cap.isOpened():
            raise RuntimeError(f"Failed to open RTSP source: {url}")
        self.cap = cap
        self._t0 = time.perf_counter()
        self._last_ts = -1
        self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
