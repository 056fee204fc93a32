from __future__ import annotations

import asyncio
import types

import numpy as np
import pytest

import landmark_scene.api.services.engine as eng
from landmark_scene.core.config.settings import SceneSettings
from landmark_scene.core.types import DetectionResult, FrameSummary, Landmark
from landmark_scene.core.video_sources.base import VideoFrame

SQUARE = tuple(
    Landmark(u=u, v=v, depth=0.0) for u, v in [(0.4, 0.4), (0.6, 0.4), (0.4, 0.6), (0.6, 0.6)]
)


class _Detector:
    def __init__(self, engine=None, landmarks=SQUARE):
        self.engine = engine
        self.landmarks = landmarks
        self.calls = []
        self.closed = False

    def detect(self, frame, timestamp_ms):
        self.calls.append(timestamp_ms)
        if self.engine is not None:
            # Stop the loop after one processed frame.
            self.engine.running = False
        return DetectionResult(timestamp_ms=timestamp_ms, landmarks=self.landmarks)

    def close(self):
        self.closed = True


class _Source:
    def __init__(self, engine, frames):
        self._engine = engine
        self._frames = list(frames)
        self.closed = False

    def read(self):
        if not self._frames:
            return None
        frame = self._frames.pop(0)
        # Stop capture after delivering one frame.
        self._engine.running = False
        return frame

    def close(self):
        self.closed = True


def _make_engine(**settings_overrides) -> eng.SceneEngine:
    settings_overrides.setdefault("target_fps", 0)
    return eng.SceneEngine(SceneSettings(video_source="webcam", **settings_overrides))


def _frame(ts: int) -> VideoFrame:
    return VideoFrame(np.zeros((20, 40, 3), dtype=np.uint8), ts)


def _attach_pipeline(engine: eng.SceneEngine, detector) -> None:
    engine.detector = detector
    engine.pipeline = eng.LandmarkPipeline(
        detector=detector,
        projector=engine.projector,
        camera=engine.camera,
        params=engine.params,
        markers=engine.markers,
    )


def test_engine_builds_projector_for_tracking_mode():
    assert _make_engine().mode == "face"
    pose = _make_engine(tracking_mode="pose", solver_iterations=10)
    assert pose.mode == "pose"
    assert pose.projector.iterations == 10
    assert pose.markers.capacity == 478


def test_default_target_fps_depends_on_source(tmp_path):
    assert eng.SceneEngine(SceneSettings(video_source="webcam"))._target_fps == 30.0
    assert eng.SceneEngine(SceneSettings(video_source="file"))._target_fps == 0.0
    assert eng.SceneEngine(SceneSettings(target_fps=12))._target_fps == 12.0


def test_engine_make_source_branches(monkeypatch, tmp_path):
    monkeypatch.setattr(eng, "FileSource", lambda p: ("file", p))
    monkeypatch.setattr(eng, "RTSPSource", lambda u: ("rtsp", u))
    monkeypatch.setattr(eng, "WebcamSource", lambda i: ("webcam", i))

    p = tmp_path / "v.mp4"
    p.write_bytes(b"x")

    assert eng.SceneEngine(SceneSettings(video_source="file", video_path=str(p)))._make_source() == (
        "file",
        str(p),
    )
    assert eng.SceneEngine(
        SceneSettings(video_source="rtsp", rtsp_url="rtsp://x")
    )._make_source() == ("rtsp", "rtsp://x")
    assert eng.SceneEngine(SceneSettings(webcam_index=2))._make_source() == ("webcam", 2)


def test_make_source_file_missing_raises(tmp_path):
    engine = eng.SceneEngine(
        SceneSettings(video_source="file", video_path=str(tmp_path / "missing.mp4"))
    )
    with pytest.raises(RuntimeError):
        engine._make_source()


def test_start_sets_error_when_source_init_fails(monkeypatch):
    engine = _make_engine()

    def _fail():
        raise RuntimeError("boom")

    monkeypatch.setattr(engine, "_make_source", _fail)
    engine.start()
    assert engine.running is False
    assert engine.last_error == "Failed to initialize video source"


def test_start_sets_error_when_detector_init_fails(monkeypatch):
    engine = _make_engine()
    source = _Source(engine, [])
    monkeypatch.setattr(engine, "_make_source", lambda: source)

    def _fail(_settings):
        raise FileNotFoundError("models/face_landmarker.task")

    monkeypatch.setattr(eng, "build_detector", _fail)
    engine.start()

    assert engine.running is False
    assert engine.last_error == "Failed to initialize landmark detector"
    assert source.closed is True
    assert engine.pipeline is None


def test_start_sets_error_when_marker_capacity_is_too_small(monkeypatch):
    engine = _make_engine(marker_capacity=33)
    source = _Source(engine, [])
    detector = _Detector()
    detector.max_landmarks = 478
    monkeypatch.setattr(engine, "_make_source", lambda: source)
    monkeypatch.setattr(eng, "build_detector", lambda _settings: detector)
    engine.start()

    assert engine.running is False
    assert engine.last_error == "Marker capacity too small for landmark detector"
    assert detector.closed is True
    assert source.closed is True
    assert engine.detector is None


def test_start_and_stop_with_fakes(monkeypatch):
    engine = _make_engine()
    detector = _Detector()
    monkeypatch.setattr(engine, "_make_source", lambda: _Source(engine, []))
    monkeypatch.setattr(eng, "build_detector", lambda _settings: detector)

    engine.start()
    assert engine.running is True
    assert engine.pipeline is not None
    assert engine.pipeline.detector is detector
    engine.stop()

    assert engine.running is False
    assert detector.closed is True
    assert engine.source is None


def test_capture_process_encode_loops_smoke(monkeypatch):
    monkeypatch.setattr(eng.cv2, "resize", lambda img, size, interpolation=None: img)
    monkeypatch.setattr(eng, "draw_overlays", lambda frame, summary: frame)

    engine = _make_engine(output_width=10, enable_backend_overlays=True)
    _attach_pipeline(engine, _Detector(engine))
    engine.source = _Source(engine, [_frame(5)])

    engine.running = True
    engine._capture_loop()
    assert engine._capture_event.is_set()
    assert engine._latest_captured.timestamp_ms == 5

    engine.running = True
    engine._process_loop()
    summary = engine.latest_summary()
    assert summary is not None
    assert summary.count == 4
    assert summary.mode == "face"
    assert engine.markers.count == 4

    engine.running = True
    engine._encode_event.set()

    def _imencode_stop(ext, img, params):
        engine.running = False
        return True, types.SimpleNamespace(tobytes=lambda: b"jpg")

    monkeypatch.setattr(eng.cv2, "imencode", _imencode_stop)
    engine._encode_loop()
    assert engine.latest_frame() == b"jpg"
    frame, stream_summary = engine.latest_stream_packet()
    assert frame == b"jpg"
    assert stream_summary.frame_id == summary.frame_id


def test_process_loop_skips_stale_timestamps():
    engine = _make_engine()
    detector = _Detector()
    _attach_pipeline(engine, detector)
    engine.pipeline.last_timestamp_ms = 100

    engine.running = True
    engine._latest_captured = _frame(100)
    engine._capture_event.set()

    def _wait_once(timeout=None):
        engine.running = False
        return True

    # The stale frame is dropped before detection and the loop exits.
    engine._capture_event.wait = _wait_once
    engine._process_loop()
    assert detector.calls == []
    assert engine.latest_summary() is None


def test_process_loop_error_sets_last_error():
    engine = _make_engine()

    class _Broken:
        last_timestamp_ms = None

        def process(self, *_a):
            engine.running = False
            raise RuntimeError("fail")

    engine.pipeline = _Broken()
    engine.running = True
    engine._capture_event.set()
    engine._latest_captured = _frame(1)
    engine._process_loop()
    assert engine.last_error == "Pipeline processing failed"


def test_process_loop_profiles_and_encode_updates(monkeypatch):
    monkeypatch.setattr(eng, "draw_overlays", lambda frame, summary: frame)
    engine = _make_engine(profile_steps=True, enable_backend_overlays=True)
    _attach_pipeline(engine, _Detector(engine))

    engine.running = True
    engine._capture_event.set()
    engine._latest_captured = _frame(1)
    engine._latest_capture_ms = 3.0
    engine._process_loop()

    summary = engine.latest_summary()
    assert summary is not None
    assert summary.profile is not None
    for key in ("detect_ms", "project_ms", "pipeline_ms", "overlay_ms"):
        assert key in summary.profile
    assert summary.profile["capture_ms"] == 3.0

    engine.running = True
    engine._encode_event.set()

    def _imencode_stop(ext, img, params):
        engine.running = False
        return True, types.SimpleNamespace(tobytes=lambda: b"jpg")

    monkeypatch.setattr(eng.cv2, "imencode", _imencode_stop)
    engine._encode_loop()

    _frame_bytes, stream_summary = engine.latest_stream_packet()
    assert "encode_ms" in stream_summary.profile


def test_update_params_reaches_pipeline_camera():
    engine = _make_engine()
    detector = _Detector(engine)
    _attach_pipeline(engine, detector)

    snapshot = engine.update_params(fov=90.0, depth_scalar=0.3)
    assert snapshot.fov == 90.0
    assert snapshot is not engine.params

    engine.running = True
    engine._capture_event.set()
    engine._latest_captured = _frame(1)
    engine._process_loop()
    assert engine.camera.fov == 90.0
    assert engine.pipeline.params.depth_scalar == 0.3


def test_update_params_swaps_params_object_instead_of_mutating():
    engine = _make_engine()
    _attach_pipeline(engine, _Detector())
    held = engine.pipeline.params

    engine.update_params(fov=90.0, depth_scalar=0.3)

    assert held.fov == 60.0
    assert held.depth_scalar == 0.2
    assert engine.pipeline.params is engine.params
    assert (engine.params.fov, engine.params.depth_scalar) == (90.0, 0.3)


def test_update_params_rejects_out_of_range():
    engine = _make_engine()
    with pytest.raises(ValueError):
        engine.update_params(fov=10.0)
    assert engine.params.fov == 60.0


def test_resize_for_output_keeps_aspect():
    engine = _make_engine(output_width=20)
    out = engine._resize_for_output(np.zeros((20, 40, 3), dtype=np.uint8))
    assert out.shape == (10, 20, 3)
    same = engine._resize_for_output(np.zeros((5, 10, 3), dtype=np.uint8))
    assert same.shape == (5, 10, 3)


def test_mjpeg_generator_yields_when_frame_present():
    engine = _make_engine()
    engine._latest_frame = b"abc"

    async def _run_once():
        agen = engine.mjpeg_generator()
        chunk = await agen.__anext__()
        await agen.aclose()
        return chunk

    chunk = asyncio.run(_run_once())
    assert b"Content-Type: image/jpeg" in chunk
    assert b"abc" in chunk


def test_metadata_stream_yields_new_summary():
    engine = _make_engine()
    engine._latest_summary = FrameSummary(
        frame_id=42,
        timestamp=0.0,
        mode="face",
        count=0,
        positions=[],
        marker_scale=0.001,
        fps=0.0,
    )

    async def _run_once():
        agen = engine.metadata_stream()
        item = await agen.__anext__()
        await agen.aclose()
        return item

    item = asyncio.run(_run_once())
    assert item.frame_id == 42
