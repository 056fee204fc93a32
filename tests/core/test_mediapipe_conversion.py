from __future__ import annotations

import sys
import types

import numpy as np
import pytest

import landmark_scene.core.detectors.mediapipe as mp_det
from landmark_scene.core.config.settings import SceneSettings


def _pt(x, y, z):
    return types.SimpleNamespace(x=x, y=y, z=z)


def test_face_result_uses_first_face_and_depth():
    result = types.SimpleNamespace(
        face_landmarks=[[_pt(0.1, 0.2, -0.05), _pt(0.3, 0.4, 0.02)], [_pt(0.9, 0.9, 0.0)]]
    )
    det = mp_det.face_result_to_detection(result, 7)
    assert det.timestamp_ms == 7
    assert det.has_subject
    assert [(lm.u, lm.v, lm.depth) for lm in det.landmarks] == [
        (0.1, 0.2, -0.05),
        (0.3, 0.4, 0.02),
    ]
    assert det.world_landmarks is None


@pytest.mark.parametrize("result", [None, types.SimpleNamespace(face_landmarks=[])])
def test_face_result_without_face_has_no_subject(result):
    det = mp_det.face_result_to_detection(result, 1)
    assert det.landmarks is None
    assert not det.has_subject


def test_pose_result_pairs_image_and_world_landmarks():
    result = types.SimpleNamespace(
        pose_landmarks=[[_pt(0.5, 0.5, 0.1), _pt(0.6, 0.7, 0.2)]],
        pose_world_landmarks=[[_pt(0.0, -0.5, 0.1), _pt(0.1, 0.2, -0.3)]],
    )
    det = mp_det.pose_result_to_detection(result, 3)
    assert len(det.landmarks) == 2
    assert det.world_landmarks[1].world == (0.1, 0.2, -0.3)
    assert (det.world_landmarks[1].u, det.world_landmarks[1].v) == (0.6, 0.7)


def test_pose_result_requires_both_lists():
    image_only = types.SimpleNamespace(
        pose_landmarks=[[_pt(0.5, 0.5, 0.1)]], pose_world_landmarks=[]
    )
    det = mp_det.pose_result_to_detection(image_only, 3)
    assert det.landmarks is None
    assert det.world_landmarks is None


def test_missing_mediapipe_raises_runtime_error(monkeypatch):
    monkeypatch.setitem(sys.modules, "mediapipe", None)
    with pytest.raises(RuntimeError):
        mp_det._import_mediapipe()


def test_missing_model_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        mp_det._check_model(str(tmp_path / "nope.task"))


class _FakeLandmarker:
    def __init__(self, result):
        self.result = result
        self.calls = []
        self.closed = False

    def detect_for_video(self, image, timestamp_ms):
        self.calls.append(timestamp_ms)
        return self.result

    def close(self):
        self.closed = True


def _fake_mediapipe(landmarker):
    mp = types.SimpleNamespace(
        Image=lambda image_format, data: ("image", data.shape),
        ImageFormat=types.SimpleNamespace(SRGB="srgb"),
    )
    options = {}

    def _options(**kwargs):
        options.update(kwargs)
        return kwargs

    factory = types.SimpleNamespace(create_from_options=lambda _opts: landmarker)
    vision = types.SimpleNamespace(
        FaceLandmarkerOptions=_options,
        PoseLandmarkerOptions=_options,
        FaceLandmarker=factory,
        PoseLandmarker=factory,
        RunningMode=types.SimpleNamespace(VIDEO="video"),
    )
    base = types.SimpleNamespace(BaseOptions=lambda model_asset_path: model_asset_path)
    return mp, vision, base, options


def test_face_detector_runs_in_video_mode(monkeypatch, tmp_path):
    model = tmp_path / "face.task"
    model.write_bytes(b"x")
    landmarker = _FakeLandmarker(types.SimpleNamespace(face_landmarks=[[_pt(0.5, 0.5, 0.0)]]))
    mp, vision, base, options = _fake_mediapipe(landmarker)
    monkeypatch.setattr(mp_det, "_import_mediapipe", lambda: mp)
    monkeypatch.setattr(mp_det, "_import_tasks", lambda: (vision, base))

    det = mp_det.MediaPipeFaceDetector(str(model), 0.6, 0.4)
    out = det.detect(np.zeros((4, 4, 3), dtype=np.uint8), 33)
    det.close()

    assert options["running_mode"] == "video"
    assert options["num_faces"] == 1
    assert options["min_face_detection_confidence"] == 0.6
    assert landmarker.calls == [33]
    assert out.timestamp_ms == 33
    assert len(out.landmarks) == 1
    assert landmarker.closed is True
    assert det.max_landmarks == mp_det.FACE_LANDMARK_COUNT


def test_build_detector_selects_pose(monkeypatch, tmp_path):
    model = tmp_path / "pose.task"
    model.write_bytes(b"x")
    landmarker = _FakeLandmarker(None)
    mp, vision, base, options = _fake_mediapipe(landmarker)
    monkeypatch.setattr(mp_det, "_import_mediapipe", lambda: mp)
    monkeypatch.setattr(mp_det, "_import_tasks", lambda: (vision, base))

    det = mp_det.build_detector(SceneSettings(tracking_mode="pose", pose_model_path=str(model)))
    assert isinstance(det, mp_det.MediaPipePoseDetector)
    assert det.max_landmarks == mp_det.POSE_LANDMARK_COUNT
    assert options["num_poses"] == 1
    assert det.detect(np.zeros((4, 4, 3), dtype=np.uint8), 1).landmarks is None
