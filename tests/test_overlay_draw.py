import numpy as np

from landmark_scene.core.overlay.draw import FACE_COLOR, POSE_COLOR, draw_overlays
from landmark_scene.core.types import FrameSummary


def _summary(mode: str, landmarks_2d, cost=None) -> FrameSummary:
    return FrameSummary(
        frame_id=1,
        timestamp=0.0,
        mode=mode,
        count=len(landmarks_2d or []),
        positions=[],
        marker_scale=0.01,
        fps=0.0,
        alignment_cost=cost,
        landmarks_2d=landmarks_2d,
    )


def test_draw_overlays_returns_input_without_landmarks():
    frame = np.zeros((50, 100, 3), dtype=np.uint8)
    out = draw_overlays(frame, _summary("face", None))
    assert out is frame


def test_draw_overlays_marks_landmark_pixels_on_a_copy():
    frame = np.zeros((50, 100, 3), dtype=np.uint8)
    out = draw_overlays(frame, _summary("face", [[0.5, 0.8]]))
    assert out is not frame
    assert frame.sum() == 0
    assert tuple(out[40, 50]) == FACE_COLOR


def test_draw_overlays_pose_color_and_out_of_frame_points():
    frame = np.zeros((50, 100, 3), dtype=np.uint8)
    out = draw_overlays(frame, _summary("pose", [[0.25, 0.8], [1.5, -0.2]], cost=0.1))
    assert tuple(out[40, 25]) == POSE_COLOR
