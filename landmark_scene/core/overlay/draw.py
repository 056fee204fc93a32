"""Overlay drawing helpers (OpenCV).

This is used when backend-side overlays are enabled (otherwise the client draws
the 2D landmarks itself from the marker stream).
"""

from __future__ import annotations

import cv2
import numpy as np

from landmark_scene.core.types import FrameSummary

FACE_COLOR = (57, 255, 20)  # bright green
POSE_COLOR = (255, 128, 0)  # orange
TEXT_COLOR = (255, 255, 255)


def draw_overlays(frame: np.ndarray, summary: FrameSummary) -> np.ndarray:
    """Return a copy of `frame` with the detected 2D landmarks drawn."""

    if not summary.landmarks_2d:
        return frame

    img = frame.copy()
    h, w = img.shape[:2]
    color = POSE_COLOR if summary.mode == "pose" else FACE_COLOR
    radius = 4 if summary.mode == "pose" else 1
    for u, v in summary.landmarks_2d:
        x, y = int(round(u * w)), int(round(v * h))
        if 0 <= x < w and 0 <= y < h:
            cv2.circle(img, (x, y), radius, color, -1)

    label = f"{summary.mode} {summary.count} pts"
    if summary.alignment_cost is not None:
        label += f" cost {summary.alignment_cost:.3f}"
    cv2.putText(
        img,
        label,
        (8, 20),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.5,
        TEXT_COLOR,
        1,
        cv2.LINE_AA,
    )
    return img
