"""Shared type definitions used across the service.

Small, stable types (landmarks, detector output, per-frame summaries) live here
so detector/projector/pipeline code can stay strongly typed.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, is_dataclass
from typing import Any

import numpy as np

Frame = np.ndarray

Vec3 = tuple[float, float, float]


@dataclass(frozen=True)
class Landmark:
    """One detector keypoint in normalized image coordinates."""

    u: float
    v: float
    depth: float | None = None
    world: Vec3 | None = None  # detector's own 3D frame (pose models only)


LandmarkSet = tuple[Landmark, ...]


@dataclass(frozen=True)
class DetectionResult:
    """Landmarks of the primary subject for one video frame.

    `landmarks` is `None` when no subject was found. `world_landmarks` is only
    filled by pose detectors and is index-aligned with `landmarks`.
    """

    timestamp_ms: int
    landmarks: LandmarkSet | None = None
    world_landmarks: LandmarkSet | None = None

    @property
    def has_subject(self) -> bool:
        return bool(self.landmarks)


def uv_array(landmarks: LandmarkSet) -> np.ndarray:
    """Return an (N, 2) array of (u, v)."""

    return np.array([(lm.u, lm.v) for lm in landmarks], dtype=np.float64).reshape(-1, 2)


def depth_array(landmarks: LandmarkSet) -> np.ndarray:
    """Return an (N,) array of relative depths (missing depth counts as 0)."""

    return np.array(
        [lm.depth if lm.depth is not None else 0.0 for lm in landmarks], dtype=np.float64
    )


def world_array(landmarks: LandmarkSet) -> np.ndarray:
    """Return an (N, 3) array of detector world coordinates."""

    rows = []
    for lm in landmarks:
        if lm.world is None:
            raise ValueError("landmark has no world coordinate")
        rows.append(lm.world)
    return np.array(rows, dtype=np.float64).reshape(-1, 3)


@dataclass
class FrameSummary:
    """Metadata payload associated with a processed frame."""

    frame_id: int
    timestamp: float
    mode: str
    count: int
    positions: list[list[float]]
    marker_scale: float
    fps: float
    frame_size: tuple[int, int] = (0, 0)
    skipped: bool = False
    alignment_cost: float | None = None
    landmarks_2d: list[list[float]] | None = None  # (u, v) of the current detection
    profile: dict[str, float] | None = None


def to_jsonable(obj: Any) -> Any:
    """Convert dataclasses and arrays to plain JSON values.

    Non-finite floats become `None`; strict JSON has no NaN or Infinity.
    """

    if is_dataclass(obj) and not isinstance(obj, type):
        return to_jsonable(asdict(obj))
    if isinstance(obj, np.ndarray):
        return to_jsonable(obj.tolist())
    if isinstance(obj, (float, np.floating)):
        return float(obj) if np.isfinite(obj) else None
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, dict):
        return {str(k): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_jsonable(v) for v in obj]
    return obj
