"""Landmark projector interface and factory.

A projector turns one frame of detector output into marker transforms. The face
and pose variants share the camera-ray unprojection but nothing else, so they
are separate implementations selected once per session.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from landmark_scene.core.camera import PerspectiveCamera
from landmark_scene.core.config.settings import SceneParams, SceneSettings
from landmark_scene.core.markers import MarkerBuffer
from landmark_scene.core.types import DetectionResult


@dataclass
class ProjectionReport:
    """Outcome of one projector call."""

    count: int
    skipped: bool = False
    cost: float | None = None


class LandmarkProjector(Protocol):
    """Minimal projector interface expected by `LandmarkPipeline`."""

    mode: str
    marker_scale: float

    def project(
        self,
        result: DetectionResult,
        camera: PerspectiveCamera,
        params: SceneParams,
        markers: MarkerBuffer,
    ) -> ProjectionReport:
        """Write marker transforms for `result` and return the active count."""


def build_projector(mode: str, settings: SceneSettings | None = None) -> LandmarkProjector:
    """Return the projector implementation for a tracking mode."""

    settings = settings or SceneSettings()
    if mode == "face":
        from landmark_scene.core.projectors.face import FaceProjector

        return FaceProjector(marker_scale=settings.face_marker_scale)
    if mode == "pose":
        from landmark_scene.core.projectors.pose import PoseProjector, make_step_strategy

        return PoseProjector(
            marker_scale=settings.pose_marker_scale,
            world_scale=settings.world_scale,
            iterations=settings.solver_iterations,
            pursuit_step=settings.pursuit_step,
            step_strategy=make_step_strategy(settings.solver_step_strategy),
            reset_after_missed=settings.pose_reset_after_missed,
        )
    raise ValueError(f"unknown tracking mode: {mode!r}")
