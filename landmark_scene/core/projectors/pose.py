"""Iterative ray alignment for body pose landmarks.

Pose detectors report two index-aligned views of the same skeleton: normalized
image coordinates and a metric 3D "world" skeleton in the detector's own frame.
`PoseProjector` solves for one translation (the alignment offset) that moves the
world skeleton onto the camera rays through the 2D landmarks, then eases each
marker toward its solved position at a constant speed.

Solver state lives in a `PoseSession` and is warm-started every frame.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

import numpy as np

from landmark_scene.core.camera import PerspectiveCamera, uv_to_ndc
from landmark_scene.core.config.settings import SceneParams
from landmark_scene.core.markers import MarkerBuffer
from landmark_scene.core.projectors.base import ProjectionReport
from landmark_scene.core.types import DetectionResult, uv_array, world_array

logger = logging.getLogger(__name__)

# Detector world frame is y-down / z-away; the scene is y-up / z-toward-viewer.
WORLD_AXIS_FLIP = np.array([1.0, -1.0, -1.0])


class StepStrategy(Protocol):
    """Chooses the multiplier applied to each offset update."""

    def reset(self) -> None:
        """Called at the start of every frame's solve."""

    def next(self, cost: float) -> float:
        """Return the step multiplier given this iteration's cost."""


class FixedStep:
    """Constant step multiplier (1.0 reproduces the plain centroid update)."""

    def __init__(self, value: float = 1.0) -> None:
        self.value = float(value)

    def reset(self) -> None:
        return None

    def next(self, cost: float) -> float:
        return self.value


class AdaptiveStep:
    """Grow the step while the cost keeps falling, halve it when it rises."""

    def __init__(
        self,
        initial: float = 1.0,
        grow: float = 1.05,
        shrink: float = 0.5,
        min_step: float = 0.1,
        max_step: float = 1.5,
    ) -> None:
        self.initial = initial
        self.grow = grow
        self.shrink = shrink
        self.min_step = min_step
        self.max_step = max_step
        self.value = initial
        self._last_cost: float | None = None

    def reset(self) -> None:
        self.value = self.initial
        self._last_cost = None

    def next(self, cost: float) -> float:
        if self._last_cost is not None:
            if cost < self._last_cost:
                self.value = min(self.max_step, self.value * self.grow)
            elif cost > self._last_cost:
                self.value = max(self.min_step, self.value * self.shrink)
        self._last_cost = cost
        return self.value


def make_step_strategy(name: str) -> StepStrategy:
    if name == "fixed":
        return FixedStep()
    if name == "adaptive":
        return AdaptiveStep()
    raise ValueError(f"unknown step strategy: {name!r}")


@dataclass
class PoseSession:
    """Long-lived alignment state for one tracking session."""

    offset: np.ndarray = field(default_factory=lambda: np.zeros(3))
    filtered: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    missed_frames: int = 0
    last_cost: float | None = None

    def reset(self) -> None:
        self.offset = np.zeros(3)
        self.filtered = np.zeros((0, 3))
        self.missed_frames = 0
        self.last_cost = None

    def ensure_size(self, n: int) -> None:
        """Grow the filtered point store to `n` entries (new entries start at the origin)."""

        if self.filtered.shape[0] < n:
            grown = np.zeros((n, 3))
            grown[: self.filtered.shape[0]] = self.filtered
            self.filtered = grown


def unit_rays(uv: np.ndarray, camera: PerspectiveCamera) -> np.ndarray:
    """Unit direction of the camera ray through each (u, v), shape (N, 3)."""

    rays = camera.unproject(uv_to_ndc(uv)) - camera.position
    return rays / np.linalg.norm(rays, axis=1, keepdims=True)


def align_offset(
    skeleton: np.ndarray,
    rays: np.ndarray,
    origin: np.ndarray,
    offset: np.ndarray,
    iterations: int,
    step: StepStrategy | None = None,
) -> tuple[np.ndarray, np.ndarray, float]:
    """Move `skeleton + offset` onto the rays through `origin`.

    Each iteration projects every candidate point onto its ray, then shifts the
    offset by the difference between the projected and candidate centroids.
    Runs a fixed number of iterations; there is no convergence test.

    Returns:
        (offset, projected_points, cost_of_last_iteration)
    """

    step = step or FixedStep()
    step.reset()
    offset = np.asarray(offset, dtype=np.float64).copy()
    projected = skeleton + offset
    cost = 0.0
    for _ in range(iterations):
        candidate = skeleton + offset
        rel = candidate - origin
        along = np.einsum("ij,ij->i", rel, rays)
        projected = origin + rays * along[:, None]
        cost = float(np.linalg.norm(projected - candidate, axis=1).sum())
        multiplier = step.next(cost)
        offset += multiplier * (projected.mean(axis=0) - candidate.mean(axis=0))
    return offset, projected, cost


def pursue(filtered: np.ndarray, targets: np.ndarray, max_step: float) -> np.ndarray:
    """Move each filtered point toward its target by at most `max_step`.

    Points closer than `max_step` land exactly on the target.
    """

    delta = targets - filtered
    dist = np.linalg.norm(delta, axis=1)
    move = np.minimum(dist, max_step)
    with np.errstate(divide="ignore", invalid="ignore"):
        ratio = np.where(dist > 0.0, move / dist, 0.0)
    stepped = filtered + delta * ratio[:, None]
    return np.where((dist <= max_step)[:, None], targets, stepped)


class PoseProjector:
    """Projector for body pose landmarks with a 3D world skeleton."""

    mode = "pose"

    def __init__(
        self,
        marker_scale: float = 0.01,
        world_scale: float = 1.0,
        iterations: int = 1000,
        pursuit_step: float = 0.00125,
        step_strategy: StepStrategy | None = None,
        reset_after_missed: int = 0,
        session: PoseSession | None = None,
    ) -> None:
        self.marker_scale = float(marker_scale)
        self.world_scale = float(world_scale)
        self.iterations = int(iterations)
        self.pursuit_step = float(pursuit_step)
        self.step_strategy = step_strategy or FixedStep()
        self.reset_after_missed = int(reset_after_missed)
        self.session = session or PoseSession()

    def _note_missing(self) -> None:
        session = self.session
        session.missed_frames += 1
        if self.reset_after_missed > 0 and session.missed_frames > self.reset_after_missed:
            logger.info(
                "Resetting pose session after %s frames without a subject",
                session.missed_frames,
            )
            session.reset()

    def project(
        self,
        result: DetectionResult,
        camera: PerspectiveCamera,
        params: SceneParams,
        markers: MarkerBuffer,
    ) -> ProjectionReport:
        if not result.landmarks or not result.world_landmarks:
            self._note_missing()
            return ProjectionReport(count=markers.count, skipped=True, cost=self.session.last_cost)

        n = min(len(result.landmarks), len(result.world_landmarks))
        session = self.session
        session.missed_frames = 0

        rays = unit_rays(uv_array(result.landmarks[:n]), camera)
        skeleton = world_array(result.world_landmarks[:n]) * WORLD_AXIS_FLIP * self.world_scale

        session.offset, projected, cost = align_offset(
            skeleton,
            rays,
            camera.position,
            session.offset,
            self.iterations,
            self.step_strategy,
        )
        session.last_cost = cost

        session.ensure_size(n)
        session.filtered[:n] = pursue(session.filtered[:n], projected, self.pursuit_step)

        markers.write(session.filtered[:n], self.marker_scale)
        return ProjectionReport(count=markers.count, cost=cost)
