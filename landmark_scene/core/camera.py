"""Perspective camera used for landmark ray unprojection.

Follows the OpenGL / three.js conventions: the camera looks down its local -Z
axis, NDC coordinates span [-1, 1] on every axis and NDC z = -1 lies on the
near plane.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np


def uv_to_ndc(uv: np.ndarray) -> np.ndarray:
    """Map normalized image coordinates (N, 2) to NDC ray endpoints (N, 3).

    Image v grows downwards, NDC y grows upwards; z = -1 picks the near plane.
    """

    uv = np.asarray(uv, dtype=np.float64).reshape(-1, 2)
    ndc = np.empty((uv.shape[0], 3), dtype=np.float64)
    ndc[:, 0] = uv[:, 0] * 2.0 - 1.0
    ndc[:, 1] = uv[:, 1] * -2.0 + 1.0
    ndc[:, 2] = -1.0
    return ndc


def _apply_matrix4(matrix: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Apply a 4x4 matrix to (N, 3) points with perspective divide."""

    homo = np.hstack([points, np.ones((points.shape[0], 1))])
    out = homo @ matrix.T
    return out[:, :3] / out[:, 3:4]


class PerspectiveCamera:
    """A minimal perspective camera with world transform and unprojection."""

    def __init__(
        self,
        fov: float = 60.0,
        aspect: float = 1.0,
        near: float = 0.1,
        far: float = 1.0,
        position: Sequence[float] = (0.0, 0.0, 0.0),
        rotation: np.ndarray | None = None,
    ) -> None:
        """Create a camera.

        Args:
            fov: Vertical field of view in degrees.
            aspect: Viewport width / height.
            near: Near clipping plane distance.
            far: Far clipping plane distance.
            position: Camera position in world space.
            rotation: Optional 3x3 camera-to-world rotation (identity by default).
        """

        if near <= 0 or far <= near:
            raise ValueError("camera planes must satisfy 0 < near < far")
        self.fov = float(fov)
        self.aspect = float(aspect)
        self.near = float(near)
        self.far = float(far)
        self.position = np.asarray(position, dtype=np.float64).reshape(3).copy()
        self.rotation = (
            np.eye(3, dtype=np.float64)
            if rotation is None
            else np.asarray(rotation, dtype=np.float64).reshape(3, 3).copy()
        )
        self.projection_matrix = np.eye(4)
        self.projection_matrix_inverse = np.eye(4)
        self.update_projection_matrix()

    def update_projection_matrix(self) -> None:
        """Recompute the projection matrices after fov/aspect/near/far changes."""

        f = 1.0 / math.tan(math.radians(self.fov) * 0.5)
        n, fa = self.near, self.far
        self.projection_matrix = np.array(
            [
                [f / self.aspect, 0.0, 0.0, 0.0],
                [0.0, f, 0.0, 0.0],
                [0.0, 0.0, (fa + n) / (n - fa), 2.0 * fa * n / (n - fa)],
                [0.0, 0.0, -1.0, 0.0],
            ],
            dtype=np.float64,
        )
        self.projection_matrix_inverse = np.linalg.inv(self.projection_matrix)

    @property
    def matrix_world(self) -> np.ndarray:
        """Camera-to-world transform (rotation + translation, unit scale)."""

        m = np.eye(4, dtype=np.float64)
        m[:3, :3] = self.rotation
        m[:3, 3] = self.position
        return m

    @property
    def matrix_world_inverse(self) -> np.ndarray:
        m = np.eye(4, dtype=np.float64)
        m[:3, :3] = self.rotation.T
        m[:3, 3] = -self.rotation.T @ self.position
        return m

    def view_axis(self) -> np.ndarray:
        """Unit vector of the camera's local +Z axis in world space (points backwards)."""

        return self.rotation[:, 2].copy()

    def look_at(self, target: Sequence[float], up: Sequence[float] = (0.0, 1.0, 0.0)) -> None:
        """Rotate the camera so its -Z axis points at `target`."""

        z = self.position - np.asarray(target, dtype=np.float64)
        norm = np.linalg.norm(z)
        if norm == 0:
            return
        z /= norm
        x = np.cross(np.asarray(up, dtype=np.float64), z)
        if np.linalg.norm(x) == 0:
            # up is parallel to the view direction; nudge it
            x = np.cross(np.array([0.0, 0.0, 1.0]), z)
        x /= np.linalg.norm(x)
        y = np.cross(z, x)
        self.rotation = np.column_stack([x, y, z])

    def unproject(self, ndc: np.ndarray) -> np.ndarray:
        """Map NDC points (N, 3) back to world space."""

        ndc = np.asarray(ndc, dtype=np.float64).reshape(-1, 3)
        view = _apply_matrix4(self.projection_matrix_inverse, ndc)
        return _apply_matrix4(self.matrix_world, view)

    def project(self, points: np.ndarray) -> np.ndarray:
        """Map world points (N, 3) to NDC."""

        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        view = _apply_matrix4(self.matrix_world_inverse, points)
        return _apply_matrix4(self.projection_matrix, view)

    def project_to_uv(self, points: np.ndarray) -> np.ndarray:
        """Map world points (N, 3) to normalized image coordinates (N, 2)."""

        ndc = self.project(points)
        uv = np.empty((ndc.shape[0], 2), dtype=np.float64)
        uv[:, 0] = (ndc[:, 0] + 1.0) * 0.5
        uv[:, 1] = (1.0 - ndc[:, 1]) * 0.5
        return uv
