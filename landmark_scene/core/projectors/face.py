"""Scale-normalized face projection.

Unprojects every landmark through the camera, pushes it back along the view
axis by its relative depth, then normalizes depth by the summed distance of the
points from their centroid. The result keeps a roughly constant size no matter
how far the face is from the webcam.
"""

from __future__ import annotations

import numpy as np

from landmark_scene.core.camera import PerspectiveCamera, uv_to_ndc
from landmark_scene.core.config.settings import SceneParams
from landmark_scene.core.markers import MarkerBuffer
from landmark_scene.core.projectors.base import ProjectionReport
from landmark_scene.core.types import DetectionResult, LandmarkSet, depth_array, uv_array


def raw_points(landmarks: LandmarkSet, camera: PerspectiveCamera) -> np.ndarray:
    """Near-plane world points for each landmark, shape (N, 3)."""

    return camera.unproject(uv_to_ndc(uv_array(landmarks)))


def depth_adjusted_points(
    landmarks: LandmarkSet, camera: PerspectiveCamera, depth_scalar: float
) -> np.ndarray:
    """Raw points offset along the view axis by `-depth * depth_scalar`."""

    offsets = depth_array(landmarks) * depth_scalar
    return raw_points(landmarks, camera) - offsets[:, None] * camera.view_axis()[None, :]


def centroid_distance_sum(points: np.ndarray) -> float:
    """Sum (not mean) of Euclidean distances from the centroid."""

    centroid = points.mean(axis=0)
    return float(np.linalg.norm(points - centroid, axis=1).sum())


def project_face(
    landmarks: LandmarkSet, camera: PerspectiveCamera, depth_scalar: float
) -> np.ndarray:
    """Return the scale-normalized 3D position of every landmark, shape (N, 3).

    Two passes: the first fixes a size-invariant depth per landmark, the second
    rescales the original camera ray so its axial component matches that depth.
    A coincident or single-point set gives `scale == 0` and non-finite output.
    """

    axis = camera.view_axis()
    adjusted = depth_adjusted_points(landmarks, camera, depth_scalar)
    scale = centroid_distance_sum(adjusted)

    with np.errstate(divide="ignore", invalid="ignore"):
        z = ((adjusted - camera.position) @ axis) / (scale * depth_scalar)
        rays = raw_points(landmarks, camera) - camera.position
        ray_z = rays @ axis
        return camera.position + rays / (ray_z / z)[:, None]


class FaceProjector:
    """Projector for single-subject face meshes (2D + relative depth)."""

    mode = "face"

    def __init__(self, marker_scale: float = 0.001) -> None:
        self.marker_scale = float(marker_scale)

    def project(
        self,
        result: DetectionResult,
        camera: PerspectiveCamera,
        params: SceneParams,
        markers: MarkerBuffer,
    ) -> ProjectionReport:
        if not result.landmarks:
            markers.set_count(0)
            return ProjectionReport(count=0)

        positions = project_face(result.landmarks, camera, params.depth_scalar)
        markers.write(positions, self.marker_scale)
        return ProjectionReport(count=markers.count)
