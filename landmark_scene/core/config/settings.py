"""Service configuration.

Settings are loaded from YAML defaults and overridden by environment variables
prefixed with `LMS_`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, cast

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

FOV_RANGE = (30.0, 100.0)
DEPTH_SCALAR_RANGE = (0.05, 0.5)
TRACKING_MODES = ("face", "pose")
STEP_STRATEGIES = ("fixed", "adaptive")


def validate_fov(v: float) -> float:
    lo, hi = FOV_RANGE
    if not lo <= float(v) <= hi:
        raise ValueError(f"fov must be in [{lo:g}, {hi:g}] degrees")
    return float(v)


def validate_depth_scalar(v: float) -> float:
    lo, hi = DEPTH_SCALAR_RANGE
    if not lo <= float(v) <= hi:
        raise ValueError(f"depth_scalar must be in [{lo:g}, {hi:g}]")
    return float(v)


class SceneSettings(BaseSettings):
    """Runtime configuration loaded from YAML defaults and `LMS_` env overrides."""

    video_source: str = Field("webcam", description="webcam|file|rtsp")
    video_path: str | None = None
    rtsp_url: str | None = None
    webcam_index: int = 0

    # Selected once at startup; the API refuses to change it on a running session.
    tracking_mode: str = Field("face", description="face|pose")
    face_model_path: str = "models/face_landmarker.task"
    pose_model_path: str = "models/pose_landmarker_full.task"
    min_detection_confidence: float = 0.5
    min_tracking_confidence: float = 0.5

    # Live scene parameters (the "sliders"). Copied into SceneParams at startup.
    fov: float = 60.0
    depth_scalar: float = 0.2

    # Detector-facing virtual camera.
    camera_position: tuple[float, float, float] = (0.0, 0.1, 0.2)
    camera_near: float = 0.1
    camera_far: float = 1.0

    marker_capacity: int = 478
    face_marker_scale: float = 0.001
    pose_marker_scale: float = 0.01

    # Pose alignment solver.
    world_scale: float = 1.0
    solver_iterations: int = 1000
    solver_step_strategy: str = Field("fixed", description="fixed|adaptive")
    pursuit_step: float = 0.00125
    # Reset the pose session after more than N frames without a subject (0 = never).
    pose_reset_after_missed: int = 0

    # Optional cap for processing loop FPS. Use 0 to run as fast as possible.
    target_fps: float | None = None
    # Optional: downscale outgoing MJPEG frames before JPEG encoding.
    output_width: int | None = None
    jpeg_quality: int = 70
    enable_backend_overlays: bool = False
    profile_steps: bool = False

    model_config = SettingsConfigDict(env_prefix="LMS_", validate_assignment=True)

    @field_validator("video_source")
    @classmethod
    def _validate_source(cls, v: str) -> str:
        if v not in {"webcam", "file", "rtsp"}:
            raise ValueError("video_source must be webcam|file|rtsp")
        return v

    @field_validator("tracking_mode")
    @classmethod
    def _validate_tracking_mode(cls, v: str) -> str:
        v2 = str(v).strip().lower()
        if v2 not in TRACKING_MODES:
            raise ValueError("tracking_mode must be face|pose")
        return v2

    @field_validator("solver_step_strategy")
    @classmethod
    def _validate_step_strategy(cls, v: str) -> str:
        v2 = str(v).strip().lower()
        if v2 not in STEP_STRATEGIES:
            raise ValueError("solver_step_strategy must be fixed|adaptive")
        return v2

    @field_validator("fov")
    @classmethod
    def _validate_fov(cls, v: float) -> float:
        return validate_fov(v)

    @field_validator("depth_scalar")
    @classmethod
    def _validate_depth_scalar(cls, v: float) -> float:
        return validate_depth_scalar(v)

    @field_validator("min_detection_confidence", "min_tracking_confidence")
    @classmethod
    def _validate_confidence(cls, v: float) -> float:
        if not 0.0 <= float(v) <= 1.0:
            raise ValueError("confidence must be in [0, 1]")
        return float(v)

    @field_validator("camera_near", "camera_far")
    @classmethod
    def _validate_plane(cls, v: float) -> float:
        if float(v) <= 0.0:
            raise ValueError("camera planes must be > 0")
        return float(v)

    @field_validator("marker_capacity", "solver_iterations")
    @classmethod
    def _validate_positive_int(cls, v: int) -> int:
        if int(v) <= 0:
            raise ValueError("value must be >= 1")
        return int(v)

    @field_validator("face_marker_scale", "pose_marker_scale", "world_scale")
    @classmethod
    def _validate_positive_float(cls, v: float) -> float:
        if float(v) <= 0.0:
            raise ValueError("value must be > 0")
        return float(v)

    @field_validator("pursuit_step")
    @classmethod
    def _validate_pursuit_step(cls, v: float) -> float:
        if float(v) < 0.0:
            raise ValueError("pursuit_step must be >= 0")
        return float(v)

    @field_validator("pose_reset_after_missed", "webcam_index")
    @classmethod
    def _validate_non_negative_int(cls, v: int) -> int:
        if int(v) < 0:
            raise ValueError("value must be >= 0")
        return int(v)

    @model_validator(mode="after")
    def _validate_planes_order(self) -> "SceneSettings":
        if self.camera_far <= self.camera_near:
            raise ValueError("camera_far must be > camera_near")
        return self

    @field_validator("output_width")
    @classmethod
    def _validate_output_width(cls, v: int | None) -> int | None:
        if v is None:
            return v
        if v <= 0:
            raise ValueError("output_width must be > 0")
        return v

    @field_validator("target_fps")
    @classmethod
    def _validate_target_fps(cls, v: float | None) -> float | None:
        if v is None:
            return v
        if v < 0:
            raise ValueError("target_fps must be >= 0")
        return float(v)

    @field_validator("jpeg_quality")
    @classmethod
    def _validate_jpeg_quality(cls, v: int) -> int:
        if not 10 <= int(v) <= 100:
            raise ValueError("jpeg_quality must be in [10, 100]")
        return int(v)


@dataclass
class SceneParams:
    """Live, user-adjustable parameters read by the projector every frame."""

    fov: float = 60.0
    depth_scalar: float = 0.2

    def update(self, fov: float | None = None, depth_scalar: float | None = None) -> None:
        """Validate and apply a partial update (both values or neither change).

        Not synchronized. A params object shared with a running pipeline should
        be replaced with an updated copy, as `SceneEngine.update_params` does.
        """

        new_fov = validate_fov(fov) if fov is not None else self.fov
        new_depth = validate_depth_scalar(depth_scalar) if depth_scalar is not None else self.depth_scalar
        self.fov = new_fov
        self.depth_scalar = new_depth


def params_from_settings(settings: SceneSettings) -> SceneParams:
    return SceneParams(fov=settings.fov, depth_scalar=settings.depth_scalar)


def settings_to_dict(settings: SceneSettings) -> dict[str, Any]:
    """Convert settings to a plain dict."""

    return cast(dict[str, Any], settings.model_dump())


def _fields_set(obj: object) -> set[str]:
    """Return the set of fields explicitly provided/overridden on a Pydantic model."""

    return set(getattr(obj, "model_fields_set", set()))


def _config_path() -> Path:
    """Return the YAML configuration path (defaults to config/scene.config.yml)."""

    return Path(os.getenv("LMS_CONFIG", "config/scene.config.yml"))


def load_settings() -> SceneSettings:
    """Load settings from YAML and environment variables.

    YAML provides defaults; environment variables override.
    """

    data: dict[str, Any] = {}
    path = _config_path()
    if path.exists():
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    env_settings = SceneSettings()
    env_overrides: dict[str, Any] = {
        name: getattr(env_settings, name) for name in _fields_set(env_settings)
    }

    merged = {**data, **env_overrides}
    return SceneSettings(**merged)
