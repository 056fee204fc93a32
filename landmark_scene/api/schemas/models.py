"""Pydantic models for the HTTP/WS API."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from landmark_scene.core.config.settings import (
    DEPTH_SCALAR_RANGE,
    FOV_RANGE,
    STEP_STRATEGIES,
    TRACKING_MODES,
)


class StatsSchema(BaseModel):
    """High-level summary stats payload."""

    mode: str
    count: int
    fps: float
    stream_fps: float | None = None
    alignment_cost: float | None = None
    error: str | None = None


class ParamsSchema(BaseModel):
    """Live scene parameters."""

    fov: float = Field(ge=FOV_RANGE[0], le=FOV_RANGE[1])
    depth_scalar: float = Field(ge=DEPTH_SCALAR_RANGE[0], le=DEPTH_SCALAR_RANGE[1])


class ParamsUpdateSchema(BaseModel):
    """Partial update of the live scene parameters."""

    fov: float | None = Field(default=None, ge=FOV_RANGE[0], le=FOV_RANGE[1])
    depth_scalar: float | None = Field(
        default=None, ge=DEPTH_SCALAR_RANGE[0], le=DEPTH_SCALAR_RANGE[1]
    )


class ConfigSchema(BaseModel):
    """Runtime configuration payload."""

    video_source: str
    video_path: str | None = None
    rtsp_url: str | None = None
    webcam_index: int = Field(default=0, ge=0)
    tracking_mode: str = "face"
    face_model_path: str
    pose_model_path: str
    min_detection_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    min_tracking_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    fov: float = Field(default=60.0, ge=FOV_RANGE[0], le=FOV_RANGE[1])
    depth_scalar: float = Field(default=0.2, ge=DEPTH_SCALAR_RANGE[0], le=DEPTH_SCALAR_RANGE[1])
    solver_iterations: int = Field(default=1000, ge=1)
    solver_step_strategy: str = "fixed"
    pursuit_step: float = Field(default=0.00125, ge=0.0)
    pose_reset_after_missed: int = Field(default=0, ge=0)
    target_fps: float | None = Field(default=None, ge=0)
    output_width: int | None = Field(default=None, gt=0)
    jpeg_quality: int = Field(default=70, ge=10, le=100)
    enable_backend_overlays: bool = False

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
