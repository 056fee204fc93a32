"""Configuration endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from landmark_scene.api.schemas.models import ConfigSchema, ParamsSchema, ParamsUpdateSchema
from landmark_scene.api.services.state import (
    TrackingModeLocked,
    get_params,
    get_settings,
    reload_settings,
    update_params,
)
from landmark_scene.core.config.presets import list_presets, preset_patch
from landmark_scene.core.config.settings import settings_to_dict

router = APIRouter()


@router.get("/config", response_model=ConfigSchema)
def get_config() -> ConfigSchema:
    """Return the current effective configuration."""

    settings = get_settings()
    return ConfigSchema(**settings_to_dict(settings))


@router.post("/config", response_model=ConfigSchema)
def update_config(cfg: ConfigSchema) -> ConfigSchema:
    """Update in-memory settings and restart the engine.

    This endpoint updates runtime configuration only. Persist configuration via
    environment variables or the YAML config file. The tracking mode cannot be
    changed on a running process (409).
    """

    # Fields the client left out keep their current values.
    data = cfg.model_dump(exclude_unset=True)
    try:
        settings = reload_settings(data)
    except TrackingModeLocked as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from None
    return ConfigSchema(**settings_to_dict(settings))


@router.get("/config/params", response_model=ParamsSchema)
def get_live_params() -> ParamsSchema:
    """Return the live field of view and depth scalar."""

    params = get_params()
    return ParamsSchema(fov=params.fov, depth_scalar=params.depth_scalar)


@router.post("/config/params", response_model=ParamsSchema)
def update_live_params(patch: ParamsUpdateSchema) -> ParamsSchema:
    """Change the live parameters; applied from the next processed frame."""

    try:
        params = update_params(fov=patch.fov, depth_scalar=patch.depth_scalar)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from None
    return ParamsSchema(fov=params.fov, depth_scalar=params.depth_scalar)


@router.get("/config/presets")
def get_presets() -> dict[str, list[dict[str, object]]]:
    """Return available lens presets."""

    return {"presets": list_presets()}


@router.post("/config/presets/{preset_id}", response_model=ParamsSchema)
def apply_preset(preset_id: str) -> ParamsSchema:
    """Apply a lens preset by id and return the updated live parameters."""

    try:
        patch = preset_patch(preset_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Unknown preset") from None
    params = update_params(**patch)
    return ParamsSchema(fov=params.fov, depth_scalar=params.depth_scalar)
