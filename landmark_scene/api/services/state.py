"""In-process state for settings and the scene engine.

FastAPI routes use this module to access (and hot-reload) the singleton
`SceneEngine` instance.
"""

from __future__ import annotations

from threading import RLock

from landmark_scene.api.services.engine import SceneEngine
from landmark_scene.core.config.settings import (
    SceneParams,
    SceneSettings,
    load_settings,
    params_from_settings,
    settings_to_dict,
)

_settings: SceneSettings | None = None
_engine: SceneEngine | None = None
_lock = RLock()


class TrackingModeLocked(ValueError):
    """Raised when a reload would switch the tracking mode of a running session."""


def get_settings() -> SceneSettings:
    """Return cached settings, loading them on first use."""

    global _settings
    with _lock:
        if _settings is None:
            _settings = load_settings()
    return _settings


def reload_settings(data: dict | None = None) -> SceneSettings:
    """Reload settings and restart the engine if it is running.

    Args:
        data: Optional patch dict merged over the current settings. Without a
            patch the settings are reloaded from YAML and the environment.

    Raises:
        TrackingModeLocked: if the patch changes `tracking_mode`; the projector
            variant is fixed for the lifetime of the process.
    """

    global _settings, _engine
    with _lock:
        current = get_settings()
        if data:
            merged = SceneSettings(**{**settings_to_dict(current), **data})
        else:
            merged = load_settings()
        if merged.tracking_mode != current.tracking_mode:
            raise TrackingModeLocked(
                f"tracking_mode is fixed to {current.tracking_mode!r} for this session"
            )
        _settings = merged
        if _engine:
            _engine.stop()
            _engine = SceneEngine(_settings)
            _engine.start()
    return _settings


def get_params() -> SceneParams:
    """Return the live scene parameters (from the engine when one exists)."""

    with _lock:
        if _engine is not None:
            return _engine.update_params()
        return params_from_settings(get_settings())


def update_params(fov: float | None = None, depth_scalar: float | None = None) -> SceneParams:
    """Apply live parameter changes without restarting the engine.

    The cached settings follow the live values so `/config` stays consistent.
    """

    with _lock:
        settings = get_settings()
        if _engine is not None:
            params = _engine.update_params(fov=fov, depth_scalar=depth_scalar)
        else:
            params = params_from_settings(settings)
            params.update(fov=fov, depth_scalar=depth_scalar)
        settings.fov = params.fov
        settings.depth_scalar = params.depth_scalar
    return params


def get_engine() -> SceneEngine:
    """Return the singleton engine instance, creating and starting it if needed."""

    global _engine
    with _lock:
        if _engine is None:
            _engine = SceneEngine(get_settings())
            _engine.start()
    return _engine


def stop_engine() -> None:
    """Stop and discard the singleton engine instance (if present)."""

    global _engine
    with _lock:
        if _engine is not None:
            _engine.stop()
            _engine = None
