from __future__ import annotations

from typing import Any


# Lens presets. Each one patches the live scene parameters only; nothing here
# needs a restart.
#
# Notes:
# - fov: vertical field of view in degrees of the physical webcam lens
# - depth_scalar: how strongly the detector's relative depth pushes points
#   along the view axis (face mode only)


PRESETS: dict[str, dict[str, Any]] = {
    # Typical built-in laptop webcam.
    "laptop": {
        "fov": 78.0,
        "depth_scalar": 0.2,
    },
    # Neutral default.
    "standard": {
        "fov": 60.0,
        "depth_scalar": 0.2,
    },
    # Wide-angle USB cameras; flatten depth a little to hide edge distortion.
    "wide": {
        "fov": 95.0,
        "depth_scalar": 0.15,
    },
    # Zoomed or distant cameras.
    "narrow": {
        "fov": 40.0,
        "depth_scalar": 0.3,
    },
}


PRESET_LABELS: dict[str, str] = {
    "laptop": "Laptop webcam",
    "standard": "Standard",
    "wide": "Wide angle",
    "narrow": "Narrow / zoom",
}


def list_presets() -> list[dict[str, Any]]:
    return [
        {
            "id": preset_id,
            "label": PRESET_LABELS.get(preset_id, preset_id),
            "settings": PRESETS[preset_id],
        }
        for preset_id in PRESETS
    ]


def preset_patch(preset_id: str) -> dict[str, Any]:
    if preset_id not in PRESETS:
        raise KeyError(preset_id)
    return dict(PRESETS[preset_id])
