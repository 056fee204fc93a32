"""Stats endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from landmark_scene.api.schemas.models import StatsSchema
from landmark_scene.api.services.engine import SceneEngine
from landmark_scene.api.services.state import get_engine

router = APIRouter()


@router.get("/stats", response_model=StatsSchema)
def stats(engine: SceneEngine = Depends(get_engine)) -> StatsSchema:
    """Return high-level streaming statistics."""

    summary = engine.latest_summary()
    if summary is None:
        return StatsSchema(
            mode=engine.mode,
            count=0,
            fps=0.0,
            stream_fps=engine.stream_fps(),
            error=engine.last_error,
        )
    return StatsSchema(
        mode=summary.mode,
        count=summary.count,
        fps=summary.fps,
        stream_fps=engine.stream_fps(),
        alignment_cost=summary.alignment_cost,
        error=engine.last_error,
    )
