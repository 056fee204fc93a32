"""FastAPI application entrypoint."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from landmark_scene.api.routes import config, health, stats, stream


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler.

    Ensures the background scene engine is stopped when the app shuts down.
    """

    from landmark_scene.api.services.state import stop_engine

    yield
    stop_engine()


app = FastAPI(title="Landmark Scene API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(config.router)
app.include_router(stats.router)
app.include_router(stream.router)


if __name__ == "__main__":
    uvicorn.run("landmark_scene.api.main:app", host="0.0.0.0", port=8000, reload=True)
