"""FastAPI server exposing the usage engine."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes import broadcast_snapshot, router
from src.config import settings
from src.token_tracker.engine import UsageEngine
from src.token_tracker.scheduler import RefreshScheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the engine and start the refresh scheduler."""
    engine = UsageEngine.from_settings(settings)
    app.state.engine = engine

    scheduler = RefreshScheduler(
        engine,
        interval_seconds=settings.refresh_interval_seconds,
        prune_interval_seconds=settings.cache_prune_interval_seconds,
    )
    scheduler.subscribe(broadcast_snapshot)
    app.state.scheduler = scheduler

    try:
        await scheduler.start()
    except Exception:
        logger.exception("Refresh scheduler failed to start")

    yield

    # Shutdown
    await scheduler.stop()
    engine.close()


def create_app() -> FastAPI:
    app = FastAPI(
        title="tokenmeter - Claude usage monitor",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api")

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
