"""API routes for usage snapshots, credentials, projects and alerts.

Endpoints:
  GET  /api/usage                 latest snapshot (refreshes if none yet)
  POST /api/usage/refresh         on-demand refresh, returns the new snapshot
  GET  /api/usage/stream          SSE stream of snapshots
  GET  /api/credentials           credential connection status
  POST /api/credentials/refresh   re-read the secret store, bypassing the mirror
  GET  /api/projects              discovered projects with tokens this week
  GET  /api/projects/decode       decode one encoded project directory name
  GET  /api/alerts                threshold states and recent alerts
  POST /api/alerts/reset          clear alert flags (optionally one scope)
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from src.projects.discovery import discover_projects
from src.projects.path_resolver import display_name
from src.token_tracker.engine import UsageEngine
from src.token_tracker.scheduler import RefreshScheduler
from src.token_tracker.snapshot import UsageSnapshot

logger = logging.getLogger(__name__)

router = APIRouter()

# ── SSE subscriber list (in-memory) ──────────────────────────────────────────

_sse_queues: list[asyncio.Queue[dict[str, Any]]] = []


def broadcast_snapshot(snapshot: UsageSnapshot) -> None:
    """Push a snapshot to all SSE subscribers."""
    data = snapshot.to_dict()
    for q in _sse_queues:
        try:
            q.put_nowait(data)
        except asyncio.QueueFull:
            pass  # slow consumer, drop


async def _current_snapshot(request: Request) -> UsageSnapshot:
    engine: UsageEngine = request.app.state.engine
    if engine.latest is not None:
        return engine.latest
    scheduler: RefreshScheduler = request.app.state.scheduler
    return await scheduler.refresh_now()


# ── Usage ────────────────────────────────────────────────────────────────────


@router.get("/usage")
async def get_usage(request: Request) -> dict[str, Any]:
    snapshot = await _current_snapshot(request)
    return snapshot.to_dict()


@router.post("/usage/refresh")
async def refresh_usage(request: Request) -> dict[str, Any]:
    scheduler: RefreshScheduler = request.app.state.scheduler
    snapshot = await scheduler.refresh_now()
    return snapshot.to_dict()


@router.get("/usage/stream")
async def usage_stream(request: Request) -> StreamingResponse:
    """Server-Sent Events stream of usage snapshots."""
    queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=20)
    _sse_queues.append(queue)

    async def event_generator():
        try:
            engine: UsageEngine = request.app.state.engine
            if engine.latest is not None:
                yield f"event: init\ndata: {json.dumps(engine.latest.to_dict())}\n\n"

            while True:
                if await request.is_disconnected():
                    break
                try:
                    data = await asyncio.wait_for(queue.get(), timeout=30)
                    yield f"event: snapshot\ndata: {json.dumps(data)}\n\n"
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
        finally:
            _sse_queues.remove(queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# ── Credentials ──────────────────────────────────────────────────────────────


@router.get("/credentials")
async def credential_status(request: Request) -> dict[str, Any]:
    engine: UsageEngine = request.app.state.engine
    status = await engine.credential_status()
    return status.to_dict()


@router.post("/credentials/refresh")
async def refresh_credentials(request: Request) -> dict[str, Any]:
    engine: UsageEngine = request.app.state.engine
    status = await engine.refresh_credentials()
    return status.to_dict()


# ── Projects ─────────────────────────────────────────────────────────────────


@router.get("/projects")
def list_projects(request: Request, include_missing: bool = False) -> dict[str, Any]:
    engine: UsageEngine = request.app.state.engine
    projects = discover_projects(
        engine.settings.projects_path,
        resolver=engine.path_resolver,
        include_missing=include_missing,
    )
    per_project = engine.latest.per_project_tokens if engine.latest else {}
    items = []
    for p in projects:
        entry = p.to_dict()
        entry["tokens_this_week"] = per_project.get(p.path, 0)
        items.append(entry)
    return {"projects": items, "total": len(items)}


@router.get("/projects/decode")
def decode_project(request: Request, name: str) -> dict[str, Any]:
    if not name:
        raise HTTPException(status_code=422, detail="name must not be empty")
    engine: UsageEngine = request.app.state.engine
    return {
        "name": name,
        "path": engine.path_resolver.decode(name),
        "display_name": display_name(name),
    }


# ── Alerts ───────────────────────────────────────────────────────────────────


@router.get("/alerts")
def get_alerts(request: Request) -> dict[str, Any]:
    engine: UsageEngine = request.app.state.engine
    return {
        "thresholds": engine.notifier.states(),
        "recent": [a.to_dict() for a in reversed(engine.recent_alerts)],
        "notifications": (
            engine.notifications.status() if engine.notifications else {"enabled": False}
        ),
    }


@router.post("/alerts/reset")
def reset_alerts(request: Request, scope: str | None = None) -> dict[str, Any]:
    if scope not in (None, "session", "weekly"):
        raise HTTPException(status_code=422, detail=f"Unknown scope: {scope}")
    engine: UsageEngine = request.app.state.engine
    engine.notifier.reset(scope)
    return {"status": "reset", "scope": scope or "all"}
