"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from src.config import Settings
from src.notifications.state import AlertStateStore
from src.notifications.thresholds import ThresholdConfig, ThresholdNotifier
from src.projects.path_resolver import PathResolver
from src.token_tracker.credentials import Credentials, CredentialStatus
from src.token_tracker.engine import UsageEngine
from src.token_tracker.log_scanner import LogScanner
from src.token_tracker.usage_client import ApiUsage


def assistant_line(
    input_tokens: int = 0,
    output_tokens: int = 0,
    cache_read: int = 0,
    cache_creation: int = 0,
    **extra: Any,
) -> str:
    entry = {
        "type": "assistant",
        "sessionId": "s1",
        "message": {
            "model": "claude-sonnet-4-5",
            "usage": {
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "cache_read_input_tokens": cache_read,
                "cache_creation_input_tokens": cache_creation,
            },
        },
    }
    entry.update(extra)
    return json.dumps(entry)


@pytest.fixture
def claude_dir(tmp_path: Path) -> Path:
    d = tmp_path / "claude"
    (d / "projects").mkdir(parents=True)
    return d


@pytest.fixture
def write_session(claude_dir: Path) -> Callable[..., Path]:
    """Write a session log: write_session(project, session_id, [lines], mtime=None)."""

    def _write(
        project: str,
        session_id: str,
        lines: list[str],
        mtime: float | None = None,
    ) -> Path:
        project_dir = claude_dir / "projects" / project
        project_dir.mkdir(parents=True, exist_ok=True)
        path = project_dir / f"{session_id}.jsonl"
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return path

    return _write


@pytest.fixture
def settings(tmp_path: Path, claude_dir: Path) -> Settings:
    return Settings(
        claude_dir=str(claude_dir),
        data_dir=str(tmp_path / "data"),
        plan="max20x",
        plan_auto_detect=False,
        api_timeout_seconds=2.0,
        notifications_enabled=True,
        slack_webhook_url="",
        telegram_bot_token="",
        telegram_chat_id="",
    )


# ── Fakes ────────────────────────────────────────────────────────────────────


class FakeResolver:
    """Stands in for CredentialResolver."""

    def __init__(self, creds: Credentials | None = None, refreshed: Credentials | None = None) -> None:
        self.creds = creds
        self.refreshed = refreshed
        self.force_refresh_calls = 0

    def get_credentials(self) -> Credentials | None:
        return self.creds

    def force_refresh(self) -> Credentials | None:
        self.force_refresh_calls += 1
        self.creds = self.refreshed
        return self.refreshed

    def status(self) -> CredentialStatus:
        if self.creds is None:
            return CredentialStatus(state="disconnected")
        return CredentialStatus(
            state="connected",
            subscription_type=self.creds.subscription_type,
            rate_limit_tier=self.creds.rate_limit_tier,
        )


class FakeClient:
    """Stands in for RemoteUsageClient."""

    def __init__(self, result: ApiUsage | None = None, delay: float = 0.0) -> None:
        self.result = result
        self.delay = delay
        self.calls = 0

    async def fetch_usage(self) -> ApiUsage | None:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.result


class RecordingNotifications:
    """Stands in for NotificationManager."""

    def __init__(self) -> None:
        self.alerts: list[Any] = []

    async def notify_threshold(self, alert: Any) -> None:
        self.alerts.append(alert)

    def status(self) -> dict[str, Any]:
        return {"enabled": True}


@pytest.fixture
def make_engine(
    settings: Settings, claude_dir: Path, tmp_path: Path
) -> Iterator[Callable[..., UsageEngine]]:
    engines: list[UsageEngine] = []

    def _make(
        api: ApiUsage | None = None,
        api_delay: float = 0.0,
        creds: Credentials | None = None,
        notifications: Any = None,
        config: ThresholdConfig | None = None,
        **overrides: Any,
    ) -> UsageEngine:
        cfg = settings.model_copy(update=overrides) if overrides else settings
        engine = UsageEngine(
            cfg,
            scanner=LogScanner(claude_dir / "projects"),
            resolver=FakeResolver(creds),
            client=FakeClient(api, delay=api_delay),
            notifier=ThresholdNotifier(config or ThresholdConfig(), AlertStateStore()),
            notifications=notifications if notifications is not None else RecordingNotifications(),
            path_resolver=PathResolver(root=str(tmp_path)),
        )
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        engine.close()
