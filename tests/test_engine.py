"""Tests for the usage engine refresh cycle."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import time
from collections.abc import Callable
from pathlib import Path

import pytest
from conftest import assistant_line

from src.config import Settings
from src.token_tracker.engine import UsageEngine
from src.token_tracker.usage_client import ApiUsage


def write_history(claude_dir: Path, session_id: str) -> None:
    entry = {"display": "fix it", "timestamp": int(time.time() * 1000), "sessionId": session_id}
    (claude_dir / "history.jsonl").write_text(json.dumps(entry) + "\n")


class TestRefresh:
    def test_exact_local_counts(
        self,
        make_engine: Callable[..., UsageEngine],
        write_session: Callable[..., Path],
        claude_dir: Path,
        tmp_path: Path,
    ) -> None:
        (tmp_path / "work" / "app").mkdir(parents=True)
        write_session("-work-app", "s1", [assistant_line(100_000_000, 0)])
        write_history(claude_dir, "s1")

        snap = asyncio.run(make_engine().refresh())

        assert snap.source == "exact-local"
        assert snap.tokens_this_week == 100_000_000
        assert snap.weekly_ratio == 0.05
        assert snap.tokens_today == 100_000_000
        assert snap.session_source == "exact-local"
        assert snap.session_ratio == 0.5
        assert snap.per_project_tokens == {f"{tmp_path}/work/app": 100_000_000}

    def test_api_takes_precedence(
        self, make_engine: Callable[..., UsageEngine], write_session: Callable[..., Path]
    ) -> None:
        write_session("-work-app", "s1", [assistant_line(100_000_000, 0)])
        api = ApiUsage(40.0, None, 10.0, None)
        engine = make_engine(api=api)

        snap = asyncio.run(engine.refresh())

        assert snap.source == "api"
        assert snap.weekly_ratio == 0.4
        assert snap.tokens_this_week == 100_000_000
        assert engine.last_api_usage == api
        assert engine.latest is snap

    def test_slow_api_falls_back(
        self, make_engine: Callable[..., UsageEngine], write_session: Callable[..., Path]
    ) -> None:
        write_session("-work-app", "s1", [assistant_line(1_000, 0)])
        engine = make_engine(api=ApiUsage(40.0, None, 10.0, None), api_delay=5.0, api_timeout_seconds=0.2)

        started = time.monotonic()
        snap = asyncio.run(engine.refresh())

        assert time.monotonic() - started < 4.0
        assert snap.source == "exact-local"
        assert engine.last_api_usage is None

    def test_no_data_is_estimated_zero(self, make_engine: Callable[..., UsageEngine]) -> None:
        snap = asyncio.run(make_engine().refresh())
        assert snap.source == "estimated"
        assert snap.weekly_ratio == 0.0
        assert snap.per_project_tokens == {}

    def test_alerts_dispatched(self, make_engine: Callable[..., UsageEngine]) -> None:
        engine = make_engine(api=ApiUsage(95.0, None, 0.0, None))
        asyncio.run(engine.refresh())

        sent = engine.notifications.alerts
        assert {a.threshold_id for a in sent} == {"weekly-warning", "weekly-critical"}
        assert len(engine.recent_alerts) == 2

    def test_alerts_not_sent_when_disabled(self, make_engine: Callable[..., UsageEngine]) -> None:
        engine = make_engine(api=ApiUsage(95.0, None, 0.0, None), notifications_enabled=False)
        asyncio.run(engine.refresh())

        assert engine.notifications.alerts == []
        assert len(engine.recent_alerts) == 2

    def test_second_refresh_does_not_repeat_alerts(self, make_engine: Callable[..., UsageEngine]) -> None:
        engine = make_engine(api=ApiUsage(95.0, None, 0.0, None))
        asyncio.run(engine.refresh())
        asyncio.run(engine.refresh())
        assert len(engine.notifications.alerts) == 2

    def test_notifier_failure_keeps_snapshot(
        self, make_engine: Callable[..., UsageEngine], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        engine = make_engine(api=ApiUsage(95.0, None, 0.0, None))

        def broken(snapshot: object) -> list:
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(engine.notifier, "evaluate", broken)
        snap = asyncio.run(engine.refresh())

        assert snap.weekly_ratio == 0.95
        assert engine.latest is snap
        assert engine.notifications.alerts == []

    def test_prune(
        self, make_engine: Callable[..., UsageEngine], write_session: Callable[..., Path]
    ) -> None:
        write_session("-work-app", "old", [assistant_line(1, 0)], mtime=time.time() - 20 * 86400)
        engine = make_engine()
        engine.scanner.total_tokens()

        assert asyncio.run(engine.prune()) == 1
        assert engine.scanner.cache_size == 0

    def test_credential_status(self, make_engine: Callable[..., UsageEngine]) -> None:
        status = asyncio.run(make_engine().credential_status())
        assert status.state == "disconnected"


class TestFromSettings:
    def test_wires_persistent_components(self, settings: Settings) -> None:
        engine = UsageEngine.from_settings(settings)
        try:
            assert engine.scanner.projects_dir == settings.projects_path
            assert settings.db_path.exists()
            assert engine.notifier.config.weekly_critical == settings.weekly_critical
        finally:
            engine.close()
