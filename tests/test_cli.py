"""Tests for the rich terminal rendering and CLI commands."""

from __future__ import annotations

import io
import sys
from datetime import datetime, timezone

import pytest
from rich.console import Console

from src import main as cli
from src.token_tracker.snapshot import UsageSnapshot


def render(snapshot: UsageSnapshot) -> str:
    console = Console(file=io.StringIO(), width=140, color_system=None)
    console.print(cli.render_snapshot(snapshot))
    return console.file.getvalue()


class TestRender:
    def test_windows_and_sources(self) -> None:
        snap = UsageSnapshot(
            weekly_ratio=0.42,
            tokens_this_week=840_000_000,
            weekly_source="api",
            session_source="exact-local",
            weekly_reset_seconds=90_061,
            updated_at=datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc),
        )
        out = render(snap)
        assert "Week" in out
        assert "42%" in out
        assert "840.0M" in out
        assert "1d 1h" in out
        assert "exact-local" in out

    def test_over_limit_shows_warning(self) -> None:
        out = render(UsageSnapshot(weekly_ratio=1.3, weekly_reset_seconds=3600))
        assert "100%" in out
        assert "limit before reset" in out

    def test_bar_width(self) -> None:
        assert cli._bar(0.5, width=10).count("█") == 5
        assert cli._bar(2.0, width=10).count("░") == 0


class TestCommands:
    def test_decode(self, monkeypatch: pytest.MonkeyPatch) -> None:
        buffer = io.StringIO()
        monkeypatch.setattr(cli, "console", Console(file=buffer, width=200, color_system=None))
        monkeypatch.setattr(sys, "argv", ["tokenmeter", "decode", "-nonexistent-root-dir"])
        cli.main()
        assert "/nonexistent/root/dir" in buffer.getvalue()

    def test_no_command_prints_help(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(sys, "argv", ["tokenmeter"])
        with pytest.raises(SystemExit):
            cli.main()

    def test_decode_name_after_separator(self, monkeypatch: pytest.MonkeyPatch) -> None:
        buffer = io.StringIO()
        monkeypatch.setattr(cli, "console", Console(file=buffer, width=200, color_system=None))
        monkeypatch.setattr(sys, "argv", ["tokenmeter", "decode", "--", "-nonexistent-Users-alice"])
        cli.main()
        assert "/nonexistent/Users/alice" in buffer.getvalue()
