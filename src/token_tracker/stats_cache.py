"""Readers for Claude Code's aggregate statistics and prompt history files.

- ``~/.claude/stats-cache.json``: pre-computed daily activity, per-day token
  totals by model, lifetime per-model usage, hour histogram.
- ``~/.claude/history.jsonl``: one record per submitted prompt.

Both files are written by Claude Code at its own pace, so they lag behind the
session logs.  A missing or malformed file yields ``None`` / an empty list.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator

logger = logging.getLogger(__name__)


class _Lenient(BaseModel):
    """Treat explicit JSON nulls as absent so field defaults apply."""

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


# ── Stats cache ──────────────────────────────────────────────────────────────


class DailyActivity(_Lenient):
    date: str
    messageCount: int = 0
    sessionCount: int = 0


class DailyModelTokens(_Lenient):
    date: str
    tokensByModel: dict[str, int] = Field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.tokensByModel.values())


class ModelUsage(_Lenient):
    inputTokens: int = 0
    outputTokens: int = 0
    cacheReadInputTokens: int = 0
    cacheCreationInputTokens: int = 0

    @property
    def io_tokens(self) -> int:
        return self.inputTokens + self.outputTokens

    @property
    def total_tokens(self) -> int:
        return (
            self.inputTokens
            + self.outputTokens
            + self.cacheReadInputTokens
            + self.cacheCreationInputTokens
        )


class StatsCache(_Lenient):
    totalSessions: int = 0
    totalMessages: int = 0
    dailyActivity: list[DailyActivity] = Field(default_factory=list)
    dailyModelTokens: list[DailyModelTokens] = Field(default_factory=list)
    modelUsage: dict[str, ModelUsage] = Field(default_factory=dict)
    hourCounts: dict[str, int] = Field(default_factory=dict)


def parse_day(value: str) -> date | None:
    """Parse a ``YYYY-MM-DD`` day string, ``None`` if malformed."""
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return None


def load_stats_cache(path: Path) -> StatsCache | None:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.warning("Could not read stats cache %s: %s", path, e)
        return None
    try:
        return StatsCache.model_validate(raw)
    except ValidationError as e:
        logger.warning("Malformed stats cache %s: %s", path, e.errors()[:3])
        return None


# ── Prompt history ───────────────────────────────────────────────────────────


class HistoryEntry(_Lenient):
    display: str = ""
    timestamp: int | None = None  # epoch milliseconds
    project: str | None = None
    sessionId: str | None = None

    @property
    def at(self) -> datetime | None:
        """Local-time aware datetime of the prompt."""
        if self.timestamp is None:
            return None
        return datetime.fromtimestamp(self.timestamp / 1000).astimezone()


def load_history(path: Path, max_age_days: int | None = 30) -> list[HistoryEntry]:
    """Read prompt history in file order, skipping malformed lines.

    Entries older than ``max_age_days`` are dropped; entries without a
    timestamp are kept.
    """
    try:
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except FileNotFoundError:
        return []
    except OSError as e:
        logger.warning("Could not read history %s: %s", path, e)
        return []

    cutoff_ms: int | None = None
    if max_age_days is not None:
        cutoff = datetime.now().astimezone() - timedelta(days=max_age_days)
        cutoff_ms = int(cutoff.timestamp() * 1000)

    entries: list[HistoryEntry] = []
    for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            entry = HistoryEntry.model_validate(json.loads(line))
        except (ValueError, ValidationError):
            continue
        if cutoff_ms is not None and entry.timestamp is not None and entry.timestamp < cutoff_ms:
            continue
        entries.append(entry)
    return entries
