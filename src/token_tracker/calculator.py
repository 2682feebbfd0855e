"""Hybrid three-layer usage calculation.

Each window (weekly, daily, session) is resolved independently with this
precedence:

1. **api**: utilization reported by Anthropic's OAuth endpoint.
2. **exact-local**: exact token counts from scanning session logs.
3. **estimated**: stats-cache daily totals scaled by a calibration factor.

``stats-cache.json`` only records input + output tokens per day, while the
limits count cache reads and writes as well.  The calibration factor is the
lifetime ratio of all tokens to input + output tokens, which turns the daily
I/O totals into a usable estimate of real consumption.

The daily window has no API figure, so it starts at layer 2.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from src.token_tracker.plans import DEFAULT_PLAN, detect_plan, get_plan
from src.token_tracker.snapshot import (
    SOURCE_API,
    SOURCE_ESTIMATED,
    SOURCE_EXACT,
    UsageSnapshot,
)
from src.token_tracker.stats_cache import DailyActivity, HistoryEntry, StatsCache, parse_day
from src.token_tracker.usage_client import ApiUsage

MIN_CALIBRATION = 1.0
MAX_CALIBRATION = 10_000.0


@dataclass(frozen=True)
class Limits:
    weekly_token_limit: int = 2_000_000_000
    session_token_limit: int = 200_000_000
    daily_token_limit: int = 0  # 0 = weekly / 7
    weekly_reset_weekday: int = 6  # 0=Monday .. 6=Sunday
    session_window_hours: int = 5

    @property
    def daily(self) -> int:
        return self.daily_token_limit or self.weekly_token_limit // 7

    @classmethod
    def from_settings(cls, settings: Any, rate_limit_tier: str | None = None) -> Limits:
        """Plan defaults, overridden by any non-zero limit in settings.

        With ``plan_auto_detect`` the plan implied by the credential tier wins
        over the configured one.
        """
        plan_name = settings.plan or DEFAULT_PLAN
        if settings.plan_auto_detect:
            plan_name = detect_plan(rate_limit_tier) or plan_name
        plan = get_plan(plan_name)
        return cls(
            weekly_token_limit=settings.weekly_token_limit or plan.weekly_token_limit,
            session_token_limit=settings.session_token_limit or plan.session_token_limit,
            daily_token_limit=settings.daily_token_limit,
            weekly_reset_weekday=settings.weekly_reset_weekday,
            session_window_hours=settings.session_window_hours,
        )


@dataclass(frozen=True)
class ExactTokens:
    """Exact counts from the log scanner; 0 / None means no data."""

    weekly: int = 0
    daily: int = 0
    session: int | None = None


@dataclass(frozen=True)
class SessionEstimate:
    tokens: int
    started_at: datetime | None


def _now() -> datetime:
    return datetime.now().astimezone()


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _ratio(tokens: int, limit: int) -> float:
    return tokens / limit if limit > 0 else 0.0


# ── Stats-cache helpers ──────────────────────────────────────────────────────


def calibration_factor(stats: StatsCache | None) -> float:
    """All tokens / I/O tokens over lifetime model usage, clamped to [1, 10000]."""
    if stats is None or not stats.modelUsage:
        return 1.0
    all_tokens = sum(u.total_tokens for u in stats.modelUsage.values())
    io_tokens = sum(u.io_tokens for u in stats.modelUsage.values())
    if io_tokens <= 0:
        return 1.0
    return min(max(all_tokens / io_tokens, MIN_CALIBRATION), MAX_CALIBRATION)


def _cutoff(now: datetime, days: int) -> date:
    return now.date() - timedelta(days=days)


def raw_tokens_by_period(stats: StatsCache, days: int, now: datetime) -> int:
    """Raw I/O tokens on days from local midnight ``days`` ago onwards."""
    cutoff = _cutoff(now, days)
    total = 0
    for entry in stats.dailyModelTokens:
        day = parse_day(entry.date)
        if day is not None and day >= cutoff:
            total += entry.total
    return total


def _activity_since(stats: StatsCache, days: int, now: datetime) -> list[DailyActivity]:
    cutoff = _cutoff(now, days)
    result = []
    for activity in stats.dailyActivity:
        day = parse_day(activity.date)
        if day is not None and day >= cutoff:
            result.append(activity)
    return result


def messages_by_period(stats: StatsCache, days: int, now: datetime) -> int:
    return sum(a.messageCount for a in _activity_since(stats, days, now))


def sessions_by_period(stats: StatsCache, days: int, now: datetime) -> int:
    return sum(a.sessionCount for a in _activity_since(stats, days, now))


def all_time_tokens(stats: StatsCache) -> int:
    if stats.modelUsage:
        return sum(u.total_tokens for u in stats.modelUsage.values())
    return sum(d.total for d in stats.dailyModelTokens)


def per_model_usage(stats: StatsCache, now: datetime) -> dict[str, float]:
    """Share of raw tokens per model over the last 7 days."""
    cutoff = _cutoff(now, 7)
    totals: dict[str, int] = {}
    for entry in stats.dailyModelTokens:
        day = parse_day(entry.date)
        if day is None or day < cutoff:
            continue
        for model, tokens in entry.tokensByModel.items():
            totals[model] = totals.get(model, 0) + tokens
    grand = sum(totals.values())
    if grand <= 0:
        return {}
    return {model: tokens / grand for model, tokens in totals.items()}


# ── Session / reset helpers ──────────────────────────────────────────────────


def estimate_session(
    today_tokens: int,
    history: Sequence[HistoryEntry],
    now: datetime | None = None,
) -> SessionEstimate:
    """Apportion today's tokens by the current session's share of prompts.

    The current session is the one that owns the most recent history entry.
    """
    if not history or history[-1].sessionId is None:
        return SessionEstimate(tokens=today_tokens, started_at=None)

    now = now or _now()
    current = history[-1].sessionId
    midnight_ms = start_of_day(now).timestamp() * 1000
    today_count = sum(
        1 for e in history if e.timestamp is not None and e.timestamp >= midnight_ms
    )
    session_entries = [e for e in history if e.sessionId == current]

    started_at = next((e.at for e in session_entries if e.at is not None), None)
    ratio = min(len(session_entries) / max(today_count, 1), 1.0)
    return SessionEstimate(tokens=int(today_tokens * ratio), started_at=started_at)


def weekly_reset_seconds(weekday: int, now: datetime | None = None) -> float:
    """Seconds until the next ``weekday`` local midnight (a full week if today)."""
    now = now or _now()
    days_until = (weekday - now.weekday()) % 7 or 7
    reset_at = start_of_day(now) + timedelta(days=days_until)
    return (reset_at - now).total_seconds()


def session_reset_seconds(
    started_at: datetime | None,
    now: datetime | None = None,
    window_hours: int = 5,
) -> float:
    window = window_hours * 3600
    if started_at is None:
        return float(window)
    now = now or _now()
    return max(window - (now - started_at).total_seconds(), 0.0)


def _seconds_until(moment: datetime, now: datetime) -> float:
    return max((moment - now).total_seconds(), 0.0)


# ── Main entry ───────────────────────────────────────────────────────────────


def calculate(
    stats: StatsCache | None,
    limits: Limits | None = None,
    history: Sequence[HistoryEntry] = (),
    api: ApiUsage | None = None,
    exact: ExactTokens | None = None,
    per_project: dict[str, int] | None = None,
    now: datetime | None = None,
) -> UsageSnapshot:
    """Combine the three layers into one snapshot.

    With ``api`` present the weekly ratio is exactly
    ``weekly_utilization / 100`` whatever the other inputs say.
    """
    limits = limits or Limits()
    exact = exact or ExactTokens()
    now = now or _now()
    factor = calibration_factor(stats)

    est_week = int(raw_tokens_by_period(stats, 7, now) * factor) if stats else 0
    est_today = int(raw_tokens_by_period(stats, 1, now) * factor) if stats else 0

    # Weekly
    weekly_reset: float | None = None
    if api is not None:
        weekly_ratio = api.weekly_utilization / 100
        weekly_tokens = exact.weekly or int(min(weekly_ratio, 1.0) * limits.weekly_token_limit)
        weekly_source = SOURCE_API
        if api.weekly_resets_at is not None:
            weekly_reset = _seconds_until(api.weekly_resets_at, now)
    elif exact.weekly > 0:
        weekly_tokens = exact.weekly
        weekly_ratio = _ratio(weekly_tokens, limits.weekly_token_limit)
        weekly_source = SOURCE_EXACT
    else:
        weekly_tokens = est_week
        weekly_ratio = _ratio(weekly_tokens, limits.weekly_token_limit)
        weekly_source = SOURCE_ESTIMATED
    if weekly_reset is None:
        weekly_reset = weekly_reset_seconds(limits.weekly_reset_weekday, now)

    # Daily
    if exact.daily > 0:
        daily_tokens = exact.daily
        daily_source = SOURCE_EXACT
    else:
        daily_tokens = est_today
        daily_source = SOURCE_ESTIMATED
    daily_ratio = _ratio(daily_tokens, limits.daily)

    # Session
    estimate = estimate_session(est_today if stats else exact.daily, history, now)
    session_reset: float | None = None
    if api is not None:
        session_ratio = api.session_utilization / 100
        session_tokens = exact.session or int(
            min(session_ratio, 1.0) * limits.session_token_limit
        )
        session_source = SOURCE_API
        if api.session_resets_at is not None:
            session_reset = _seconds_until(api.session_resets_at, now)
    elif exact.session:
        session_tokens = exact.session
        session_ratio = _ratio(session_tokens, limits.session_token_limit)
        session_source = SOURCE_EXACT
    else:
        session_tokens = estimate.tokens
        session_ratio = _ratio(session_tokens, limits.session_token_limit)
        session_source = SOURCE_ESTIMATED
    if session_reset is None:
        session_reset = session_reset_seconds(
            estimate.started_at, now, limits.session_window_hours
        )

    fields: dict[str, Any] = {}
    if stats is not None:
        fields = dict(
            total_sessions=stats.totalSessions,
            total_messages=stats.totalMessages,
            tokens_30d=int(raw_tokens_by_period(stats, 30, now) * factor),
            tokens_all_time=all_time_tokens(stats),
            messages_24h=messages_by_period(stats, 1, now),
            messages_7d=messages_by_period(stats, 7, now),
            messages_30d=messages_by_period(stats, 30, now),
            messages_all_time=stats.totalMessages,
            sessions_24h=sessions_by_period(stats, 1, now),
            sessions_7d=sessions_by_period(stats, 7, now),
            sessions_30d=sessions_by_period(stats, 30, now),
            sessions_all_time=stats.totalSessions,
            per_model_usage=per_model_usage(stats, now),
            daily_activity=tuple(stats.dailyActivity),
            daily_model_tokens=tuple(stats.dailyModelTokens),
            hour_counts=dict(stats.hourCounts),
        )

    return UsageSnapshot(
        weekly_ratio=weekly_ratio,
        daily_ratio=daily_ratio,
        session_ratio=session_ratio,
        tokens_this_week=weekly_tokens,
        tokens_today=daily_tokens,
        tokens_this_session=session_tokens,
        weekly_reset_seconds=weekly_reset,
        session_reset_seconds=session_reset,
        source=weekly_source,
        weekly_source=weekly_source,
        daily_source=daily_source,
        session_source=session_source,
        weekly_limit=limits.weekly_token_limit,
        daily_limit=limits.daily,
        session_limit=limits.session_token_limit,
        tokens_24h=daily_tokens,
        tokens_7d=weekly_tokens,
        per_project_tokens=dict(per_project or {}),
        updated_at=now,
        **fields,
    )
