"""Immutable usage snapshot produced once per refresh cycle."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from types import MappingProxyType
from typing import Any

from src.token_tracker.plans import model_cost_per_million
from src.token_tracker.stats_cache import DailyActivity, DailyModelTokens, parse_day

# Provenance tags, most authoritative first
SOURCE_API = "api"
SOURCE_EXACT = "exact-local"
SOURCE_ESTIMATED = "estimated"

WEEK_SECONDS = 7 * 86400


def format_tokens(n: int) -> str:
    """Format a token count for display."""
    if n >= 1_000_000_000:
        return f"{n / 1_000_000_000:.1f}B"
    if n >= 1_000_000:
        return f"{n / 1_000_000:.1f}M"
    if n >= 10_000:
        return f"{n // 1_000}K"
    if n >= 1_000:
        return f"{n / 1_000:.1f}K"
    return f"{n:,}"


def format_duration(seconds: float) -> str:
    """Format seconds into a human-readable duration like '2h 13m' or '6d 4h'."""
    seconds = int(seconds)
    if seconds <= 0:
        return "now"
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    minutes = (seconds % 3600) // 60
    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def _clamp(ratio: float) -> float:
    return min(max(ratio, 0.0), 1.0)


@dataclass(frozen=True)
class UsageSnapshot:
    """Combined usage figures for one refresh.

    ``*_ratio`` fields are raw (may exceed 1.0 when a limit is blown); the
    ``*_usage`` properties are the same values clamped to [0, 1].
    """

    weekly_ratio: float = 0.0
    daily_ratio: float = 0.0
    session_ratio: float = 0.0

    tokens_this_week: int = 0
    tokens_today: int = 0
    tokens_this_session: int = 0

    weekly_reset_seconds: float = 0.0
    session_reset_seconds: float = 0.0

    source: str = SOURCE_ESTIMATED
    weekly_source: str = SOURCE_ESTIMATED
    daily_source: str = SOURCE_ESTIMATED
    session_source: str = SOURCE_ESTIMATED

    weekly_limit: int = 0
    daily_limit: int = 0
    session_limit: int = 0

    total_sessions: int = 0
    total_messages: int = 0
    tokens_24h: int = 0
    tokens_7d: int = 0
    tokens_30d: int = 0
    tokens_all_time: int = 0
    messages_24h: int = 0
    messages_7d: int = 0
    messages_30d: int = 0
    messages_all_time: int = 0
    sessions_24h: int = 0
    sessions_7d: int = 0
    sessions_30d: int = 0
    sessions_all_time: int = 0

    per_model_usage: Mapping[str, float] = field(default_factory=dict)
    per_project_tokens: Mapping[str, int] = field(default_factory=dict)
    daily_activity: tuple[DailyActivity, ...] = ()
    daily_model_tokens: tuple[DailyModelTokens, ...] = ()
    hour_counts: Mapping[str, int] = field(default_factory=dict)

    updated_at: datetime = field(default_factory=lambda: datetime.now().astimezone())

    def __post_init__(self) -> None:
        # Read-only copies so a published snapshot cannot be edited in place
        for name in ("per_model_usage", "per_project_tokens", "hour_counts"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))

    # ── Clamped ratios ───────────────────────────────────────────────────

    @property
    def weekly_usage(self) -> float:
        return _clamp(self.weekly_ratio)

    @property
    def daily_usage(self) -> float:
        return _clamp(self.daily_ratio)

    @property
    def session_usage(self) -> float:
        return _clamp(self.session_ratio)

    @property
    def weekly_reset_label(self) -> str:
        return format_duration(self.weekly_reset_seconds)

    @property
    def session_reset_label(self) -> str:
        return format_duration(self.session_reset_seconds)

    # ── Burn rate / projection ───────────────────────────────────────────

    @property
    def weekly_elapsed_seconds(self) -> float:
        return WEEK_SECONDS - self.weekly_reset_seconds

    @property
    def burn_rate_per_hour(self) -> float:
        """Weekly ratio consumed per hour; 0 until an hour of the week has passed."""
        elapsed = self.weekly_elapsed_seconds
        if elapsed <= 3600:
            return 0.0
        return self.weekly_usage / (elapsed / 3600)

    @property
    def projected_usage_at_reset(self) -> float:
        rate = self.burn_rate_per_hour
        if rate <= 0:
            return self.weekly_usage
        return self.weekly_usage + rate * (self.weekly_reset_seconds / 3600)

    @property
    def projection_is_warning(self) -> bool:
        """True when the current pace hits the limit before the weekly reset."""
        if self.weekly_usage >= 1.0:
            return True
        rate = self.burn_rate_per_hour
        if rate <= 0:
            return False
        hours_to_limit = (1.0 - self.weekly_usage) / rate
        return hours_to_limit * 3600 < self.weekly_reset_seconds

    # ── Cost ─────────────────────────────────────────────────────────────

    @property
    def estimated_weekly_cost_usd(self) -> float:
        if self.tokens_7d <= 0:
            return 0.0
        if not self.per_model_usage:
            return self.tokens_7d / 1_000_000 * model_cost_per_million("sonnet")
        return sum(
            self.tokens_7d * share / 1_000_000 * model_cost_per_million(model)
            for model, share in self.per_model_usage.items()
        )

    # ── Activity ─────────────────────────────────────────────────────────

    @property
    def usage_streak(self) -> int:
        """Consecutive active days, counted back from today or yesterday."""
        days = sorted(
            {d for d in (parse_day(a.date) for a in self.daily_activity) if d is not None},
            reverse=True,
        )
        if not days:
            return 0
        today: date = self.updated_at.date()
        if (today - days[0]).days > 1:
            return 0
        streak = 1
        for prev, cur in zip(days, days[1:]):
            if (prev - cur).days != 1:
                break
            streak += 1
        return streak

    @property
    def today_vs_average_ratio(self) -> float:
        """Today's tokens relative to the 7-day daily average."""
        if self.tokens_7d <= 0 or self.tokens_24h <= 0:
            return 0.0
        return self.tokens_24h / (self.tokens_7d / 7)

    @property
    def tokens_previous_week(self) -> int:
        """Raw tokens from 7 to 13 days ago."""
        today = self.updated_at.date()
        total = 0
        for entry in self.daily_model_tokens:
            day = parse_day(entry.date)
            if day is not None and 7 <= (today - day).days < 14:
                total += entry.total
        return total

    @property
    def week_over_week_change_pct(self) -> float | None:
        previous = self.tokens_previous_week
        if previous <= 0 or self.tokens_7d <= 0:
            return None
        return (self.tokens_7d - previous) / previous * 100

    # ── Serialisation ────────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "updated_at": self.updated_at.isoformat(),
            "weekly": {
                "usage": round(self.weekly_usage, 4),
                "ratio": round(self.weekly_ratio, 4),
                "tokens": self.tokens_this_week,
                "limit": self.weekly_limit,
                "source": self.weekly_source,
                "reset_seconds": int(self.weekly_reset_seconds),
                "reset_label": self.weekly_reset_label,
            },
            "daily": {
                "usage": round(self.daily_usage, 4),
                "ratio": round(self.daily_ratio, 4),
                "tokens": self.tokens_today,
                "limit": self.daily_limit,
                "source": self.daily_source,
            },
            "session": {
                "usage": round(self.session_usage, 4),
                "ratio": round(self.session_ratio, 4),
                "tokens": self.tokens_this_session,
                "limit": self.session_limit,
                "source": self.session_source,
                "reset_seconds": int(self.session_reset_seconds),
                "reset_label": self.session_reset_label,
            },
            "periods": {
                "tokens": {
                    "24h": self.tokens_24h,
                    "7d": self.tokens_7d,
                    "30d": self.tokens_30d,
                    "all_time": self.tokens_all_time,
                },
                "messages": {
                    "24h": self.messages_24h,
                    "7d": self.messages_7d,
                    "30d": self.messages_30d,
                    "all_time": self.messages_all_time,
                },
                "sessions": {
                    "24h": self.sessions_24h,
                    "7d": self.sessions_7d,
                    "30d": self.sessions_30d,
                    "all_time": self.sessions_all_time,
                },
            },
            "per_model_usage": {k: round(v, 4) for k, v in self.per_model_usage.items()},
            "per_project_tokens": dict(self.per_project_tokens),
            "daily_activity": [a.model_dump() for a in self.daily_activity],
            "daily_model_tokens": [d.model_dump() for d in self.daily_model_tokens],
            "hour_counts": dict(self.hour_counts),
            "analytics": {
                "burn_rate_per_hour": round(self.burn_rate_per_hour, 6),
                "projected_usage_at_reset": round(self.projected_usage_at_reset, 4),
                "projection_is_warning": self.projection_is_warning,
                "estimated_weekly_cost_usd": round(self.estimated_weekly_cost_usd, 2),
                "usage_streak": self.usage_streak,
                "today_vs_average_ratio": round(self.today_vs_average_ratio, 2),
                "tokens_previous_week": self.tokens_previous_week,
                "week_over_week_change_pct": (
                    round(self.week_over_week_change_pct, 1)
                    if self.week_over_week_change_pct is not None
                    else None
                ),
            },
        }
