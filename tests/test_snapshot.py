"""Tests for UsageSnapshot derived figures and formatting."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from src.token_tracker.snapshot import WEEK_SECONDS, UsageSnapshot, format_duration, format_tokens
from src.token_tracker.stats_cache import DailyActivity, DailyModelTokens

NOW = datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)


def activity(*days: str) -> tuple[DailyActivity, ...]:
    return tuple(DailyActivity(date=d, messageCount=1, sessionCount=1) for d in days)


class TestFormatting:
    @pytest.mark.parametrize(
        ("n", "expected"),
        [
            (1_500_000_000, "1.5B"),
            (2_300_000, "2.3M"),
            (45_000, "45K"),
            (1_500, "1.5K"),
            (999, "999"),
        ],
    )
    def test_format_tokens(self, n: int, expected: str) -> None:
        assert format_tokens(n) == expected

    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [(0, "now"), (-5, "now"), (90_061, "1d 1h"), (7_380, "2h 3m"), (300, "5m")],
    )
    def test_format_duration(self, seconds: float, expected: str) -> None:
        assert format_duration(seconds) == expected


class TestProjection:
    def test_burn_rate_and_projection(self) -> None:
        snap = UsageSnapshot(weekly_ratio=0.25, weekly_reset_seconds=WEEK_SECONDS / 2, updated_at=NOW)
        assert snap.burn_rate_per_hour == pytest.approx(0.25 / 84)
        assert snap.projected_usage_at_reset == pytest.approx(0.5)
        assert not snap.projection_is_warning

    def test_warning_when_pace_exceeds_limit(self) -> None:
        snap = UsageSnapshot(weekly_ratio=0.6, weekly_reset_seconds=WEEK_SECONDS / 2, updated_at=NOW)
        assert snap.projected_usage_at_reset == pytest.approx(1.2)
        assert snap.projection_is_warning

    def test_no_rate_in_first_hour(self) -> None:
        snap = UsageSnapshot(weekly_ratio=0.1, weekly_reset_seconds=WEEK_SECONDS - 600, updated_at=NOW)
        assert snap.burn_rate_per_hour == 0.0
        assert snap.projected_usage_at_reset == 0.1

    def test_already_over_limit_warns(self) -> None:
        snap = UsageSnapshot(weekly_ratio=1.4, weekly_reset_seconds=3600, updated_at=NOW)
        assert snap.weekly_usage == 1.0
        assert snap.projection_is_warning


class TestAnalytics:
    def test_cost_by_model_share(self) -> None:
        snap = UsageSnapshot(
            tokens_7d=1_000_000,
            per_model_usage={"claude-opus-4": 0.5, "claude-sonnet-4": 0.5},
            updated_at=NOW,
        )
        assert snap.estimated_weekly_cost_usd == pytest.approx(18.0)

    def test_cost_without_model_breakdown(self) -> None:
        snap = UsageSnapshot(tokens_7d=1_000_000, updated_at=NOW)
        assert snap.estimated_weekly_cost_usd == pytest.approx(6.0)

    def test_streak_counts_back_from_today(self) -> None:
        snap = UsageSnapshot(daily_activity=activity("2026-10-14", "2026-10-13", "2026-10-12", "2026-10-10"), updated_at=NOW)
        assert snap.usage_streak == 3

    def test_streak_from_yesterday(self) -> None:
        snap = UsageSnapshot(daily_activity=activity("2026-10-13", "2026-10-12"), updated_at=NOW)
        assert snap.usage_streak == 2

    def test_streak_broken(self) -> None:
        snap = UsageSnapshot(daily_activity=activity("2026-10-12", "2026-10-11"), updated_at=NOW)
        assert snap.usage_streak == 0

    def test_today_vs_average(self) -> None:
        snap = UsageSnapshot(tokens_24h=200, tokens_7d=700, updated_at=NOW)
        assert snap.today_vs_average_ratio == pytest.approx(2.0)

    def test_week_over_week(self) -> None:
        snap = UsageSnapshot(
            tokens_7d=1_500,
            daily_model_tokens=(
                DailyModelTokens(date="2026-10-05", tokensByModel={"m": 500}),
                DailyModelTokens(date="2026-10-01", tokensByModel={"m": 500}),
                DailyModelTokens(date="2026-09-30", tokensByModel={"m": 1000}),
            ),
            updated_at=NOW,
        )
        assert snap.tokens_previous_week == 1_000
        assert snap.week_over_week_change_pct == pytest.approx(50.0)

    def test_week_over_week_without_history(self) -> None:
        assert UsageSnapshot(tokens_7d=10, updated_at=NOW).week_over_week_change_pct is None


class TestSerialisation:
    def test_to_dict_is_json_ready(self) -> None:
        snap = UsageSnapshot(
            weekly_ratio=1.2,
            tokens_this_week=2_400,
            weekly_limit=2_000,
            source="api",
            weekly_source="api",
            daily_activity=activity("2026-10-14"),
            per_project_tokens={"/w/app": 2_400},
            updated_at=NOW,
        )
        data = json.loads(json.dumps(snap.to_dict()))
        assert data["weekly"]["usage"] == 1.0
        assert data["weekly"]["ratio"] == 1.2
        assert data["weekly"]["tokens"] == 2_400
        assert data["source"] == "api"
        assert data["per_project_tokens"] == {"/w/app": 2400}
        assert data["daily_activity"][0]["date"] == "2026-10-14"
        assert data["analytics"]["usage_streak"] == 1

    def test_snapshot_is_immutable(self) -> None:
        snap = UsageSnapshot(updated_at=NOW)
        with pytest.raises(AttributeError):
            snap.weekly_ratio = 0.5  # type: ignore[misc]

    def test_mapping_fields_are_read_only(self) -> None:
        per_project = {"/w/app": 10}
        snap = UsageSnapshot(per_project_tokens=per_project, hour_counts={"9": 3}, updated_at=NOW)
        per_project["/w/other"] = 5

        assert snap.per_project_tokens == {"/w/app": 10}
        with pytest.raises(TypeError):
            snap.per_project_tokens["/w/app"] = 0  # type: ignore[index]
        with pytest.raises(TypeError):
            snap.hour_counts["9"] = 0  # type: ignore[index]
        with pytest.raises(TypeError):
            snap.per_model_usage["claude-opus-4"] = 1.0  # type: ignore[index]
