"""Subscription plans, their default limits, and model pricing."""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Plan:
    name: str
    label: str
    weekly_token_limit: int
    session_token_limit: int


PLANS: dict[str, Plan] = {
    "pro": Plan("pro", "Pro", 100_000_000, 10_000_000),
    "max5x": Plan("max5x", "Max 5x", 500_000_000, 50_000_000),
    "max20x": Plan("max20x", "Max 20x", 2_000_000_000, 200_000_000),
}

DEFAULT_PLAN = "max20x"

_TIER_TO_PLAN = {
    "free": "pro",
    "standard": "pro",
    "tier1": "pro",
    "scale": "max5x",
    "tier2": "max5x",
    "5x": "max5x",
    "tier3": "max20x",
    "20x": "max20x",
}


def get_plan(name: str) -> Plan:
    return PLANS.get(name.lower(), PLANS[DEFAULT_PLAN])


def detect_plan(rate_limit_tier: str | None) -> str | None:
    """Map a credential rate-limit tier to a plan name, ``None`` if unknown.

    Tiers look like ``default_claude_max_20x``; the last ``_``-separated part
    is tried when the full string is not a known tier.
    """
    if not rate_limit_tier:
        return None
    tier = rate_limit_tier.lower()
    plan = _TIER_TO_PLAN.get(tier) or _TIER_TO_PLAN.get(tier.rsplit("_", 1)[-1])
    if plan is None:
        logger.debug("Unknown rate limit tier: %s", rate_limit_tier)
    return plan


# ── Models ───────────────────────────────────────────────────────────────────

# Blended USD per million tokens for typical Claude Code traffic
MODEL_COST_PER_MILLION = {
    "opus": 30.0,
    "sonnet": 6.0,
    "haiku": 1.60,
}


def model_family(model_id: str) -> str | None:
    lowered = model_id.lower()
    for family in MODEL_COST_PER_MILLION:
        if family in lowered:
            return family
    return None


def model_cost_per_million(model_id: str) -> float:
    """Unknown models are priced as sonnet."""
    return MODEL_COST_PER_MILLION[model_family(model_id) or "sonnet"]
