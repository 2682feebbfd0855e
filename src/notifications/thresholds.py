"""Threshold alerts with hysteresis, cooldown escalation and reset detection.

Four thresholds are watched: warning and critical for the 5-hour session
window and for the weekly window.  Per threshold:

- quiet → fired when the value reaches the threshold and no cooldown is
  running since the last fire.
- fired → fired (reminder) when the value is still at or above the threshold
  once the cooldown has elapsed.  The first fire after a clear is followed by
  the short cooldown (5 min); later fires by the extended one (4 h).
- fired → quiet when the value drops below ``threshold - hysteresis``.

When a scope's value collapses to less than half of a previous value above
0.30, the window has rolled over: every threshold of that scope is cleared
along with its cooldown timer.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from src.notifications.state import AlertState, AlertStateStore

logger = logging.getLogger(__name__)

SHORT_COOLDOWN_SECONDS = 300
EXTENDED_COOLDOWN_SECONDS = 4 * 3600
RESET_MIN_PREVIOUS = 0.30

SCOPE_SESSION = "session"
SCOPE_WEEKLY = "weekly"


@dataclass(frozen=True)
class Threshold:
    id: str
    scope: str
    level: str  # "warning" | "critical"
    value: float


@dataclass(frozen=True)
class ThresholdConfig:
    session_warning: float = 0.70
    session_critical: float = 0.90
    weekly_warning: float = 0.70
    weekly_critical: float = 0.90
    hysteresis: float = 0.05

    @classmethod
    def from_settings(cls, settings: Any) -> ThresholdConfig:
        return cls(
            session_warning=settings.session_warning,
            session_critical=settings.session_critical,
            weekly_warning=settings.weekly_warning,
            weekly_critical=settings.weekly_critical,
            hysteresis=settings.alert_hysteresis,
        )

    def thresholds(self) -> list[Threshold]:
        return [
            Threshold("session-warning", SCOPE_SESSION, "warning", self.session_warning),
            Threshold("session-critical", SCOPE_SESSION, "critical", self.session_critical),
            Threshold("weekly-warning", SCOPE_WEEKLY, "warning", self.weekly_warning),
            Threshold("weekly-critical", SCOPE_WEEKLY, "critical", self.weekly_critical),
        ]


@dataclass(frozen=True)
class Alert:
    threshold_id: str
    scope: str
    level: str
    threshold: float
    value: float
    reminder: bool
    fired_at: float

    @property
    def title(self) -> str:
        return f"{self.scope.capitalize()} {self.level.capitalize()}"

    @property
    def message(self) -> str:
        text = f"{self.scope.capitalize()} usage at {int(self.value * 100)}%"
        if self.level == "critical":
            text += "! Near limit." if self.scope == SCOPE_SESSION else "! Consider slowing down."
        if self.reminder:
            text += " (still above threshold)"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "threshold_id": self.threshold_id,
            "scope": self.scope,
            "level": self.level,
            "threshold": self.threshold,
            "value": round(self.value, 4),
            "reminder": self.reminder,
            "fired_at": self.fired_at,
            "title": self.title,
            "message": self.message,
        }


class ThresholdNotifier:
    """Evaluates usage values and returns the alerts that fire.

    State is loaded from and written through to ``store`` on every change,
    so restarts do not re-announce alerts that already fired.
    """

    def __init__(
        self,
        config: ThresholdConfig | None = None,
        store: AlertStateStore | None = None,
        clock: Callable[[], float] = time.time,
        short_cooldown: float = SHORT_COOLDOWN_SECONDS,
        extended_cooldown: float = EXTENDED_COOLDOWN_SECONDS,
    ) -> None:
        self.config = config or ThresholdConfig()
        self._store = store or AlertStateStore()
        self._clock = clock
        self._short_cooldown = short_cooldown
        self._extended_cooldown = extended_cooldown
        self._lock = threading.Lock()
        self._states: dict[str, AlertState] = self._store.load_states()
        self._last_values: dict[str, float] = self._store.load_last_values()

    # -- queries ---------------------------------------------------------------

    def state(self, threshold_id: str) -> AlertState:
        return self._states.get(threshold_id) or AlertState(id=threshold_id)

    def states(self) -> list[dict[str, Any]]:
        result = []
        for t in self.config.thresholds():
            entry = self.state(t.id).to_dict()
            entry.update(scope=t.scope, level=t.level, threshold=t.value)
            result.append(entry)
        return result

    def last_value(self, scope: str) -> float | None:
        return self._last_values.get(scope)

    # -- evaluation ------------------------------------------------------------

    def evaluate(self, snapshot: Any) -> list[Alert]:
        """Feed a usage snapshot's clamped session and weekly usage."""
        return self.observe(
            {SCOPE_SESSION: snapshot.session_usage, SCOPE_WEEKLY: snapshot.weekly_usage}
        )

    def observe(self, values: dict[str, float], now: float | None = None) -> list[Alert]:
        now = self._clock() if now is None else now
        alerts: list[Alert] = []
        with self._lock:
            for scope, value in values.items():
                self._detect_reset(scope, value)
                for threshold in self.config.thresholds():
                    if threshold.scope != scope:
                        continue
                    alert = self._step(threshold, value, now)
                    if alert is not None:
                        alerts.append(alert)
                self._last_values[scope] = value
                try:
                    self._store.save_last_value(scope, value)
                except Exception:
                    logger.exception("Failed to persist last %s value", scope)
        return alerts

    def reset(self, scope: str | None = None) -> None:
        """Clear flags and timers for one scope, or for all of them."""
        with self._lock:
            for threshold in self.config.thresholds():
                if scope is None or threshold.scope == scope:
                    self._clear(threshold.id, keep_timer=False)

    # -- internals -------------------------------------------------------------

    def _cooldown(self, state: AlertState) -> float:
        return self._short_cooldown if state.streak <= 1 else self._extended_cooldown

    def _persist(self, state: AlertState) -> None:
        self._states[state.id] = state
        try:
            self._store.save_state(state)
        except Exception:
            # In-memory state stays authoritative; the next change rewrites the row
            logger.exception("Failed to persist alert state %s", state.id)

    def _clear(self, threshold_id: str, keep_timer: bool) -> None:
        state = self.state(threshold_id)
        state.clear(keep_timer=keep_timer)
        self._persist(state)

    def _detect_reset(self, scope: str, value: float) -> None:
        previous = self._last_values.get(scope)
        if previous is None or previous <= RESET_MIN_PREVIOUS or value >= previous / 2:
            return
        logger.info("%s usage dropped %.2f -> %.2f, treating as window reset", scope, previous, value)
        for threshold in self.config.thresholds():
            if threshold.scope == scope:
                self._clear(threshold.id, keep_timer=False)

    def _step(self, threshold: Threshold, value: float, now: float) -> Alert | None:
        state = self.state(threshold.id)

        if value >= threshold.value:
            if state.last_fired_at is not None and now - state.last_fired_at < self._cooldown(state):
                return None
            reminder = state.notified
            state.notified = True
            state.last_fired_at = now
            state.streak += 1
            self._persist(state)
            logger.info(
                "Threshold %s fired at %.2f (streak %d)", threshold.id, value, state.streak
            )
            return Alert(
                threshold_id=threshold.id,
                scope=threshold.scope,
                level=threshold.level,
                threshold=threshold.value,
                value=value,
                reminder=reminder,
                fired_at=now,
            )

        if state.notified and value < threshold.value - self.config.hysteresis:
            state.clear(keep_timer=True)
            self._persist(state)
            logger.debug("Threshold %s cleared at %.2f", threshold.id, value)
        return None
