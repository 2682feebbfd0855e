"""SQLite persistence for threshold alert state."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class AlertState:
    """Per-threshold notifier state.

    ``streak`` counts fires since the threshold was last cleared.
    """

    id: str
    notified: bool = False
    last_fired_at: float | None = None
    streak: int = 0

    def clear(self, keep_timer: bool = True) -> None:
        self.notified = False
        self.streak = 0
        if not keep_timer:
            self.last_fired_at = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "notified": self.notified,
            "last_fired_at": self.last_fired_at,
            "streak": self.streak,
        }


class AlertStateStore:
    """Threshold states and last observed value per scope.

    ``db_path=None`` keeps everything in memory.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        if db_path is not None:
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            target = str(self._db_path) if self._db_path is not None else ":memory:"
            self._conn = sqlite3.connect(target, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            if self._db_path is not None:
                self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    def _init_db(self) -> None:
        conn = self._get_conn()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS alert_state (
                id            TEXT PRIMARY KEY,
                notified      INTEGER NOT NULL DEFAULT 0,
                last_fired_at REAL,
                streak        INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS scope_values (
                scope TEXT PRIMARY KEY,
                value REAL NOT NULL
            );
        """)
        conn.commit()

    def load_states(self) -> dict[str, AlertState]:
        rows = self._get_conn().execute(
            "SELECT id, notified, last_fired_at, streak FROM alert_state"
        ).fetchall()
        return {
            r["id"]: AlertState(
                id=r["id"],
                notified=bool(r["notified"]),
                last_fired_at=r["last_fired_at"],
                streak=r["streak"],
            )
            for r in rows
        }

    def save_state(self, state: AlertState) -> None:
        conn = self._get_conn()
        conn.execute(
            "INSERT INTO alert_state (id, notified, last_fired_at, streak) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET notified = excluded.notified, "
            "last_fired_at = excluded.last_fired_at, streak = excluded.streak",
            (state.id, int(state.notified), state.last_fired_at, state.streak),
        )
        conn.commit()

    def load_last_values(self) -> dict[str, float]:
        rows = self._get_conn().execute("SELECT scope, value FROM scope_values").fetchall()
        return {r["scope"]: r["value"] for r in rows}

    def save_last_value(self, scope: str, value: float) -> None:
        conn = self._get_conn()
        conn.execute(
            "INSERT INTO scope_values (scope, value) VALUES (?, ?) "
            "ON CONFLICT(scope) DO UPDATE SET value = excluded.value",
            (scope, value),
        )
        conn.commit()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
