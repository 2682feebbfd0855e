"""SQLite persistence for the log scanner's per-file token cache."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """Token count of one log file as of a given modification time."""

    path: str
    mtime: float
    tokens: int


class ScanCacheStore:
    """SQLite-backed storage for scan cache entries (path → mtime, tokens)."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    def _init_db(self) -> None:
        conn = self._get_conn()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS scan_cache (
                path   TEXT PRIMARY KEY,
                mtime  REAL NOT NULL,
                tokens INTEGER NOT NULL
            );
        """)
        conn.commit()

    def load_all(self) -> dict[str, CacheEntry]:
        rows = self._get_conn().execute("SELECT path, mtime, tokens FROM scan_cache").fetchall()
        return {r["path"]: CacheEntry(r["path"], r["mtime"], r["tokens"]) for r in rows}

    def upsert(self, entry: CacheEntry) -> None:
        conn = self._get_conn()
        conn.execute(
            "INSERT INTO scan_cache (path, mtime, tokens) VALUES (?, ?, ?) "
            "ON CONFLICT(path) DO UPDATE SET mtime = excluded.mtime, tokens = excluded.tokens",
            (entry.path, entry.mtime, entry.tokens),
        )
        conn.commit()

    def delete(self, paths: Iterable[str]) -> None:
        conn = self._get_conn()
        conn.executemany("DELETE FROM scan_cache WHERE path = ?", [(p,) for p in paths])
        conn.commit()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
