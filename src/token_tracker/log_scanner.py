"""Exact token counts from Claude Code session logs, with an mtime cache.

Claude Code appends one JSON object per line to
``~/.claude/projects/<encoded-project>/<session-id>.jsonl``.  Assistant
entries carry ``message.usage`` with input / output / cache token counts.

Re-parsing every log on each refresh is expensive (sessions grow to tens of
megabytes), so each file's total is cached against its modification time.
An entry is reused only while the mtime is unchanged; any change forces a
re-parse.  The cache is persisted in SQLite so restarts stay cheap.

Nothing here raises: missing directories, unreadable files and malformed
lines all contribute zero.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from datetime import datetime
from pathlib import Path

from src.token_tracker.cache_store import CacheEntry, ScanCacheStore

logger = logging.getLogger(__name__)

SMALL_FILE_LIMIT = 1_048_576  # files below 1 MiB are read whole
CHUNK_SIZE = 262_144  # 256 KiB
CACHE_RETENTION_DAYS = 8

USAGE_FIELDS = (
    "input_tokens",
    "output_tokens",
    "cache_read_input_tokens",
    "cache_creation_input_tokens",
)


def _as_int(value: object) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


def line_tokens(line: bytes) -> int:
    """Token total for one JSONL line, 0 if it is not an assistant usage entry."""
    # Cheap substring check before paying for a JSON parse
    if b'"usage"' not in line or b'"assistant"' not in line:
        return 0
    try:
        entry = json.loads(line)
    except ValueError:
        return 0
    if not isinstance(entry, dict) or entry.get("type") != "assistant":
        return 0
    message = entry.get("message")
    if not isinstance(message, dict):
        return 0
    usage = message.get("usage")
    if not isinstance(usage, dict):
        return 0
    return sum(_as_int(usage.get(field)) for field in USAGE_FIELDS)


def count_tokens_in_buffer(data: bytes) -> int:
    """Sum tokens over every complete line in ``data``."""
    return sum(line_tokens(line) for line in data.split(b"\n") if line.strip())


def parse_session_file(
    path: Path,
    chunk_size: int = CHUNK_SIZE,
    small_file_limit: int = SMALL_FILE_LIMIT,
) -> int:
    """Total tokens in one session log.

    Small files are read in one go.  Larger ones are streamed in fixed-size
    chunks; the partial line at the end of each chunk is carried over so no
    line is ever parsed in two pieces.
    """
    try:
        size = path.stat().st_size
        if size < small_file_limit:
            return count_tokens_in_buffer(path.read_bytes())

        total = 0
        leftover = b""
        with open(path, "rb") as f:
            while True:
                chunk = f.read(chunk_size)
                if not chunk:
                    break
                buffer = leftover + chunk
                cut = buffer.rfind(b"\n")
                if cut < 0:
                    leftover = buffer
                    continue
                total += count_tokens_in_buffer(buffer[:cut + 1])
                leftover = buffer[cut + 1:]
        if leftover:
            total += count_tokens_in_buffer(leftover)
        return total
    except OSError as e:
        logger.debug("Could not read %s: %s", path, e)
        return 0


class LogScanner:
    """Scans session logs under a projects directory, caching per-file totals.

    All cache reads and writes go through one lock, so overlapping refreshes
    and the prune pass never see a half-written entry.
    """

    def __init__(self, projects_dir: Path, store: ScanCacheStore | None = None) -> None:
        self.projects_dir = projects_dir
        self._store = store
        self._lock = threading.Lock()
        self._cache: dict[str, CacheEntry] = store.load_all() if store else {}
        # session id → log path, avoids walking every project dir per lookup
        self._session_paths: dict[str, Path] = {}
        self.cache_hits = 0
        self.cache_misses = 0

    # -- cache ----------------------------------------------------------------

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def cached_entry(self, path: Path) -> CacheEntry | None:
        return self._cache.get(str(path))

    def file_tokens(self, path: Path, since: datetime | None = None) -> int:
        """Tokens in one file, served from cache while its mtime is unchanged.

        Files last modified before ``since`` contribute zero.
        """
        try:
            mtime = path.stat().st_mtime
        except OSError:
            return 0
        if since is not None and mtime < since.timestamp():
            return 0

        key = str(path)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None and cached.mtime == mtime:
                self.cache_hits += 1
                return cached.tokens

            self.cache_misses += 1
            entry = CacheEntry(path=key, mtime=mtime, tokens=parse_session_file(path))
            self._cache[key] = entry
            if self._store is not None:
                try:
                    self._store.upsert(entry)
                except Exception:
                    logger.exception("Failed to persist scan cache entry for %s", key)
            return entry.tokens

    def prune_cache(
        self,
        retention_days: int = CACHE_RETENTION_DAYS,
        now: float | None = None,
    ) -> int:
        """Evict entries for files not modified within the retention window."""
        cutoff = (now if now is not None else time.time()) - retention_days * 86400
        with self._lock:
            stale = [k for k, e in self._cache.items() if e.mtime < cutoff]
            for key in stale:
                del self._cache[key]
            if stale and self._store is not None:
                try:
                    self._store.delete(stale)
                except Exception:
                    logger.exception("Failed to prune persisted scan cache")
        if stale:
            logger.info("Pruned %d stale scan cache entries", len(stale))
        return len(stale)

    # -- scanning -------------------------------------------------------------

    def _project_dirs(self) -> list[Path]:
        try:
            return sorted(d for d in self.projects_dir.iterdir() if d.is_dir())
        except OSError:
            return []

    def _dir_tokens(self, project_dir: Path, since: datetime | None) -> int:
        try:
            files = sorted(project_dir.glob("*.jsonl"))
        except OSError:
            return 0
        return sum(self.file_tokens(f, since) for f in files)

    def total_tokens(self, since: datetime | None = None) -> int:
        """Exact tokens across all projects in files modified since ``since``."""
        return sum(self._dir_tokens(d, since) for d in self._project_dirs())

    def scan_all_projects(self, since: datetime | None = None) -> dict[str, int]:
        """Encoded project dir name → tokens, for projects with any usage."""
        result: dict[str, int] = {}
        for d in self._project_dirs():
            tokens = self._dir_tokens(d, since)
            if tokens > 0:
                result[d.name] = tokens
        return result

    def session_tokens(self, session_id: str) -> int:
        """Exact tokens for one session, by id."""
        with self._lock:
            cached_path = self._session_paths.get(session_id)
            if cached_path is not None and not cached_path.exists():
                del self._session_paths[session_id]
                cached_path = None
        if cached_path is not None:
            return self.file_tokens(cached_path)

        for d in self._project_dirs():
            candidate = d / f"{session_id}.jsonl"
            if candidate.is_file():
                with self._lock:
                    self._session_paths[session_id] = candidate
                return self.file_tokens(candidate)
        return 0
