"""Usage engine: one refresh cycle from raw inputs to a published snapshot.

A cycle:

1. starts the remote usage fetch as its own task;
2. meanwhile collects local data (stats cache, history, exact log scan) on
   the single scan worker thread;
3. waits for the remote result only until ``api_timeout_seconds`` after the
   cycle started, then proceeds without it;
4. combines everything with :func:`calculate`;
5. runs the threshold notifier and dispatches fired alerts.

The engine holds no module-level state; build one per process with
:meth:`UsageEngine.from_settings` or wire the parts yourself.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from src.notifications import NotificationManager
from src.notifications.state import AlertStateStore
from src.notifications.thresholds import Alert, ThresholdConfig, ThresholdNotifier
from src.projects.path_resolver import PathResolver
from src.token_tracker.cache_store import ScanCacheStore
from src.token_tracker.calculator import ExactTokens, Limits, calculate, start_of_day
from src.token_tracker.credentials import (
    CredentialResolver,
    CredentialStatus,
    default_secret_store,
)
from src.token_tracker.log_scanner import LogScanner
from src.token_tracker.snapshot import UsageSnapshot
from src.token_tracker.stats_cache import HistoryEntry, StatsCache, load_history, load_stats_cache
from src.token_tracker.usage_client import ApiUsage, RemoteUsageClient

logger = logging.getLogger(__name__)

RECENT_ALERTS = 50


@dataclass
class LocalData:
    """Everything gathered from disk for one cycle."""

    now: datetime
    stats: StatsCache | None
    history: list[HistoryEntry]
    exact: ExactTokens
    per_project: dict[str, int] = field(default_factory=dict)
    rate_limit_tier: str | None = None


class UsageEngine:
    def __init__(
        self,
        settings: Any,
        scanner: LogScanner,
        resolver: CredentialResolver,
        client: RemoteUsageClient,
        notifier: ThresholdNotifier,
        notifications: NotificationManager | None = None,
        path_resolver: PathResolver | None = None,
    ) -> None:
        self.settings = settings
        self.scanner = scanner
        self.resolver = resolver
        self.client = client
        self.notifier = notifier
        self.notifications = notifications
        self.path_resolver = path_resolver or PathResolver()
        # Single worker: the scan cache has exactly one writer
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="usage-scan")
        self._decoded: dict[str, str] = {}
        self.latest: UsageSnapshot | None = None
        self.last_api_usage: ApiUsage | None = None
        self.recent_alerts: deque[Alert] = deque(maxlen=RECENT_ALERTS)

    @classmethod
    def from_settings(cls, settings: Any) -> UsageEngine:
        """Wire the default components from a ``Settings`` instance."""
        scanner = LogScanner(settings.projects_path, ScanCacheStore(settings.db_path))
        resolver = CredentialResolver(
            default_secret_store(settings.credentials_service, settings.claude_path),
            settings.credentials_mirror_path,
        )
        client = RemoteUsageClient(
            resolver,
            url=settings.usage_api_url,
            timeout=settings.api_timeout_seconds,
        )
        notifier = ThresholdNotifier(
            ThresholdConfig.from_settings(settings),
            AlertStateStore(settings.db_path),
        )
        notifications = NotificationManager(
            slack_webhook=settings.slack_webhook_url,
            telegram_token=settings.telegram_bot_token,
            telegram_chat_id=settings.telegram_chat_id,
        )
        return cls(settings, scanner, resolver, client, notifier, notifications)

    # -- local data ------------------------------------------------------------

    def decode_project(self, dir_name: str) -> str:
        if dir_name not in self._decoded:
            self._decoded[dir_name] = self.path_resolver.decode(dir_name)
        return self._decoded[dir_name]

    def collect_local(self) -> LocalData:
        """Gather stats, history and exact counts. Runs on the scan worker."""
        now = datetime.now().astimezone()
        claude = self.settings.claude_path
        stats = load_stats_cache(claude / "stats-cache.json")
        history = load_history(claude / "history.jsonl")

        week_ago = now - timedelta(days=7)
        weekly = self.scanner.total_tokens(since=week_ago)
        daily = self.scanner.total_tokens(since=start_of_day(now))

        session: int | None = None
        session_id = history[-1].sessionId if history else None
        if session_id:
            session = self.scanner.session_tokens(session_id) or None

        per_project: dict[str, int] = {}
        for dir_name, tokens in self.scanner.scan_all_projects(since=week_ago).items():
            path = self.decode_project(dir_name)
            per_project[path] = per_project.get(path, 0) + tokens

        creds = self.resolver.get_credentials()
        return LocalData(
            now=now,
            stats=stats,
            history=history,
            exact=ExactTokens(weekly=weekly, daily=daily, session=session),
            per_project=per_project,
            rate_limit_tier=creds.rate_limit_tier if creds else None,
        )

    # -- cycle -----------------------------------------------------------------

    async def _fetch_remote(self) -> ApiUsage | None:
        try:
            return await self.client.fetch_usage()
        except Exception:
            logger.exception("Unexpected error fetching remote usage")
            return None

    async def refresh(self) -> UsageSnapshot:
        """Run one full cycle and return the new snapshot."""
        loop = asyncio.get_running_loop()
        started = loop.time()
        remote = asyncio.create_task(self._fetch_remote())

        try:
            local = await loop.run_in_executor(self._executor, self.collect_local)
        except BaseException:
            remote.cancel()
            raise

        remaining = max(self.settings.api_timeout_seconds - (loop.time() - started), 0.0)
        try:
            api = await asyncio.wait_for(remote, timeout=remaining)
        except asyncio.TimeoutError:
            logger.warning("Usage API did not answer within %.0fs, using local data",
                           self.settings.api_timeout_seconds)
            api = None
        self.last_api_usage = api

        limits = Limits.from_settings(self.settings, local.rate_limit_tier)
        snapshot = calculate(
            local.stats,
            limits,
            local.history,
            api=api,
            exact=local.exact,
            per_project=local.per_project,
            now=local.now,
        )
        self.latest = snapshot
        logger.info(
            "Usage refreshed: weekly %.1f%% (%s), session %.1f%% (%s)",
            snapshot.weekly_usage * 100, snapshot.weekly_source,
            snapshot.session_usage * 100, snapshot.session_source,
        )

        try:
            alerts = self.notifier.evaluate(snapshot)
        except Exception:
            logger.exception("Threshold evaluation failed")
            alerts = []
        self.recent_alerts.extend(alerts)
        if alerts and self.settings.notifications_enabled and self.notifications is not None:
            for alert in alerts:
                await self.notifications.notify_threshold(alert)
        return snapshot

    async def prune(self) -> int:
        """Evict stale scan cache entries on the scan worker."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, self.scanner.prune_cache, self.settings.cache_retention_days
        )

    # -- credentials -----------------------------------------------------------

    async def credential_status(self) -> CredentialStatus:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.resolver.status)

    async def refresh_credentials(self) -> CredentialStatus:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.resolver.force_refresh)
        return await self.credential_status()

    def close(self) -> None:
        self._executor.shutdown(wait=False)
