"""Refresh scheduler: periodic and on-demand refreshes through one worker.

Timer ticks and manual requests go into one queue.  A single worker drains
it, so refreshes never overlap; requests that pile up while a refresh is
running are answered together by the next one.  Each manual request gets a
future resolved with the resulting snapshot, and every snapshot is pushed to
the subscribers (the SSE endpoint among them).
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

from src.token_tracker.engine import UsageEngine
from src.token_tracker.snapshot import UsageSnapshot

logger = logging.getLogger(__name__)

Subscriber = Callable[[UsageSnapshot], Any]


class RefreshScheduler:
    def __init__(
        self,
        engine: UsageEngine,
        interval_seconds: float = 60,
        prune_interval_seconds: float = 1800,
    ) -> None:
        self.engine = engine
        self.interval_seconds = interval_seconds
        self.prune_interval_seconds = prune_interval_seconds
        self._queue: asyncio.Queue[asyncio.Future[UsageSnapshot] | None] | None = None
        self._subscribers: list[Subscriber] = []
        self._tasks: list[asyncio.Task[None]] = []
        self._running = False
        self.refresh_count = 0

    @property
    def running(self) -> bool:
        return self._running

    # -- subscribers -----------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a snapshot callback (sync or async); returns an unsubscribe."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def _publish(self, snapshot: UsageSnapshot) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Snapshot subscriber error")

    # -- lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._queue = asyncio.Queue()
        self._tasks = [
            asyncio.create_task(self._worker(), name="usage-refresh-worker"),
            asyncio.create_task(self._timer_loop(), name="usage-refresh-timer"),
            asyncio.create_task(self._prune_loop(), name="usage-cache-prune"),
        ]
        logger.info(
            "Refresh scheduler started: every %ss, cache prune every %ss",
            self.interval_seconds, self.prune_interval_seconds,
        )

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        if self._queue is not None:
            while not self._queue.empty():
                waiter = self._queue.get_nowait()
                if waiter is not None and not waiter.done():
                    waiter.cancel()
        logger.info("Refresh scheduler stopped")

    # -- requests --------------------------------------------------------------

    def request_refresh(self) -> asyncio.Future[UsageSnapshot]:
        """Queue a refresh; the returned future resolves with its snapshot."""
        if not self._running or self._queue is None:
            raise RuntimeError("scheduler is not running")
        future: asyncio.Future[UsageSnapshot] = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(future)
        return future

    async def refresh_now(self) -> UsageSnapshot:
        """Refresh through the worker, or directly when the scheduler is idle."""
        if self._running:
            return await self.request_refresh()
        snapshot = await self.engine.refresh()
        self.refresh_count += 1
        await self._publish(snapshot)
        return snapshot

    # -- loops -----------------------------------------------------------------

    async def _worker(self) -> None:
        assert self._queue is not None
        while self._running:
            futures: list[asyncio.Future[UsageSnapshot]] = []
            try:
                first = await self._queue.get()
                waiters = [first]
                while not self._queue.empty():
                    waiters.append(self._queue.get_nowait())
                futures = [w for w in waiters if w is not None and not w.done()]

                try:
                    snapshot = await self.engine.refresh()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.exception("Usage refresh failed")
                    for future in futures:
                        if not future.done():
                            future.set_exception(exc)
                    continue

                self.refresh_count += 1
                for future in futures:
                    if not future.done():
                        future.set_result(snapshot)
                await self._publish(snapshot)
            except asyncio.CancelledError:
                # Requests already taken off the queue are not drained by stop()
                for future in futures:
                    if not future.done():
                        future.cancel()
                break

    async def _timer_loop(self) -> None:
        assert self._queue is not None
        while self._running:
            try:
                self._queue.put_nowait(None)
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                break

    async def _prune_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.prune_interval_seconds)
                if not self._running:
                    break
                await self.engine.prune()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Scan cache prune failed")
