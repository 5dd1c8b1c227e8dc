"""Expiry flush listener — persists bursts that ended by inactivity.

Subscribes to expired-key notifications for the head namespace. When a head
expires the user stopped typing, so the buffered value is written and the
buffer cleared. Failed writes are logged and skipped; the buffer is kept but
nothing schedules a retry, so it is flushed only if another expiry for the
same identity comes along before the buffer TTL runs out.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

from searchlog.services.cache import CoalescingCache, ExpirySubscription
from searchlog.services.search_logger import SearchLogError, SearchLogger

logger = logging.getLogger(__name__)


class ListenerState(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"


class ExpiryFlushListener:
    """Managed background task consuming head-expiry notifications.

    ``start()`` establishes the subscription before returning, so a
    subscription failure surfaces to the caller. ``stop()`` lets a flush that
    is already in progress finish before the task exits. If the notification
    stream fails the task ends, the error is kept on ``error`` and the state
    drops to STOPPED, which the health checks report.
    """

    def __init__(
        self,
        cache: CoalescingCache,
        search_logger: SearchLogger,
        poll_interval: float = 1.0,
    ) -> None:
        self._cache = cache
        self._search_logger = search_logger
        self._poll_interval = poll_interval
        self._subscription: ExpirySubscription | None = None
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self._state = ListenerState.STOPPED
        self.processed_count = 0
        self.flushed_count = 0
        self.error: BaseException | None = None

    @property
    def state(self) -> ListenerState:
        return self._state

    async def start(self) -> None:
        if self._state is ListenerState.RUNNING:
            raise RuntimeError("Expiry flush listener is already running")

        # SubscriptionError propagates: restart policy belongs to the owner
        self._subscription = await self._cache.subscribe_expired(
            self._search_logger.head_prefix
        )
        self._stop_event = asyncio.Event()
        self.error = None
        self._state = ListenerState.RUNNING
        self._task = asyncio.create_task(self._run(), name="searchlog-expiry-listener")
        self._task.add_done_callback(self._on_task_done)
        logger.info("Started expiry flush listener")

    async def stop(self) -> None:
        """Signal the listener to stop and wait for it to finish."""
        if self._task is None:
            return
        self._stop_event.set()
        try:
            await self._task
        except Exception:
            logger.warning("Expiry flush listener had already failed", exc_info=True)
        finally:
            self._task = None

    async def wait(self) -> None:
        """Wait for the listener task to end, re-raising the error that ended it."""
        if self._task is not None:
            await self._task

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.error = exc
            logger.critical(
                "Expiry flush listener died, idle searches are no longer persisted: %s",
                exc,
            )

    async def _run(self) -> None:
        if self._subscription is None:
            raise RuntimeError("Expiry flush listener has no subscription; call start()")
        try:
            while not self._stop_event.is_set():
                key = await self._subscription.next_expired(self._poll_interval)
                if key is None:
                    continue
                await self.handle_expired(key)
        except Exception:
            logger.exception("Expiry flush listener stopped on error")
            raise
        finally:
            await self._subscription.close()
            self._subscription = None
            self._state = ListenerState.STOPPED
            logger.info(
                "Stopped expiry flush listener (processed=%d, flushed=%d)",
                self.processed_count,
                self.flushed_count,
            )

    async def handle_expired(self, key: str) -> None:
        """Flush the buffer belonging to an expired head key."""
        self.processed_count += 1
        identity = self._search_logger.identity_from_head_key(key)
        if not identity:
            return
        try:
            flushed = await self._search_logger.flush_buffer(identity)
        except SearchLogError:
            logger.exception("Failed to flush expired query for identity=%s", identity)
            return
        if flushed:
            self.flushed_count += 1
