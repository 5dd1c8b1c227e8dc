"""Coalescing cache — per-key TTL store used as the debounce mechanism.

Each identity owns two keys: a short-lived *head* ("still typing") and a
long-lived *buffer* (last known value once the head is gone). Head expiry is
observed through Redis keyspace notifications on ``__keyevent@<db>__:expired``,
which requires ``notify-keyspace-events`` to include ``Ex``.

The service layer only depends on the ``CoalescingCache`` protocol so tests
can substitute an in-memory double.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class CacheError(Exception):
    """Raised when the coalescing cache cannot be read or written."""


class SubscriptionError(CacheError):
    """Raised when the expiry notification subscription cannot be established."""


class ExpirySubscription(Protocol):
    async def next_expired(self, timeout: float) -> str | None:
        """Return the next expired key, or None if nothing arrived within timeout."""
        ...

    async def close(self) -> None: ...


class CoalescingCache(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def subscribe_expired(self, prefix: str) -> ExpirySubscription: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class RedisExpirySubscription:
    """Pattern subscription to expired-key events, filtered to one key prefix."""

    __slots__ = ("_pubsub", "_prefix", "_closed")

    def __init__(self, pubsub: aioredis.client.PubSub, prefix: str) -> None:
        self._pubsub = pubsub
        self._prefix = prefix
        self._closed = False

    async def next_expired(self, timeout: float) -> str | None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=remaining
                )
            except RedisError as exc:
                raise CacheError(f"Expiry notification stream failed: {exc}") from exc
            if message is None or message.get("type") != "pmessage":
                continue
            key = message.get("data")
            if isinstance(key, bytes):
                key = key.decode("utf-8")
            if isinstance(key, str) and key.startswith(self._prefix):
                return key

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._pubsub.punsubscribe()
        except RedisError:
            logger.debug("PUNSUBSCRIBE failed during close", exc_info=True)
        await self._pubsub.aclose()


class RedisCoalescingCache:
    """CoalescingCache backed by ``redis.asyncio``."""

    def __init__(
        self,
        redis_url: str,
        connect_timeout: float = 3.0,
        configure_notifications: bool = True,
    ) -> None:
        self._url = redis_url
        self._connect_timeout = connect_timeout
        self._configure_notifications = configure_notifications
        self._redis: aioredis.Redis | None = None

    async def connect(self) -> None:
        self._redis = aioredis.from_url(
            self._url,
            decode_responses=True,
            socket_connect_timeout=self._connect_timeout,
            socket_timeout=self._connect_timeout,
        )
        try:
            await self._redis.ping()
        except RedisError as exc:
            await self.close()
            raise CacheError(f"Cannot connect to Redis at {self._url}: {exc}") from exc

        if self._configure_notifications:
            await self._enable_expiry_notifications()

    async def _enable_expiry_notifications(self) -> None:
        """Add ``E`` and ``x`` to notify-keyspace-events, keeping existing flags."""
        try:
            current = await self._redis.config_get("notify-keyspace-events")
            flags = current.get("notify-keyspace-events", "")
            # "A" is the alias that already covers "x"
            missing = "".join(
                flag
                for flag, covered_by in (("E", "E"), ("x", "xA"))
                if not any(c in flags for c in covered_by)
            )
            if missing:
                await self._redis.config_set("notify-keyspace-events", flags + missing)
        except RedisError:
            logger.warning(
                "Could not enable keyspace notifications — make sure "
                "notify-keyspace-events includes 'Ex' on the server",
                exc_info=True,
            )

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    @property
    def connected(self) -> bool:
        return self._redis is not None

    @property
    def _client(self) -> aioredis.Redis:
        if self._redis is None:
            raise CacheError("Redis client is not connected")
        return self._redis

    @property
    def expired_channel(self) -> str:
        db = self._client.connection_pool.connection_kwargs.get("db", 0)
        return f"__keyevent@{db}__:expired"

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as exc:
            raise CacheError(f"PING failed: {exc}") from exc

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(key)
        except RedisError as exc:
            raise CacheError(f"GET {key} failed: {exc}") from exc

    async def set(self, key: str, value: str, ttl: int) -> None:
        try:
            await self._client.set(key, value, ex=ttl)
        except RedisError as exc:
            raise CacheError(f"SET {key} failed: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as exc:
            raise CacheError(f"DEL {key} failed: {exc}") from exc

    async def subscribe_expired(self, prefix: str) -> RedisExpirySubscription:
        channel = self.expired_channel
        pubsub = self._client.pubsub()
        try:
            await pubsub.psubscribe(channel)
        except RedisError as exc:
            await pubsub.aclose()
            raise SubscriptionError(f"PSUBSCRIBE {channel} failed: {exc}") from exc
        logger.info("Subscribed to %s (prefix=%s)", channel, prefix)
        return RedisExpirySubscription(pubsub, prefix)
