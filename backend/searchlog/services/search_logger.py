"""Search logger — coalesces keystroke-level query updates into completed searches.

Every update for an identity overwrites a short-TTL *head* and a long-TTL
*buffer* in the coalescing cache. A new query that is neither a prefix nor an
extension of the current head is a *reset*: the old head is written to the
database immediately. Bursts that simply stop are flushed later from the
buffer by the expiry listener (see ``flush_buffer``).

There is no per-identity lock. Two concurrent submits for the same identity
can interleave their read/decide/write steps and produce a stale or duplicate
flush; search logging is best-effort telemetry so this is accepted.
"""

from __future__ import annotations

import logging
from enum import Enum

from searchlog.config import Settings
from searchlog.services.cache import CacheError, CoalescingCache
from searchlog.services.identity import Identity, identity_from_key, resolve_identity
from searchlog.services.normalizer import normalize_query
from searchlog.services.writer import PersistenceError, SearchWriter

logger = logging.getLogger(__name__)


class SearchLogError(Exception):
    """Raised when a query could not be logged. Carries identity and operation."""

    def __init__(self, message: str, identity: str, operation: str) -> None:
        super().__init__(message)
        self.identity = identity
        self.operation = operation


class SubmitOutcome(str, Enum):
    IGNORED = "ignored"    # empty after normalization
    STARTED = "started"    # no active head, new burst
    EXTENDED = "extended"  # same burst (typing forward or backspacing)
    RESET = "reset"        # previous burst flushed, new burst started


def is_reset(head: str, query: str) -> bool:
    """A reset is a non-empty head with no prefix relation to the new query."""
    return bool(head) and not query.startswith(head) and not head.startswith(query)


class SearchLogger:
    """Reset detection and flushing on top of a coalescing cache and a writer."""

    __slots__ = (
        "_cache",
        "_writer",
        "_head_ttl",
        "_buffer_ttl",
        "_head_prefix",
        "_buffer_prefix",
    )

    def __init__(
        self,
        cache: CoalescingCache,
        writer: SearchWriter,
        settings: Settings,
    ) -> None:
        self._cache = cache
        self._writer = writer
        self._head_ttl = settings.head_ttl_seconds
        self._buffer_ttl = settings.buffer_ttl_seconds
        self._head_prefix = settings.head_key_prefix
        self._buffer_prefix = settings.buffer_key_prefix

    @property
    def head_prefix(self) -> str:
        return self._head_prefix

    def head_key(self, identity_key: str) -> str:
        return self._head_prefix + identity_key

    def buffer_key(self, identity_key: str) -> str:
        return self._buffer_prefix + identity_key

    def identity_from_head_key(self, key: str) -> str:
        """Identity encoded in a head key, or "" if the key is not a head key."""
        if not key.startswith(self._head_prefix):
            return ""
        return key[len(self._head_prefix):]

    async def log_search(
        self, user_id: str | None, user_agent: str, raw_query: str
    ) -> SubmitOutcome:
        """Ingress entry point: normalize, resolve identity, submit."""
        query = normalize_query(raw_query)
        if not query:
            logger.debug("Empty query ignored for user_id=%s", user_id)
            return SubmitOutcome.IGNORED

        identity = resolve_identity(user_id, user_agent)
        if identity.is_anonymous:
            logger.debug("Resolved anonymous identity=%s from user agent", identity.key)
        return await self.submit(identity, query)

    async def submit(self, identity: Identity, query: str) -> SubmitOutcome:
        """Record one normalized query update for ``identity``.

        On reset the previous head is flushed before the cache is updated; if
        that flush fails the new query is not cached, so a retried submit
        flushes the same value again.
        """
        if not query:
            return SubmitOutcome.IGNORED

        head_key = self.head_key(identity.key)
        buffer_key = self.buffer_key(identity.key)

        try:
            head = await self._cache.get(head_key) or ""
        except CacheError as exc:
            raise SearchLogError(
                f"Cache unavailable for identity={identity.key}: {exc}",
                identity=identity.key,
                operation="read_head",
            ) from exc

        if not head:
            outcome = SubmitOutcome.STARTED
        elif is_reset(head, query):
            outcome = SubmitOutcome.RESET
            logger.info(
                "Detected reset for identity=%s, last=%r, new=%r",
                identity.key,
                head,
                query,
            )
            try:
                await self._writer.write_async(identity, head)
            except PersistenceError as exc:
                raise SearchLogError(
                    f"Could not flush previous query for identity={identity.key}: {exc}",
                    identity=identity.key,
                    operation="reset_flush",
                ) from exc
        else:
            outcome = SubmitOutcome.EXTENDED

        # Independent best-effort writes; one failing does not undo the other
        errors: list[str] = []
        for key, ttl in ((head_key, self._head_ttl), (buffer_key, self._buffer_ttl)):
            try:
                await self._cache.set(key, query, ttl)
            except CacheError as exc:
                errors.append(str(exc))
        if errors:
            logger.error(
                "Cache set failed for identity=%s: %s", identity.key, "; ".join(errors)
            )
            raise SearchLogError(
                f"Cache set error for identity={identity.key}: {'; '.join(errors)}",
                identity=identity.key,
                operation="write_head_buffer",
            )

        logger.debug(
            "Updated head and buffer for identity=%s (%s)", identity.key, outcome.value
        )
        return outcome

    async def flush_buffer(self, identity_key: str) -> bool:
        """Persist and clear the buffered query of an idle identity.

        Returns False when there is nothing to flush (missing, empty or
        unreadable buffer). A write failure is raised and leaves the buffer in
        place for a later flush.
        """
        buffer_key = self.buffer_key(identity_key)
        try:
            query = await self._cache.get(buffer_key)
        except CacheError:
            logger.warning(
                "Could not read buffered query for identity=%s",
                identity_key,
                exc_info=True,
            )
            return False
        if not query:
            return False

        identity = identity_from_key(identity_key)
        try:
            await self._writer.write_async(identity, query)
        except PersistenceError as exc:
            raise SearchLogError(
                f"Could not flush buffered query for identity={identity_key}: {exc}",
                identity=identity_key,
                operation="expiry_flush",
            ) from exc

        try:
            await self._cache.delete(buffer_key)
        except CacheError:
            # Row is committed; a leftover buffer can at worst be flushed twice
            logger.warning(
                "Could not clear buffer for identity=%s", identity_key, exc_info=True
            )
        logger.info("Flushed idle query for identity=%s", identity_key)
        return True
