"""Persistence writer — appends completed searches to the user_searches table."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from searchlog.models.user_search import UserSearch
from searchlog.services.identity import Identity

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when a search record could not be committed."""


class SearchWriter:
    """Writes one UserSearch row per call inside its own transaction.

    Not idempotent: two calls with the same arguments produce two rows.
    Callers deduplicate by clearing the cache buffer after a successful write.
    """

    __slots__ = ("_engine",)

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def write(self, identity: Identity, query: str) -> UserSearch | None:
        """Insert a search record. Returns None (and writes nothing) for an empty query."""
        if not query:
            logger.debug("Empty query for identity=%s, skipping write", identity.key)
            return None

        record = UserSearch(
            user_id=identity.user_id,
            anon_id=identity.anon_id,
            search_text=query,
            last_searched_at=datetime.now(timezone.utc),
        )
        # Attributes stay loaded after commit, so the record needs no refresh
        with Session(self._engine, expire_on_commit=False) as session:
            try:
                session.add(record)
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                logger.error(
                    "Failed to write search for identity=%s: %s", identity.key, exc
                )
                raise PersistenceError(
                    f"Could not write search for identity={identity.key}: {exc}"
                ) from exc

        logger.info("Logged search for identity=%s query=%r", identity.key, query)
        return record

    async def write_async(self, identity: Identity, query: str) -> UserSearch | None:
        """Run ``write`` in a worker thread so the event loop is not blocked."""
        return await asyncio.to_thread(self.write, identity, query)
