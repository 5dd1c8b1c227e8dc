from __future__ import annotations

import asyncio
import os
import tempfile

# Set test environment BEFORE importing searchlog modules.
# searchlog.db creates the engine at module level using get_settings().db_url,
# so we must override the env vars before any searchlog imports.
_test_tmp = tempfile.mkdtemp(prefix="searchlog-test-")
os.environ.setdefault("DATA_DIR", os.path.join(_test_tmp, "data"))
os.environ.setdefault("DB_URL", "sqlite://")
# Nothing listens on port 1: the app lifespan degrades without Redis
os.environ.setdefault("REDIS_URL", "redis://127.0.0.1:1/0")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

import searchlog.models  # noqa: F401 — register SQLModel tables
from searchlog.config import Settings
from searchlog.db import get_session
from searchlog.dependencies import get_cache, get_expiry_listener, get_search_logger
from searchlog.main import app as fastapi_app
from searchlog.services.cache import CacheError, SubscriptionError
from searchlog.services.search_logger import SearchLogger
from searchlog.services.writer import SearchWriter


# ── In-memory coalescing cache ────────────────────────────────────────


class FakeSubscription:
    """Expired-key feed for one prefix, fed by FakeCache.expire()."""

    def __init__(self, cache: FakeCache, prefix: str) -> None:
        self._cache = cache
        self.prefix = prefix
        self.queue: asyncio.Queue[str] = asyncio.Queue()
        self.closed = False
        self.fail_with: Exception | None = None

    async def next_expired(self, timeout: float) -> str | None:
        if self.fail_with is not None:
            raise self.fail_with
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    async def close(self) -> None:
        self.closed = True
        if self in self._cache.subscriptions:
            self._cache.subscriptions.remove(self)


class FakeCache:
    """CoalescingCache double. TTLs are recorded, expiry is triggered by hand."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.subscriptions: list[FakeSubscription] = []
        self.down = False
        self.fail_on: set[tuple[str, str]] = set()  # (operation, key)
        self.fail_subscribe = False
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    def _check(self, operation: str, key: str) -> None:
        self.calls.append((operation, key))
        if self.down or (operation, key) in self.fail_on:
            raise CacheError(f"{operation.upper()} {key} failed: connection refused")

    async def get(self, key: str) -> str | None:
        self._check("get", key)
        return self.values.get(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._check("set", key)
        self.values[key] = value
        self.ttls[key] = ttl

    async def delete(self, key: str) -> None:
        self._check("delete", key)
        self.values.pop(key, None)
        self.ttls.pop(key, None)

    async def subscribe_expired(self, prefix: str) -> FakeSubscription:
        if self.fail_subscribe:
            raise SubscriptionError("PSUBSCRIBE __keyevent@0__:expired failed")
        sub = FakeSubscription(self, prefix)
        self.subscriptions.append(sub)
        return sub

    async def ping(self) -> bool:
        self._check("ping", "")
        return True

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        self.closed = True

    def expire(self, key: str) -> None:
        """Drop a key as if its TTL ran out and notify subscribers."""
        self.values.pop(key, None)
        self.ttls.pop(key, None)
        for sub in self.subscriptions:
            if key.startswith(sub.prefix):
                sub.queue.put_nowait(key)

    def notify_expired(self, key: str) -> None:
        """Deliver an expiry notification without touching stored values."""
        for sub in self.subscriptions:
            if key.startswith(sub.prefix):
                sub.queue.put_nowait(key)


# ── Database fixtures ─────────────────────────────────────────────────


@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite engine for testing.

    Uses StaticPool so every connection shares the same in-memory database.
    Recreates tables per test for full isolation.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    """Provide a fresh session per test."""
    with Session(engine) as session:
        yield session


# ── Service fixtures ──────────────────────────────────────────────────


@pytest.fixture(name="settings")
def settings_fixture() -> Settings:
    return Settings(
        _env_file=None,
        db_url="sqlite://",
        head_ttl_seconds=10,
        buffer_ttl_seconds=3600,
    )


@pytest.fixture(name="fake_cache")
def fake_cache_fixture() -> FakeCache:
    return FakeCache()


@pytest.fixture(name="writer")
def writer_fixture(engine) -> SearchWriter:
    return SearchWriter(engine)


@pytest.fixture(name="search_logger")
def search_logger_fixture(fake_cache, writer, settings) -> SearchLogger:
    return SearchLogger(fake_cache, writer, settings)


# ── HTTP client fixtures ──────────────────────────────────────────────


@pytest.fixture(name="client")
def client_fixture(session, fake_cache, search_logger):
    """FastAPI TestClient wired to the in-memory cache and database."""

    def _get_session_override():
        yield session

    fastapi_app.dependency_overrides[get_session] = _get_session_override
    fastapi_app.dependency_overrides[get_search_logger] = lambda: search_logger
    fastapi_app.dependency_overrides[get_cache] = lambda: fake_cache
    fastapi_app.dependency_overrides[get_expiry_listener] = lambda: None
    with TestClient(fastapi_app) as client:
        yield client
    fastapi_app.dependency_overrides.clear()
