from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import searchlog.models  # noqa: F401 — register SQLModel tables

from searchlog.config import get_settings
from searchlog.db import create_db_and_tables
from searchlog.routers import health, search

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.getLogger("searchlog").setLevel(settings.log_level.upper())
    if settings.db_url.startswith("sqlite:///"):
        settings.data_dir.mkdir(parents=True, exist_ok=True)
    create_db_and_tables()

    from searchlog.db import engine as db_engine
    from searchlog.services.cache import CacheError, RedisCoalescingCache, SubscriptionError
    from searchlog.services.expiry_listener import ExpiryFlushListener
    from searchlog.services.search_logger import SearchLogger
    from searchlog.services.writer import SearchWriter

    app.state.cache = None
    app.state.search_logger = None
    app.state.expiry_listener = None

    cache = RedisCoalescingCache(
        settings.redis_url,
        connect_timeout=settings.redis_connect_timeout_seconds,
        configure_notifications=settings.redis_configure_notifications,
    )
    try:
        await cache.connect()
    except CacheError:
        logger.warning(
            "Failed to connect to Redis — search logging unavailable until restart",
            exc_info=True,
        )
    else:
        search_logger = SearchLogger(cache, SearchWriter(db_engine), settings)

        # A failed subscription aborts startup; restarting is up to the supervisor
        if settings.listener_enabled:
            listener = ExpiryFlushListener(cache, search_logger)
            try:
                await listener.start()
            except SubscriptionError:
                logger.error("Could not subscribe to Redis expiry notifications")
                await cache.close()
                raise
            app.state.expiry_listener = listener

        app.state.cache = cache
        app.state.search_logger = search_logger

    yield

    # Shutdown: stop listener, letting an in-flight flush complete
    if app.state.expiry_listener is not None:
        await app.state.expiry_listener.stop()
        app.state.expiry_listener = None

    # Shutdown: close Redis client
    if app.state.cache is not None:
        await app.state.cache.close()
        app.state.cache = None
    app.state.search_logger = None


app = FastAPI(
    title="searchlog",
    description="Debounced search-query logging",
    version="0.1.0",
    lifespan=lifespan,
)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        f"https://{settings.domain}",
        "http://localhost:3000",
        "http://localhost:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(search.router)
