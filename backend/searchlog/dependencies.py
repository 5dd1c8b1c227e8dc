"""FastAPI dependency injection for the services created at startup."""

from __future__ import annotations

from fastapi import HTTPException, Request

from searchlog.services.cache import CoalescingCache
from searchlog.services.expiry_listener import ExpiryFlushListener
from searchlog.services.search_logger import SearchLogger


def get_search_logger(request: Request) -> SearchLogger:
    """Inject the SearchLogger initialized at startup."""
    svc = getattr(request.app.state, "search_logger", None)
    if svc is None:
        raise HTTPException(
            status_code=503,
            detail="Search logging unavailable — Redis not reachable",
        )
    return svc


def get_cache(request: Request) -> CoalescingCache | None:
    """Inject the coalescing cache if it connected at startup."""
    return getattr(request.app.state, "cache", None)


def get_expiry_listener(request: Request) -> ExpiryFlushListener | None:
    """Inject the expiry flush listener if it is configured."""
    return getattr(request.app.state, "expiry_listener", None)
