from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlmodel import Session, text

from searchlog.db import get_session
from searchlog.dependencies import get_cache, get_expiry_listener
from searchlog.services.cache import CacheError, CoalescingCache
from searchlog.services.expiry_listener import ExpiryFlushListener

router = APIRouter(prefix="/api", tags=["health"])

SERVICE_NAME = "searchlog"
VERSION = "0.1.0"


def _db_status(session: Session) -> str:
    try:
        session.exec(text("SELECT 1"))
    except Exception as exc:
        return f"error: {exc}"
    return "ok"


async def _cache_status(cache: CoalescingCache | None) -> str:
    if cache is None:
        return "unavailable"
    try:
        await cache.ping()
    except CacheError as exc:
        return f"error: {exc}"
    return "ok"


def _listener_status(listener: ExpiryFlushListener | None) -> dict | str:
    if listener is None:
        return "disabled"
    status = {
        "state": listener.state.value,
        "processed": listener.processed_count,
        "flushed": listener.flushed_count,
    }
    if listener.error is not None:
        status["error"] = str(listener.error)
    return status


def _listener_ok(listener_status: dict | str) -> bool:
    return not isinstance(listener_status, dict) or listener_status["state"] == "running"


@router.get("/health")
async def health(
    session: Session = Depends(get_session),
    cache: CoalescingCache | None = Depends(get_cache),
    listener: ExpiryFlushListener | None = Depends(get_expiry_listener),
):
    db_status = _db_status(session)
    cache_status = await _cache_status(cache)
    listener_status = _listener_status(listener)

    is_healthy = db_status == "ok" and cache_status == "ok" and _listener_ok(listener_status)

    return {
        "status": "healthy" if is_healthy else "unhealthy",
        "service": SERVICE_NAME,
        "version": VERSION,
        "checks": {
            "database": db_status,
            "cache": cache_status,
            "listener": listener_status,
        },
    }


@router.get("/health/ready")
async def readiness(
    session: Session = Depends(get_session),
    cache: CoalescingCache | None = Depends(get_cache),
    listener: ExpiryFlushListener | None = Depends(get_expiry_listener),
):
    db_status = _db_status(session)
    cache_status = await _cache_status(cache)
    listener_status = _listener_status(listener)
    if db_status != "ok" or cache_status != "ok" or not _listener_ok(listener_status):
        return JSONResponse(
            status_code=503,
            content={
                "status": "not ready",
                "service": SERVICE_NAME,
                "checks": {
                    "database": db_status,
                    "cache": cache_status,
                    "listener": listener_status,
                },
            },
        )

    return {
        "status": "ready",
        "service": SERVICE_NAME,
    }
