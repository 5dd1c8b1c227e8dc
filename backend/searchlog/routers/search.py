"""Search router — ingress for keystroke-level query updates."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Form, Header, HTTPException

from searchlog.dependencies import get_search_logger
from searchlog.models.user_search import SearchLoggedResponse
from searchlog.services.search_logger import SearchLogError, SearchLogger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search", tags=["search"])


@router.post("", response_model=SearchLoggedResponse)
async def log_search(
    q: str | None = Form(None, description="Current contents of the search box"),
    user_id: str | None = Form(None, description="Authenticated user, if any"),
    user_agent: str = Header(""),
    search_logger: SearchLogger = Depends(get_search_logger),
) -> SearchLoggedResponse:
    """Record the latest state of a user's search box.

    Only completed searches reach the database: intermediate keystrokes are
    coalesced in the cache and flushed on reset or after a typing pause.
    """
    if not q:
        raise HTTPException(status_code=400, detail="missing query parameter q")

    try:
        outcome = await search_logger.log_search(user_id, user_agent, q)
    except SearchLogError as exc:
        logger.error(
            "Error logging search (identity=%s, operation=%s): %s",
            exc.identity,
            exc.operation,
            exc,
        )
        raise HTTPException(status_code=500, detail="error logging search") from exc

    logger.debug("Search accepted: %s", outcome.value)
    return SearchLoggedResponse()
