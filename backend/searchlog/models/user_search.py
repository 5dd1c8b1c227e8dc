"""UserSearch model — one row per completed typing burst."""
from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel
from sqlmodel import Field, SQLModel


class UserSearch(SQLModel, table=True):
    __tablename__ = "user_searches"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str | None = Field(default=None, index=True)  # authenticated caller
    search_text: str  # normalized, never empty
    last_searched_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), index=True
    )
    anon_id: str | None = Field(default=None, index=True)  # "anon" + sha256(user agent)


class SearchLoggedResponse(BaseModel):
    status: str = "Query logged"
