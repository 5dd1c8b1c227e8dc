from __future__ import annotations

from searchlog.models.user_search import UserSearch  # noqa: F401
