from __future__ import annotations


def normalize_query(raw: str | None) -> str:
    """Lowercase and trim a raw query. An empty result means "ignore"."""
    if raw is None:
        return ""
    return raw.strip().lower()
