"""Identity resolution for search logging.

Authenticated callers are keyed by their user identifier. Anonymous callers
are keyed by a SHA-256 fingerprint of their User-Agent, prefixed with
``anon`` so the expiry listener can tell the two apart from the cache key
alone. Callers sharing a User-Agent collapse onto one anonymous identity;
that is an accepted accuracy trade-off. Classification of a bare key is by
prefix only, so an authenticated identifier that itself starts with
``anon`` is stored under ``user_id`` by a reset flush but under ``anon_id``
by an expiry flush.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

ANON_PREFIX = "anon"


@dataclass(frozen=True, slots=True)
class Identity:
    """Stable per-caller key plus how it was derived."""

    key: str
    is_anonymous: bool

    @property
    def user_id(self) -> str | None:
        return None if self.is_anonymous else self.key

    @property
    def anon_id(self) -> str | None:
        return self.key if self.is_anonymous else None


def generate_anon_id(user_agent: str) -> str:
    """Derive a stable anonymous ID from the User-Agent string."""
    return ANON_PREFIX + hashlib.sha256(user_agent.encode("utf-8")).hexdigest()


def resolve_identity(user_id: str | None, user_agent: str) -> Identity:
    if user_id and user_id.strip():
        return Identity(key=user_id, is_anonymous=False)
    return Identity(key=generate_anon_id(user_agent), is_anonymous=True)


def is_anonymous_key(key: str) -> bool:
    return key.startswith(ANON_PREFIX)


def identity_from_key(key: str) -> Identity:
    """Rebuild an Identity from a bare cache key (expiry path)."""
    return Identity(key=key, is_anonymous=is_anonymous_key(key))
