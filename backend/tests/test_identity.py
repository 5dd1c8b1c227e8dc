"""Tests for identity resolution and query normalization."""
from __future__ import annotations

import hashlib

from searchlog.services.identity import (
    Identity,
    generate_anon_id,
    identity_from_key,
    is_anonymous_key,
    resolve_identity,
)
from searchlog.services.normalizer import normalize_query


class TestResolveIdentity:
    def test_authenticated_user_is_used_directly(self):
        identity = resolve_identity("user123", "Mozilla/5.0")
        assert identity == Identity(key="user123", is_anonymous=False)
        assert identity.user_id == "user123"
        assert identity.anon_id is None

    def test_empty_user_id_falls_back_to_user_agent(self):
        identity = resolve_identity("", "TestBrowser/1.0")
        assert identity.is_anonymous is True
        assert identity.key == generate_anon_id("TestBrowser/1.0")
        assert identity.user_id is None
        assert identity.anon_id == identity.key

    def test_whitespace_user_id_is_anonymous(self):
        identity = resolve_identity("   ", "TestBrowser/1.0")
        assert identity.is_anonymous is True

    def test_none_user_id_is_anonymous(self):
        assert resolve_identity(None, "TestBrowser/1.0").is_anonymous is True

    def test_same_user_agent_resolves_to_same_identity(self):
        """Anonymous callers sharing a User-Agent collapse onto one identity."""
        first = resolve_identity("", "AgentX")
        second = resolve_identity(None, "AgentX")
        assert first == second

    def test_different_user_agents_resolve_to_different_identities(self):
        assert resolve_identity("", "AgentX").key != resolve_identity("", "AgentY").key


class TestAnonId:
    def test_format(self):
        anon_id = generate_anon_id("TestAgent")
        expected = "anon" + hashlib.sha256(b"TestAgent").hexdigest()
        assert anon_id == expected
        assert len(anon_id) == 4 + 64

    def test_empty_user_agent_still_hashes(self):
        assert generate_anon_id("") == "anon" + hashlib.sha256(b"").hexdigest()

    def test_key_classification_matches_generated_ids(self):
        assert is_anonymous_key(generate_anon_id("AgentX")) is True
        assert is_anonymous_key("user123") is False

    def test_anon_prefixed_user_id_is_classified_by_prefix(self):
        """Only the resolver knows the caller authenticated; a bare key does not."""
        assert resolve_identity("anonymous_bob", "AgentX").anon_id is None
        assert identity_from_key("anonymous_bob").anon_id == "anonymous_bob"

    def test_identity_from_key_round_trips_attribution(self):
        anon = identity_from_key(generate_anon_id("AgentX"))
        assert anon.is_anonymous is True
        assert anon.anon_id is not None and anon.user_id is None

        direct = identity_from_key("user123")
        assert direct.user_id == "user123"
        assert direct.anon_id is None


class TestNormalizeQuery:
    def test_lowercases_and_trims(self):
        assert normalize_query("  Hello World \n") == "hello world"

    def test_inner_whitespace_is_kept(self):
        assert normalize_query("new  york") == "new  york"

    def test_blank_input_normalizes_to_empty(self):
        assert normalize_query("   ") == ""
        assert normalize_query("") == ""
        assert normalize_query(None) == ""
