"""Tests for the single-use OAuth state store."""

from __future__ import annotations

from qbolink.auth import OAuthStateStore

from conftest import FakeClock


class TestOAuthStateStore:
    def test_create_and_find(self, state_store: OAuthStateStore, clock: FakeClock) -> None:
        state = state_store.create_for_user("user-1", ttl_minutes=60)
        assert len(state.state_token) >= 32
        assert state.user_id == "user-1"

        found = state_store.find_valid(state.state_token)
        assert found is not None
        assert found.user_id == "user-1"
        assert found.expires_at == state.expires_at

    def test_tokens_are_unique(self, state_store: OAuthStateStore) -> None:
        tokens = {state_store.create_for_user(f"user-{i}").state_token for i in range(20)}
        assert len(tokens) == 20

    def test_new_state_replaces_previous(self, state_store: OAuthStateStore) -> None:
        first = state_store.create_for_user("user-1")
        second = state_store.create_for_user("user-1")

        assert state_store.find_valid(first.state_token) is None
        assert state_store.find_valid(second.state_token) is not None
        assert state_store.count_for_user("user-1") == 1

    def test_other_users_states_survive(self, state_store: OAuthStateStore) -> None:
        other = state_store.create_for_user("user-2")
        state_store.create_for_user("user-1")
        assert state_store.find_valid(other.state_token) is not None

    def test_expired_state_never_valid(self, state_store: OAuthStateStore, clock: FakeClock) -> None:
        state = state_store.create_for_user("user-1", ttl_minutes=10)
        clock.advance(minutes=10)
        # Not yet garbage-collected, but no longer valid.
        assert state_store.count_for_user("user-1") == 1
        assert state_store.find_valid(state.state_token) is None
        assert state_store.consume(state.state_token) is None

    def test_consume_once(self, state_store: OAuthStateStore) -> None:
        state = state_store.create_for_user("user-1")

        consumed = state_store.consume(state.state_token)
        assert consumed is not None
        assert consumed.user_id == "user-1"

        assert state_store.consume(state.state_token) is None
        assert state_store.find_valid(state.state_token) is None

    def test_consume_unknown_or_empty(self, state_store: OAuthStateStore) -> None:
        assert state_store.consume("does-not-exist") is None
        assert state_store.consume("") is None
        assert state_store.find_valid("") is None

    def test_cleanup_removes_only_expired(self, state_store: OAuthStateStore, clock: FakeClock) -> None:
        old = state_store.create_for_user("user-1", ttl_minutes=5)
        clock.advance(minutes=3)
        fresh = state_store.create_for_user("user-2", ttl_minutes=60)
        clock.advance(minutes=3)

        assert state_store.cleanup() == 1
        assert state_store.count_for_user("user-1") == 0
        assert state_store.find_valid(fresh.state_token) is not None
        assert state_store.consume(old.state_token) is None
