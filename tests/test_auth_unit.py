"""Unit tests for bearer-token auth and workspace resolution."""

import asyncio

import pytest

from littleagent.config import get_settings
from littleagent.service.auth import AuthContext, AuthService
from littleagent.service.errors import AuthenticationError, NoWorkspaceError
from littleagent.service.workspace import WorkspaceResolver
from littleagent.storage.memory import MemoryStore


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def auth(memory_store):
    return AuthService(memory_store, get_settings())


class TestAccessTokens:
    def test_round_trip(self, auth, memory_store):
        user = memory_store.create_user("sam@example.com")
        token = auth.issue_access_token(user.id)

        ctx = asyncio.run(auth.authenticate(f"Bearer {token}"))

        assert ctx.user_id == user.id
        assert ctx.token_id

    def test_missing_or_malformed_header(self, auth):
        assert asyncio.run(auth.authenticate(None)) is None
        assert asyncio.run(auth.authenticate("Basic abc")) is None
        assert asyncio.run(auth.authenticate("Bearer not.a.jwt")) is None

    def test_tampered_signature(self, auth, memory_store):
        user = memory_store.create_user("sam@example.com")
        token = auth.issue_access_token(user.id)
        header, payload, _ = token.split(".")
        assert asyncio.run(auth.authenticate(f"Bearer {header}.{payload}.forged")) is None

    def test_expired_token(self, auth, memory_store):
        user = memory_store.create_user("sam@example.com")
        token = auth.issue_access_token(user.id, ttl_minutes=-10)
        assert asyncio.run(auth.authenticate(f"Bearer {token}")) is None

    def test_unknown_subject(self, auth):
        token = auth.issue_access_token("ghost")
        assert asyncio.run(auth.authenticate(f"Bearer {token}")) is None


class TestWorkspaceResolver:
    def test_earliest_membership_wins(self, memory_store):
        user = memory_store.create_user("sam@example.com")
        first = memory_store.create_workspace("First")
        second = memory_store.create_workspace("Second")
        memory_store.add_membership(user.id, first.id)
        memory_store.add_membership(user.id, second.id)

        scope = WorkspaceResolver(memory_store).resolve(AuthContext(user_id=user.id))

        assert scope.workspace_id == first.id
        assert scope.user_id == user.id

    def test_no_membership(self, memory_store):
        user = memory_store.create_user("sam@example.com")
        with pytest.raises(NoWorkspaceError):
            WorkspaceResolver(memory_store).resolve(AuthContext(user_id=user.id))

    def test_unauthenticated(self, memory_store):
        with pytest.raises(AuthenticationError):
            WorkspaceResolver(memory_store).resolve(None)
