"""
Tests for the single-use OAuth stores and the storage janitor.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from mcp_bridge.oauth.models import AuthorizationCode, AuthorizationSession, RegisteredClient
from mcp_bridge.oauth.sqlite_auth_code_store import SQLiteAuthCodeStore, SQLiteAuthSessionStore
from mcp_bridge.oauth.sqlite_client_store import SQLiteClientStore
from mcp_bridge.ratelimit import SQLiteRateLimiter
from mcp_bridge.storage import StorageJanitor
from mcp_bridge.vault import SQLiteCredentialVault


def _code(code: str = "code-1", ttl: int = 600) -> AuthorizationCode:
    return AuthorizationCode(
        code=code,
        encrypted_provider_code="ciphertext",
        registered_client_id="client-1",
        redirect_uri="http://localhost:3000/cb",
        pkce_code_challenge="challenge",
        pkce_method="S256",
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=ttl),
    )


def _session(state: str = "internal-1", ttl: int = 600) -> AuthorizationSession:
    return AuthorizationSession(
        internal_state=state,
        client_state="client-state",
        registered_client_id="client-1",
        redirect_uri="http://localhost:3000/cb",
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=ttl),
    )


@pytest.fixture
async def code_store() -> SQLiteAuthCodeStore:
    store = SQLiteAuthCodeStore()
    await store.initialize()
    return store


@pytest.fixture
async def session_store() -> SQLiteAuthSessionStore:
    store = SQLiteAuthSessionStore()
    await store.initialize()
    return store


class TestAuthCodeStore:
    """Tests for single-use authorization codes."""

    async def test_code_is_consumed_once(self, code_store):
        await code_store.save_auth_code(_code())

        first = await code_store.consume_auth_code("code-1")
        assert first is not None
        assert first.pkce_code_challenge == "challenge"
        assert await code_store.consume_auth_code("code-1") is None

    async def test_concurrent_consumers_get_one_copy(self, code_store):
        await code_store.save_auth_code(_code())
        results = await asyncio.gather(*(code_store.consume_auth_code("code-1") for _ in range(5)))
        assert sum(1 for r in results if r is not None) == 1

    async def test_expired_code_is_not_returned(self, code_store):
        await code_store.save_auth_code(_code(ttl=-1))
        assert await code_store.consume_auth_code("code-1") is None

    async def test_purge_removes_only_expired(self, code_store):
        await code_store.save_auth_code(_code("old", ttl=-5))
        await code_store.save_auth_code(_code("new"))
        assert await code_store.purge_expired() == 1
        assert await code_store.consume_auth_code("new") is not None


class TestAuthSessionStore:
    """Tests for pending authorization sessions."""

    async def test_session_is_consumed_once(self, session_store):
        await session_store.save_session(_session())
        loaded = await session_store.consume_session("internal-1")
        assert loaded.client_state == "client-state"
        assert await session_store.consume_session("internal-1") is None

    async def test_expired_session_is_not_returned(self, session_store):
        await session_store.save_session(_session(ttl=-1))
        assert await session_store.consume_session("internal-1") is None


class TestClientStore:
    """Tests for registered client persistence."""

    async def test_save_and_load(self):
        store = SQLiteClientStore()
        await store.initialize()
        await store.save_client(RegisteredClient(client_id="abc", redirect_uris=["http://localhost/cb"]))

        loaded = await store.load_client("abc")
        assert loaded.redirect_uris == ["http://localhost/cb"]
        assert await store.load_client("missing") is None


class TestStorageJanitor:
    """Tests for expired-record purging."""

    async def test_run_once_reports_per_store(self, code_store, session_store, cipher, credential_factory):
        vault = SQLiteCredentialVault(cipher, ttl_seconds=-1)
        await vault.initialize()
        await vault.store("bridge-old", credential_factory())
        await code_store.save_auth_code(_code("old", ttl=-1))
        await session_store.save_session(_session("old", ttl=-1))
        await session_store.save_session(_session("fresh"))

        janitor = StorageJanitor(
            {"auth_codes": code_store, "oauth_sessions": session_store, "rate_limits": SQLiteRateLimiter()},
            vault=vault,
        )
        removed = await janitor.run_once()

        assert removed == {"auth_codes": 1, "oauth_sessions": 1, "rate_limits": 0, "bridge_tokens": 1}

    async def test_run_once_can_skip_vault(self, code_store):
        janitor = StorageJanitor({"auth_codes": code_store}, vault=code_store)
        assert "bridge_tokens" not in await janitor.run_once(include_vault=False)

    async def test_failing_store_does_not_stop_the_pass(self, code_store):
        import sqlite3

        class BrokenStore:
            store_name = "BrokenStore"

            async def purge_expired(self) -> int:
                raise sqlite3.OperationalError("disk I/O error")

        await code_store.save_auth_code(_code("old", ttl=-1))
        janitor = StorageJanitor({"broken": BrokenStore(), "auth_codes": code_store})
        assert await janitor.run_once() == {"broken": 0, "auth_codes": 1}

    async def test_start_and_stop(self, code_store):
        janitor = StorageJanitor({"auth_codes": code_store}, interval_seconds=3600)
        janitor.start()
        assert janitor._task is not None
        await janitor.stop()
        assert janitor._task is None
