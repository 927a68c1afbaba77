"""
Pytest configuration and fixtures for mcp_bridge tests.

Sets up required environment variables before any mcp_bridge imports.
"""

import os

# Must be set BEFORE mcp_bridge.settings is imported
os.environ.setdefault("ENCRYPTION_SECRET", "test-secret-that-is-definitely-longer-than-32-chars")
os.environ.setdefault("ENCRYPTION_KDF_ITERATIONS", "1000")
os.environ.setdefault("STORAGE_BACKEND", "sqlite")
os.environ.setdefault("PROVIDER_CLIENT_ID", "provider-client-id")
os.environ.setdefault("PROVIDER_CLIENT_SECRET", "provider-client-secret")
os.environ.setdefault("PROVIDER_REDIRECT_URI", "http://testserver/callback")
os.environ.setdefault("PUBLIC_BASE_URL", "http://testserver")

from datetime import datetime, timedelta, timezone

import pytest

from mcp_bridge.settings import settings
from mcp_bridge.storage import sqlite_base
from mcp_bridge.utils.security import TokenCipher
from mcp_bridge.vault import ProviderCredential, SQLiteCredentialVault

TEST_SECRET = "another-test-secret-with-more-than-32-characters"


def _drop_connection() -> None:
    if sqlite_base._db_connection is not None:
        sqlite_base._db_connection.close()
        sqlite_base._db_connection = None


@pytest.fixture(autouse=True)
def isolated_database(tmp_path, monkeypatch):
    """Every test gets its own SQLite file."""
    _drop_connection()
    monkeypatch.setattr(settings, "sqlite_db_path", str(tmp_path / "bridge.sqlite3"))
    yield
    _drop_connection()


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher(TEST_SECRET, iterations=1000)


@pytest.fixture
async def vault(cipher) -> SQLiteCredentialVault:
    store = SQLiteCredentialVault(cipher)
    await store.initialize()
    yield store
    await store.teardown()


def make_credential(
    access_token: str = "provider-access",
    refresh_token: str = "provider-refresh",
    expires_in: int = 3600,
) -> ProviderCredential:
    return ProviderCredential(
        access_token=access_token,
        refresh_token=refresh_token,
        provider_user_id="12345",
        provider_expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    )


@pytest.fixture
def credential_factory():
    return make_credential
