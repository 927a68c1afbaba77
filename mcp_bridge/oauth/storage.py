# mcp_bridge/oauth/storage.py
import logging
from typing import Optional

from ..settings import settings
from ..storage.redis_base import KEY_PREFIX, RedisStore
from .storage_interfaces import AbstractAuthCodeStore, AbstractAuthSessionStore, AbstractClientStore
from .models import AuthorizationCode, AuthorizationSession, RegisteredClient

from .sqlite_auth_code_store import get_sqlite_auth_code_store, get_sqlite_auth_session_store
from .sqlite_client_store import get_sqlite_client_store

logger = logging.getLogger(__name__)


class RedisAuthCodeStore(RedisStore, AbstractAuthCodeStore):
    """
    Redis-based storage for authorization codes with automatic expiration.

    Consumption uses GETDEL so lookup and deletion are one server-side step.
    """
    store_name = "RedisAuthCodeStore"
    AUTH_CODE_TTL_SECONDS: int = 600

    def __init__(self, auth_code_ttl_seconds: Optional[int] = None):
        if auth_code_ttl_seconds is not None:
            self.AUTH_CODE_TTL_SECONDS = auth_code_ttl_seconds
        logger.info(f"RedisAuthCodeStore created. TTL: {self.AUTH_CODE_TTL_SECONDS}s.")

    def _get_key(self, code: str) -> str:
        return f"{KEY_PREFIX}:oauth:auth_code:{code}"

    async def save_auth_code(self, auth_code: AuthorizationCode) -> None:
        client = await self._get_client()
        await client.set(
            self._get_key(auth_code.code),
            auth_code.model_dump_json().encode("utf-8"),
            ex=self.AUTH_CODE_TTL_SECONDS
        )

    async def consume_auth_code(self, code: str) -> Optional[AuthorizationCode]:
        client = await self._get_client()
        data_bytes = await client.getdel(self._get_key(code))
        if not data_bytes:
            return None
        try:
            return AuthorizationCode.model_validate_json(data_bytes.decode("utf-8"))
        except ValueError as e:
            logger.error(f"Error deserializing auth code: {e}")
            return None

    async def purge_expired(self) -> int:
        return 0


class RedisAuthSessionStore(RedisStore, AbstractAuthSessionStore):
    """Redis-based storage for pending authorization sessions."""
    store_name = "RedisAuthSessionStore"
    SESSION_TTL_SECONDS: int = 600

    def __init__(self, session_ttl_seconds: Optional[int] = None):
        if session_ttl_seconds is not None:
            self.SESSION_TTL_SECONDS = session_ttl_seconds
        logger.info(f"RedisAuthSessionStore created. TTL: {self.SESSION_TTL_SECONDS}s.")

    def _get_key(self, internal_state: str) -> str:
        return f"{KEY_PREFIX}:oauth:session:{internal_state}"

    async def save_session(self, session: AuthorizationSession) -> None:
        client = await self._get_client()
        await client.set(
            self._get_key(session.internal_state),
            session.model_dump_json().encode("utf-8"),
            ex=self.SESSION_TTL_SECONDS
        )

    async def consume_session(self, internal_state: str) -> Optional[AuthorizationSession]:
        client = await self._get_client()
        data_bytes = await client.getdel(self._get_key(internal_state))
        if not data_bytes:
            return None
        try:
            return AuthorizationSession.model_validate_json(data_bytes.decode("utf-8"))
        except ValueError as e:
            logger.error(f"Error deserializing authorization session: {e}")
            return None

    async def purge_expired(self) -> int:
        return 0


class RedisClientStore(RedisStore, AbstractClientStore):
    """Redis-based storage for registered clients. Keys carry no TTL."""
    store_name = "RedisClientStore"

    def _get_key(self, client_id: str) -> str:
        return f"{KEY_PREFIX}:oauth:client:{client_id}"

    async def save_client(self, client: RegisteredClient) -> None:
        redis_client = await self._get_client()
        await redis_client.set(self._get_key(client.client_id), client.model_dump_json().encode("utf-8"))

    async def load_client(self, client_id: str) -> Optional[RegisteredClient]:
        redis_client = await self._get_client()
        data_bytes = await redis_client.get(self._get_key(client_id))
        if not data_bytes:
            return None
        try:
            return RegisteredClient.model_validate_json(data_bytes.decode("utf-8"))
        except ValueError as e:
            logger.error(f"Error deserializing client '{client_id}': {e}")
            return None


# Redis singletons, created on first use
_redis_auth_code_store: Optional[RedisAuthCodeStore] = None
_redis_auth_session_store: Optional[RedisAuthSessionStore] = None
_redis_client_store: Optional[RedisClientStore] = None


async def get_auth_code_store() -> AbstractAuthCodeStore:
    """Factory function to get the configured auth code store."""
    global _redis_auth_code_store
    if settings.storage_backend == "sqlite":
        return await get_sqlite_auth_code_store()
    elif settings.storage_backend == "redis":
        if _redis_auth_code_store is None:
            _redis_auth_code_store = RedisAuthCodeStore(settings.auth_code_ttl_seconds)
        await _redis_auth_code_store.initialize()
        return _redis_auth_code_store
    raise ValueError(f"Unsupported storage_backend: {settings.storage_backend}")


async def get_auth_session_store() -> AbstractAuthSessionStore:
    """Factory function to get the configured authorization session store."""
    global _redis_auth_session_store
    if settings.storage_backend == "sqlite":
        return await get_sqlite_auth_session_store()
    elif settings.storage_backend == "redis":
        if _redis_auth_session_store is None:
            _redis_auth_session_store = RedisAuthSessionStore(settings.auth_session_ttl_seconds)
        await _redis_auth_session_store.initialize()
        return _redis_auth_session_store
    raise ValueError(f"Unsupported storage_backend: {settings.storage_backend}")


async def get_client_store() -> AbstractClientStore:
    """Factory function to get the configured registered client store."""
    global _redis_client_store
    if settings.storage_backend == "sqlite":
        return await get_sqlite_client_store()
    elif settings.storage_backend == "redis":
        if _redis_client_store is None:
            _redis_client_store = RedisClientStore()
        await _redis_client_store.initialize()
        return _redis_client_store
    raise ValueError(f"Unsupported storage_backend: {settings.storage_backend}")
