# mcp_bridge/oauth/sqlite_auth_code_store.py
import sqlite3
import logging
from typing import Optional
from datetime import datetime, timezone

from .storage_interfaces import AbstractAuthCodeStore, AbstractAuthSessionStore
from .models import AuthorizationCode, AuthorizationSession
from ..storage.sqlite_base import SQLiteStore

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteAuthCodeStore(SQLiteStore, AbstractAuthCodeStore):
    """SQLite implementation of the single-use authorization code store."""

    store_name = "SQLiteAuthCodeStore"

    def _row_to_auth_code(self, row: Optional[sqlite3.Row]) -> Optional[AuthorizationCode]:
        if not row:
            return None
        try:
            return AuthorizationCode.model_validate_json(row["auth_code_data"])
        except ValueError as e:
            logger.error(f"Error deserializing AuthorizationCode: {e}", exc_info=True)
            return None

    async def save_auth_code(self, auth_code: AuthorizationCode) -> None:
        query = '''
            INSERT INTO auth_codes (code, auth_code_data, expires_at)
            VALUES (?, ?, ?)
        '''
        params = (auth_code.code, auth_code.model_dump_json(), auth_code.expires_at.isoformat())
        await self._execute_query(query, params)

    async def consume_auth_code(self, code: str) -> Optional[AuthorizationCode]:
        row = await self._take_row("auth_codes", "code", code, _now_iso())
        return self._row_to_auth_code(row)

    async def purge_expired(self) -> int:
        return await self._purge(["auth_codes"], "expires_at", _now_iso())


class SQLiteAuthSessionStore(SQLiteStore, AbstractAuthSessionStore):
    """SQLite implementation of the pending authorization session store."""

    store_name = "SQLiteAuthSessionStore"

    async def save_session(self, session: AuthorizationSession) -> None:
        query = '''
            INSERT INTO oauth_sessions (internal_state, session_data, expires_at)
            VALUES (?, ?, ?)
        '''
        params = (session.internal_state, session.model_dump_json(), session.expires_at.isoformat())
        await self._execute_query(query, params)

    async def consume_session(self, internal_state: str) -> Optional[AuthorizationSession]:
        row = await self._take_row("oauth_sessions", "internal_state", internal_state, _now_iso())
        if not row:
            return None
        try:
            return AuthorizationSession.model_validate_json(row["session_data"])
        except ValueError as e:
            logger.error(f"Error deserializing AuthorizationSession: {e}", exc_info=True)
            return None

    async def purge_expired(self) -> int:
        return await self._purge(["oauth_sessions"], "expires_at", _now_iso())


# Global singleton instances
_sqlite_auth_code_store_instance: Optional[SQLiteAuthCodeStore] = None
_sqlite_auth_session_store_instance: Optional[SQLiteAuthSessionStore] = None


async def get_sqlite_auth_code_store() -> SQLiteAuthCodeStore:
    global _sqlite_auth_code_store_instance
    if _sqlite_auth_code_store_instance is None:
        _sqlite_auth_code_store_instance = SQLiteAuthCodeStore()
        await _sqlite_auth_code_store_instance.initialize()
    return _sqlite_auth_code_store_instance


async def get_sqlite_auth_session_store() -> SQLiteAuthSessionStore:
    global _sqlite_auth_session_store_instance
    if _sqlite_auth_session_store_instance is None:
        _sqlite_auth_session_store_instance = SQLiteAuthSessionStore()
        await _sqlite_auth_session_store_instance.initialize()
    return _sqlite_auth_session_store_instance
