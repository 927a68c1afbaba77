# mcp_bridge/vault/sqlite_vault.py
import sqlite3
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from ..storage.sqlite_base import SQLiteStore, get_sqlite_db_connection
from .models import StoredCredential
from .storage_interfaces import AbstractCredentialVault, CredentialMutator

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteCredentialVault(SQLiteStore, AbstractCredentialVault):
    """Vault backed by the ``bridge_tokens`` table. Expiry is an ``expires_at`` column."""

    store_name = "SQLiteCredentialVault"

    def _row_to_record(self, row: Optional[sqlite3.Row]) -> Optional[StoredCredential]:
        if not row:
            return None
        return StoredCredential(
            encrypted_access_token=row["encrypted_access_token"],
            encrypted_refresh_token=row["encrypted_refresh_token"],
            provider_user_id=row["provider_user_id"],
            provider_expires_at=datetime.fromisoformat(row["provider_expires_at"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    async def _insert_record(self, bridge_token: str, record: StoredCredential) -> None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=self.ttl_seconds)
        query = '''
            INSERT OR REPLACE INTO bridge_tokens (
                bridge_token, encrypted_access_token, encrypted_refresh_token,
                provider_user_id, provider_expires_at, created_at, updated_at, expires_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        '''
        params = (
            bridge_token,
            record.encrypted_access_token,
            record.encrypted_refresh_token,
            record.provider_user_id,
            record.provider_expires_at.isoformat(),
            record.created_at.isoformat(),
            record.updated_at.isoformat(),
            expires_at.isoformat(),
        )
        await self._execute_query(query, params)

    async def _select_record(self, bridge_token: str) -> Optional[StoredCredential]:
        row = await self._fetchone(
            "SELECT * FROM bridge_tokens WHERE bridge_token = ? AND expires_at > ?",
            (bridge_token, _now_iso())
        )
        return self._row_to_record(row)

    async def _modify_record(self, bridge_token: str, mutate: CredentialMutator) -> bool:
        conn = await get_sqlite_db_connection()
        cursor = conn.cursor()
        try:
            cursor.execute("BEGIN IMMEDIATE")
            cursor.execute(
                "SELECT * FROM bridge_tokens WHERE bridge_token = ? AND expires_at > ?",
                (bridge_token, _now_iso())
            )
            current = self._row_to_record(cursor.fetchone())
            if current is None:
                conn.rollback()
                return False

            updated = mutate(current)
            # expires_at stays untouched
            cursor.execute(
                '''
                UPDATE bridge_tokens
                SET encrypted_access_token = ?, encrypted_refresh_token = ?,
                    provider_expires_at = ?, updated_at = ?
                WHERE bridge_token = ?
                ''',
                (
                    updated.encrypted_access_token,
                    updated.encrypted_refresh_token,
                    updated.provider_expires_at.isoformat(),
                    updated.updated_at.isoformat(),
                    bridge_token,
                )
            )
            conn.commit()
            return True
        except sqlite3.Error as e:
            logger.error(f"SQLite error while updating credential: {e}", exc_info=True)
            conn.rollback()
            raise

    async def _delete_record(self, bridge_token: str) -> bool:
        cursor = await self._execute_query(
            "DELETE FROM bridge_tokens WHERE bridge_token = ?", (bridge_token,)
        )
        return cursor.rowcount > 0

    async def purge_expired(self) -> int:
        removed = await self._purge(["bridge_tokens"], "expires_at", _now_iso())
        if removed:
            logger.info(f"Purged {removed} expired bridge token(s).")
        return removed
