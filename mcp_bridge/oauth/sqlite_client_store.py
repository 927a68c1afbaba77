# mcp_bridge/oauth/sqlite_client_store.py
import logging
from typing import Optional

from .storage_interfaces import AbstractClientStore
from .models import RegisteredClient
from ..storage.sqlite_base import SQLiteStore

logger = logging.getLogger(__name__)


class SQLiteClientStore(SQLiteStore, AbstractClientStore):
    """SQLite implementation of the registered client store."""

    store_name = "SQLiteClientStore"

    async def save_client(self, client: RegisteredClient) -> None:
        query = '''
            INSERT OR REPLACE INTO registered_clients (client_id, client_data, created_at)
            VALUES (?, ?, ?)
        '''
        params = (client.client_id, client.model_dump_json(), client.created_at.isoformat())
        await self._execute_query(query, params)
        logger.info(f"Registered client '{client.client_id}' saved.")

    async def load_client(self, client_id: str) -> Optional[RegisteredClient]:
        row = await self._fetchone(
            "SELECT client_data FROM registered_clients WHERE client_id = ?", (client_id,)
        )
        if not row:
            return None
        try:
            return RegisteredClient.model_validate_json(row["client_data"])
        except ValueError as e:
            logger.error(f"Error deserializing RegisteredClient '{client_id}': {e}", exc_info=True)
            return None


_sqlite_client_store_instance: Optional[SQLiteClientStore] = None


async def get_sqlite_client_store() -> SQLiteClientStore:
    global _sqlite_client_store_instance
    if _sqlite_client_store_instance is None:
        _sqlite_client_store_instance = SQLiteClientStore()
        await _sqlite_client_store_instance.initialize()
    return _sqlite_client_store_instance
