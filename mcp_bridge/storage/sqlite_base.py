# mcp_bridge/storage/sqlite_base.py
import sqlite3
import logging
from pathlib import Path
from typing import Optional, List

from ..settings import settings

logger = logging.getLogger(__name__)

# Single connection per application lifecycle
_db_connection: Optional[sqlite3.Connection] = None


async def get_sqlite_db_connection() -> sqlite3.Connection:
    """
    Get or create the process-wide SQLite connection.

    The database directory is created on demand and the schema is
    initialized on first connection.

    Raises:
        sqlite3.Error: the database file cannot be opened
    """
    global _db_connection
    if _db_connection is None:
        try:
            db_path = Path(settings.sqlite_db_path).resolve()
            db_path.parent.mkdir(parents=True, exist_ok=True)

            logger.info(f"Opening bridge database at {db_path}")

            _db_connection = sqlite3.connect(str(db_path), check_same_thread=False)
            _db_connection.row_factory = sqlite3.Row

            logger.info(f"Bridge database ready: {db_path}")

            await init_sqlite_db(_db_connection)
        except sqlite3.Error as e:
            logger.error(
                f"Could not open bridge database {settings.sqlite_db_path}: {e}",
                exc_info=True
            )
            raise
    return _db_connection


async def init_sqlite_db(conn: Optional[sqlite3.Connection] = None):
    """Create every table the bridge needs. Safe to call repeatedly."""
    db_conn = conn or await get_sqlite_db_connection()
    cursor = db_conn.cursor()

    # Bridge token -> encrypted provider credential
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS bridge_tokens (
        bridge_token TEXT PRIMARY KEY,
        encrypted_access_token TEXT NOT NULL,
        encrypted_refresh_token TEXT NOT NULL,
        provider_user_id TEXT NOT NULL,
        provider_expires_at TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        expires_at TEXT NOT NULL
    )
    ''')
    logger.info("Ensured 'bridge_tokens' table exists.")

    # Pending authorizations between /authorize and /callback
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS oauth_sessions (
        internal_state TEXT PRIMARY KEY,
        session_data TEXT NOT NULL,
        expires_at TEXT NOT NULL
    )
    ''')
    logger.info("Ensured 'oauth_sessions' table exists.")

    # Single-use codes between /callback and /token
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS auth_codes (
        code TEXT PRIMARY KEY,
        auth_code_data TEXT NOT NULL,
        expires_at TEXT NOT NULL
    )
    ''')
    logger.info("Ensured 'auth_codes' table exists.")

    # Dynamically registered clients
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS registered_clients (
        client_id TEXT PRIMARY KEY,
        client_data TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    ''')
    logger.info("Ensured 'registered_clients' table exists.")

    # Fixed-window counters
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS rate_limits (
        identifier TEXT PRIMARY KEY,
        count INTEGER NOT NULL,
        reset_at REAL NOT NULL
    )
    ''')
    logger.info("Ensured 'rate_limits' table exists.")

    db_conn.commit()
    logger.info("Bridge database schema verified.")


async def close_sqlite_db_connection():
    """Close the process-wide connection. Called on application shutdown."""
    global _db_connection
    if _db_connection is not None:
        logger.info("Closing bridge database.")
        _db_connection.close()
        _db_connection = None
        logger.info("Bridge database closed.")


class SQLiteStore:
    """Query helpers shared by the SQLite-backed stores."""

    store_name: str = "SQLiteStore"

    async def initialize(self) -> None:
        await get_sqlite_db_connection()
        logger.info(f"{self.store_name} initialized.")

    async def teardown(self) -> None:
        logger.info(f"{self.store_name} teardown.")

    async def _execute_query(self, query: str, params: tuple = ()) -> sqlite3.Cursor:
        """
        Execute a write query in its own transaction.

        Raises:
            sqlite3.Error: the statement fails; the transaction is rolled back
        """
        conn = await get_sqlite_db_connection()
        cursor = conn.cursor()
        try:
            cursor.execute(query, params)
            conn.commit()
        except sqlite3.Error as e:
            logger.error(f"SQLite write failed: {e}", exc_info=True)
            conn.rollback()
            raise
        return cursor

    async def _fetchone(self, query: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        conn = await get_sqlite_db_connection()
        cursor = conn.cursor()
        try:
            cursor.execute(query, params)
            return cursor.fetchone()
        except sqlite3.Error as e:
            logger.error(f"SQLite read failed: {e}", exc_info=True)
            raise

    async def _take_row(self, table: str, key_column: str, key: str, now_iso: str) -> Optional[sqlite3.Row]:
        """
        Atomically read and delete one unexpired row.

        The SELECT and DELETE run inside one IMMEDIATE transaction, so two
        concurrent consumers can never both receive the same row.
        """
        conn = await get_sqlite_db_connection()
        cursor = conn.cursor()
        try:
            cursor.execute("BEGIN IMMEDIATE")
            cursor.execute(
                f"SELECT * FROM {table} WHERE {key_column} = ? AND expires_at > ?",
                (key, now_iso)
            )
            row = cursor.fetchone()
            cursor.execute(f"DELETE FROM {table} WHERE {key_column} = ?", (key,))
            conn.commit()
            return row
        except sqlite3.Error as e:
            logger.error(f"SQLite error while consuming from '{table}': {e}", exc_info=True)
            conn.rollback()
            raise

    async def _purge(self, tables: List[str], expires_column: str, now_value) -> int:
        conn = await get_sqlite_db_connection()
        cursor = conn.cursor()
        removed = 0
        try:
            for table in tables:
                cursor.execute(f"DELETE FROM {table} WHERE {expires_column} <= ?", (now_value,))
                removed += cursor.rowcount
            conn.commit()
        except sqlite3.Error as e:
            logger.error(f"SQLite error during purge: {e}", exc_info=True)
            conn.rollback()
            raise
        return removed
