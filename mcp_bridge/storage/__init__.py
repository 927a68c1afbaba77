# mcp_bridge/storage/__init__.py

"""Storage module initialization.

Shared SQLite connection management plus the base classes the
SQLite- and Redis-backed stores build on.
"""

from .sqlite_base import (
    get_sqlite_db_connection,
    init_sqlite_db,
    close_sqlite_db_connection,
    SQLiteStore,
)
from .redis_base import RedisStore
from .janitor import StorageJanitor

__all__ = [
    "get_sqlite_db_connection",
    "init_sqlite_db",
    "close_sqlite_db_connection",
    "SQLiteStore",
    "RedisStore",
    "StorageJanitor",
]
