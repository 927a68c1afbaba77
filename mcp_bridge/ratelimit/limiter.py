# mcp_bridge/ratelimit/limiter.py
import logging
import sqlite3
import time
from abc import ABC, abstractmethod

from pydantic import BaseModel
from redis.exceptions import RedisError

from ..settings import settings
from ..storage.redis_base import KEY_PREFIX, RedisStore
from ..storage.sqlite_base import SQLiteStore, get_sqlite_db_connection

logger = logging.getLogger(__name__)


class RateLimitResult(BaseModel):
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # unix seconds

    def retry_after_seconds(self, now: float | None = None) -> int:
        now = time.time() if now is None else now
        return max(1, int(self.reset_at - now + 0.999))


class AbstractRateLimiter(ABC):
    """Fixed-window request counter. Fails open on backend errors."""

    async def check_and_increment(self, identifier: str, max_requests: int, window_seconds: int) -> RateLimitResult:
        now = time.time()
        try:
            return await self._check_and_increment(identifier, max_requests, window_seconds, now)
        except (sqlite3.Error, RedisError, RuntimeError) as e:
            logger.error(f"Rate limiter backend failure for '{identifier}', allowing request: {e}", exc_info=True)
            return RateLimitResult(
                allowed=True,
                limit=max_requests,
                remaining=max(max_requests - 1, 0),
                reset_at=now + window_seconds,
            )

    @abstractmethod
    async def _check_and_increment(
        self, identifier: str, max_requests: int, window_seconds: int, now: float
    ) -> RateLimitResult:
        """Atomically reset-if-expired, compare and increment."""
        pass

    @abstractmethod
    async def purge_expired(self) -> int:
        pass

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    async def teardown(self) -> None:
        pass


class SQLiteRateLimiter(SQLiteStore, AbstractRateLimiter):
    """Counters in the ``rate_limits`` table, mutated under BEGIN IMMEDIATE."""

    store_name = "SQLiteRateLimiter"

    async def _check_and_increment(
        self, identifier: str, max_requests: int, window_seconds: int, now: float
    ) -> RateLimitResult:
        conn = await get_sqlite_db_connection()
        cursor = conn.cursor()
        try:
            cursor.execute("BEGIN IMMEDIATE")
            cursor.execute("SELECT count, reset_at FROM rate_limits WHERE identifier = ?", (identifier,))
            row = cursor.fetchone()

            if row is None or row["reset_at"] <= now:
                count, reset_at = 1, now + window_seconds
                cursor.execute(
                    "INSERT OR REPLACE INTO rate_limits (identifier, count, reset_at) VALUES (?, ?, ?)",
                    (identifier, count, reset_at)
                )
                allowed = True
            elif row["count"] >= max_requests:
                count, reset_at = row["count"], row["reset_at"]
                allowed = False
            else:
                count, reset_at = row["count"] + 1, row["reset_at"]
                cursor.execute("UPDATE rate_limits SET count = ? WHERE identifier = ?", (count, identifier))
                allowed = True

            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise

        return RateLimitResult(
            allowed=allowed,
            limit=max_requests,
            remaining=max(max_requests - count, 0),
            reset_at=reset_at,
        )

    async def purge_expired(self) -> int:
        return await self._purge(["rate_limits"], "reset_at", time.time())


# KEYS[1] counter key, ARGV[1] window in ms. Returns {count, pttl}.
_FIXED_WINDOW_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
end
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""


class RedisRateLimiter(RedisStore, AbstractRateLimiter):
    """Counters as expiring Redis keys, incremented by a server-side Lua script."""

    store_name = "RedisRateLimiter"

    def __init__(self):
        self._script = None

    async def initialize(self) -> None:
        await super().initialize()
        client = await self._get_client()
        self._script = client.register_script(_FIXED_WINDOW_SCRIPT)

    def _get_key(self, identifier: str) -> str:
        return f"{KEY_PREFIX}:ratelimit:{identifier}"

    async def _check_and_increment(
        self, identifier: str, max_requests: int, window_seconds: int, now: float
    ) -> RateLimitResult:
        if self._script is None:
            raise RuntimeError("RedisRateLimiter not initialized.")
        count, ttl_ms = await self._script(keys=[self._get_key(identifier)], args=[window_seconds * 1000])
        count, ttl_ms = int(count), int(ttl_ms)
        # Requests past the limit still count, which keeps the script to a single round trip
        return RateLimitResult(
            allowed=count <= max_requests,
            limit=max_requests,
            remaining=max(max_requests - count, 0),
            reset_at=now + ttl_ms / 1000.0,
        )

    async def purge_expired(self) -> int:
        return 0


async def get_rate_limiter() -> AbstractRateLimiter:
    if settings.storage_backend == "redis":
        limiter: AbstractRateLimiter = RedisRateLimiter()
    elif settings.storage_backend == "sqlite":
        limiter = SQLiteRateLimiter()
    else:
        raise ValueError(f"Unsupported storage_backend: {settings.storage_backend}")
    await limiter.initialize()
    return limiter
