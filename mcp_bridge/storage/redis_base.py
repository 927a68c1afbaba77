# mcp_bridge/storage/redis_base.py
import logging
from typing import Optional

import redis.asyncio as aioredis

from ..settings import settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "mcp_bridge"


class RedisStore:
    """Connection handling shared by the Redis-backed stores."""

    _redis_client: Optional[aioredis.Redis] = None
    store_name: str = "RedisStore"

    async def initialize(self) -> None:
        """Establish Redis connection with configured parameters."""
        if self._redis_client:
            return

        connection_params = {
            "host": settings.redis_host,
            "port": settings.redis_port,
            "db": settings.redis_db,
            "ssl": settings.redis_ssl,
            "decode_responses": False,
        }

        if settings.redis_password:
            connection_params["password"] = settings.redis_password

        try:
            self._redis_client = aioredis.Redis(**connection_params)
            await self._redis_client.ping()
            logger.info(f"{self.store_name}: Successfully connected to Redis.")
        except Exception as e:
            logger.error(f"{self.store_name}: Failed to connect: {e}", exc_info=True)
            self._redis_client = None
            raise

    async def teardown(self) -> None:
        """Clean up Redis connection."""
        if self._redis_client:
            await self._redis_client.aclose()
            self._redis_client = None
            logger.info(f"{self.store_name}: Connection closed.")

    async def _get_client(self) -> aioredis.Redis:
        """Get initialized Redis client or raise error if not ready."""
        if not self._redis_client:
            raise RuntimeError(f"{self.store_name} not initialized.")
        return self._redis_client
