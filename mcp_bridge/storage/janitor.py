# mcp_bridge/storage/janitor.py
import asyncio
import logging
import sqlite3
import time
from typing import Dict, Optional, Protocol

from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class Purgeable(Protocol):
    store_name: str

    async def purge_expired(self) -> int:
        ...


class StorageJanitor:
    """
    Periodically removes expired rows the stores only filter on read.

    Short-lived records (authorization sessions, codes, rate limit windows)
    are purged every ``interval_seconds``; bridge tokens every
    ``token_interval_seconds``.
    """

    def __init__(
        self,
        short_lived: Dict[str, Purgeable],
        vault: Optional[Purgeable] = None,
        interval_seconds: float = 300,
        token_interval_seconds: float = 3600,
    ):
        self.short_lived = short_lived
        self.vault = vault
        self.interval_seconds = interval_seconds
        self.token_interval_seconds = token_interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._last_token_purge = 0.0

    async def run_once(self, include_vault: bool = True) -> Dict[str, int]:
        """One purge pass. Returns the number of removed records per store."""
        purgers: Dict[str, Purgeable] = dict(self.short_lived)
        if include_vault and self.vault is not None:
            purgers["bridge_tokens"] = self.vault

        removed: Dict[str, int] = {}
        for name, store in purgers.items():
            try:
                removed[name] = await store.purge_expired()
            except (sqlite3.Error, RedisError) as e:
                logger.error(f"Janitor failed to purge '{name}': {e}", exc_info=True)
                removed[name] = 0

        total = sum(removed.values())
        if total:
            logger.info(f"Janitor removed {total} expired record(s): {removed}")
        return removed

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            now = time.monotonic()
            include_vault = now - self._last_token_purge >= self.token_interval_seconds
            await self.run_once(include_vault=include_vault)
            if include_vault:
                self._last_token_purge = now

    def start(self) -> None:
        if self._task is None:
            self._last_token_purge = time.monotonic()
            self._task = asyncio.create_task(self._loop(), name="storage-janitor")
            logger.info(
                f"Storage janitor started. Interval: {self.interval_seconds}s, "
                f"token interval: {self.token_interval_seconds}s."
            )

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Storage janitor stopped.")
