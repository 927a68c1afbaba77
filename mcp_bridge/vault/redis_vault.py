# mcp_bridge/vault/redis_vault.py
import logging
from typing import Optional

from redis.exceptions import WatchError

from ..storage.redis_base import KEY_PREFIX, RedisStore
from .models import StoredCredential
from .storage_interfaces import AbstractCredentialVault, CredentialMutator

logger = logging.getLogger(__name__)


class RedisCredentialVault(RedisStore, AbstractCredentialVault):
    """Vault backed by expiring Redis keys. Redis enforces the TTL natively."""

    store_name = "RedisCredentialVault"

    def _get_key(self, bridge_token: str) -> str:
        return f"{KEY_PREFIX}:vault:{bridge_token}"

    async def _insert_record(self, bridge_token: str, record: StoredCredential) -> None:
        client = await self._get_client()
        await client.set(
            self._get_key(bridge_token),
            record.model_dump_json().encode("utf-8"),
            ex=self.ttl_seconds
        )

    async def _select_record(self, bridge_token: str) -> Optional[StoredCredential]:
        client = await self._get_client()
        data_bytes = await client.get(self._get_key(bridge_token))
        if not data_bytes:
            return None
        return StoredCredential.model_validate_json(data_bytes.decode("utf-8"))

    async def _modify_record(self, bridge_token: str, mutate: CredentialMutator) -> bool:
        client = await self._get_client()
        key = self._get_key(bridge_token)
        async with client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    data_bytes = await pipe.get(key)
                    if not data_bytes:
                        await pipe.unwatch()
                        return False
                    current = StoredCredential.model_validate_json(data_bytes.decode("utf-8"))
                    updated = mutate(current)
                    pipe.multi()
                    pipe.set(key, updated.model_dump_json().encode("utf-8"), keepttl=True)
                    await pipe.execute()
                    return True
                except WatchError:
                    logger.debug("Concurrent credential update detected. Retrying transaction.")
                    continue

    async def _delete_record(self, bridge_token: str) -> bool:
        client = await self._get_client()
        return bool(await client.delete(self._get_key(bridge_token)))

    async def purge_expired(self) -> int:
        # Keys expire on their own
        return 0
