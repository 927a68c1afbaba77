# mcp_bridge/vault/storage_interfaces.py
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Optional

from ..settings import settings
from ..utils.security import TokenCipher, redact
from .models import ProviderCredential, StoredCredential

logger = logging.getLogger(__name__)

CredentialMutator = Callable[[StoredCredential], StoredCredential]


class AbstractCredentialVault(ABC):
    """
    Bridge token -> provider credential mapping, encrypted at rest.

    Subclasses only move StoredCredential records in and out of a backend;
    every encryption and decryption happens here so no other component
    sees ciphertext or the key.
    """

    def __init__(self, cipher: TokenCipher, ttl_seconds: Optional[int] = None):
        self.cipher = cipher
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.bridge_token_ttl_seconds

    async def store(self, bridge_token: str, credential: ProviderCredential) -> None:
        record = StoredCredential(
            encrypted_access_token=self.cipher.encrypt(credential.access_token),
            encrypted_refresh_token=self.cipher.encrypt(credential.refresh_token),
            provider_user_id=credential.provider_user_id,
            provider_expires_at=credential.provider_expires_at,
        )
        await self._insert_record(bridge_token, record)
        logger.info(f"Stored credential for bridge token {redact(bridge_token)} (TTL {self.ttl_seconds}s).")

    async def get(self, bridge_token: str) -> Optional[ProviderCredential]:
        """Returns the decrypted credential, or None if absent, expired or undecryptable."""
        record = await self._select_record(bridge_token)
        if record is None:
            return None

        access_token = self.cipher.decrypt(record.encrypted_access_token)
        refresh_token = self.cipher.decrypt(record.encrypted_refresh_token)
        if access_token is None or refresh_token is None:
            logger.warning(
                f"Credential for bridge token {redact(bridge_token)} failed integrity check. "
                "Treating as not found."
            )
            return None

        return ProviderCredential(
            access_token=access_token,
            refresh_token=refresh_token,
            provider_user_id=record.provider_user_id,
            provider_expires_at=record.provider_expires_at,
        )

    async def update(
        self,
        bridge_token: str,
        *,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        provider_expires_at: Optional[datetime] = None,
    ) -> bool:
        """
        Replace selected fields of an existing credential in place.

        New tokens are re-encrypted with fresh salts; the record's own
        expiry is left as it was. Returns False if the record is gone.
        """
        new_access = self.cipher.encrypt(access_token) if access_token is not None else None
        new_refresh = self.cipher.encrypt(refresh_token) if refresh_token is not None else None

        def mutate(record: StoredCredential) -> StoredCredential:
            changes = {"updated_at": datetime.now(timezone.utc)}
            if new_access is not None:
                changes["encrypted_access_token"] = new_access
            if new_refresh is not None:
                changes["encrypted_refresh_token"] = new_refresh
            if provider_expires_at is not None:
                changes["provider_expires_at"] = provider_expires_at
            return record.model_copy(update=changes)

        updated = await self._modify_record(bridge_token, mutate)
        if updated:
            logger.info(f"Updated credential for bridge token {redact(bridge_token)}.")
        else:
            logger.warning(f"Update skipped: no credential for bridge token {redact(bridge_token)}.")
        return updated

    async def delete(self, bridge_token: str) -> bool:
        deleted = await self._delete_record(bridge_token)
        if deleted:
            logger.info(f"Deleted credential for bridge token {redact(bridge_token)}.")
        return deleted

    @abstractmethod
    async def _insert_record(self, bridge_token: str, record: StoredCredential) -> None:
        pass

    @abstractmethod
    async def _select_record(self, bridge_token: str) -> Optional[StoredCredential]:
        """Return the record only if it has not expired."""
        pass

    @abstractmethod
    async def _modify_record(self, bridge_token: str, mutate: CredentialMutator) -> bool:
        """Apply ``mutate`` as one atomic read-modify-write, preserving the record TTL."""
        pass

    @abstractmethod
    async def _delete_record(self, bridge_token: str) -> bool:
        pass

    @abstractmethod
    async def purge_expired(self) -> int:
        """Physically remove expired records. Returns how many were removed."""
        pass

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    async def teardown(self) -> None:
        pass
