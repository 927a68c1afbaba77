# mcp_bridge/vault/__init__.py
"""Encrypted credential vault: bridge token -> provider credential."""

import logging
from typing import Optional

from ..settings import settings
from ..utils.security import TokenCipher
from .models import ProviderCredential, StoredCredential
from .storage_interfaces import AbstractCredentialVault
from .sqlite_vault import SQLiteCredentialVault
from .redis_vault import RedisCredentialVault

logger = logging.getLogger(__name__)


async def get_credential_vault(cipher: TokenCipher, ttl_seconds: Optional[int] = None) -> AbstractCredentialVault:
    """Build and initialize the vault for the configured storage backend."""
    if settings.storage_backend == "redis":
        vault: AbstractCredentialVault = RedisCredentialVault(cipher, ttl_seconds)
    elif settings.storage_backend == "sqlite":
        vault = SQLiteCredentialVault(cipher, ttl_seconds)
    else:
        raise ValueError(f"Unsupported storage_backend: {settings.storage_backend}")
    await vault.initialize()
    logger.info(f"Credential vault ready: {type(vault).__name__}")
    return vault


__all__ = [
    "ProviderCredential",
    "StoredCredential",
    "AbstractCredentialVault",
    "SQLiteCredentialVault",
    "RedisCredentialVault",
    "get_credential_vault",
]
