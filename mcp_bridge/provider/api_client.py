# mcp_bridge/provider/api_client.py
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from ..settings import Settings, settings as default_settings
from ..utils.security import redact
from ..vault import AbstractCredentialVault, ProviderCredential
from .errors import (
    INVALID_TOKEN_STATUS,
    CredentialNotFoundError,
    ProviderRejectedError,
    ProviderUnavailableError,
    ReauthenticationRequiredError,
)
from .oauth_client import ProviderOAuthClient

logger = logging.getLogger(__name__)


class _TokenLock:
    """Refresh lock for one bridge token, with a count of callers holding or awaiting it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class ProviderApiClient:
    """
    Calls the provider REST API on behalf of a bridge token.

    Before each call the cached access token is checked against the
    refresh margin. A call refreshes at most once: either up front
    because the token is close to expiry, or after the provider reports
    the token invalid.
    """

    def __init__(
        self,
        vault: AbstractCredentialVault,
        oauth_client: ProviderOAuthClient,
        http_client: httpx.AsyncClient,
        config: Optional[Settings] = None,
    ):
        self.vault = vault
        self.oauth_client = oauth_client
        self.http_client = http_client
        self.config = config or default_settings
        self._refresh_locks: Dict[str, _TokenLock] = {}

    @asynccontextmanager
    async def _refresh_guard(self, bridge_token: str) -> AsyncIterator[None]:
        """Serialize refreshes per token. The entry is dropped once no caller holds or awaits it."""
        entry = self._refresh_locks.get(bridge_token)
        if entry is None:
            entry = self._refresh_locks[bridge_token] = _TokenLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._refresh_locks.get(bridge_token) is entry:
                del self._refresh_locks[bridge_token]

    async def refresh_credential(self, bridge_token: str, stale: ProviderCredential) -> ProviderCredential:
        """
        Run the provider refresh grant and write the result back to the vault.

        Concurrent callers for one token share a lock; whoever arrives second
        sees the already rotated credential and skips the network call.

        Raises:
            ProviderUnavailableError: transport failure; the vault is untouched.
            ReauthenticationRequiredError: the provider refused the refresh
                token; the vault record is deleted.
        """
        async with self._refresh_guard(bridge_token):
            current = await self.vault.get(bridge_token)
            if current is None:
                raise CredentialNotFoundError()
            if current.access_token != stale.access_token:
                return current

            try:
                grant = await self.oauth_client.refresh(current.refresh_token)
            except ProviderRejectedError as e:
                logger.warning(
                    f"Provider refused refresh for bridge token {redact(bridge_token)} (status {e.status}). "
                    "Dropping credential."
                )
                await self.vault.delete(bridge_token)
                raise ReauthenticationRequiredError() from e

            expires_at = grant.expires_at()
            updated = await self.vault.update(
                bridge_token,
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                provider_expires_at=expires_at,
            )
            if not updated:
                raise CredentialNotFoundError()

            logger.info(f"Refreshed provider token for bridge token {redact(bridge_token)}.")
            return current.model_copy(update={
                "access_token": grant.access_token,
                "refresh_token": grant.refresh_token,
                "provider_expires_at": expires_at,
            })

    async def request(
        self,
        bridge_token: str,
        path: str,
        action: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """POST ``action`` to ``path`` and return the ``body`` of a successful envelope."""
        credential = await self.vault.get(bridge_token)
        if credential is None:
            raise CredentialNotFoundError()

        refreshed = False
        if credential.needs_refresh(self.config.provider_refresh_margin_seconds):
            credential = await self.refresh_credential(bridge_token, stale=credential)
            refreshed = True

        try:
            return await self._call(credential.access_token, path, action, params)
        except ProviderRejectedError as e:
            if e.status != INVALID_TOKEN_STATUS or refreshed:
                raise
            logger.info(f"Provider rejected access token for {redact(bridge_token)}. Refreshing once and retrying.")
            credential = await self.refresh_credential(bridge_token, stale=credential)
            return await self._call(credential.access_token, path, action, params)

    async def _call(self, access_token: str, path: str, action: str, params: Optional[Dict[str, Any]]) -> Any:
        form = {"action": action}
        for key, value in (params or {}).items():
            if value is not None:
                form[key] = str(value)

        url = f"{self.config.provider_api_base_url.rstrip('/')}{path}"
        try:
            response = await self.http_client.post(
                url,
                data=form,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Provider API {path} action={action} returned HTTP {e.response.status_code}.")
            raise ProviderUnavailableError("Provider API returned an error.") from e
        except httpx.HTTPError as e:
            logger.error(f"Provider API {path} action={action} unreachable: {e}")
            raise ProviderUnavailableError("Provider API unreachable.") from e
        except ValueError as e:
            raise ProviderUnavailableError("Provider API returned an invalid response.") from e

        if not isinstance(payload, dict):
            logger.error(f"Provider API {path} action={action} returned a non-object payload.")
            raise ProviderUnavailableError("Provider API returned an invalid response.")

        status = payload.get("status")
        if status != 0:
            logger.warning(f"Provider API {path} action={action} returned status {status}.")
            raise ProviderRejectedError(status if isinstance(status, int) else -1)
        return payload.get("body")
