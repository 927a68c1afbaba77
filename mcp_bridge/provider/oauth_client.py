# mcp_bridge/provider/oauth_client.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, ValidationError as PydanticValidationError

from ..settings import Settings, settings as default_settings
from .errors import ProviderRejectedError, ProviderUnavailableError

logger = logging.getLogger(__name__)


class ProviderTokenGrant(BaseModel):
    """Token set returned by the provider's token endpoint."""
    access_token: str
    refresh_token: str
    expires_in: int
    provider_user_id: str

    def expires_at(self, now: Optional[datetime] = None) -> datetime:
        now = now or datetime.now(timezone.utc)
        return now + timedelta(seconds=self.expires_in)


class ProviderOAuthClient:
    """
    Server-to-server half of the OAuth dance with the upstream provider.

    The provider speaks a Withings-style dialect: form-encoded POST with
    ``action=requesttoken`` and a JSON envelope ``{status, body}`` where a
    non-zero status means failure.
    """

    def __init__(self, http_client: httpx.AsyncClient, config: Optional[Settings] = None):
        self.http_client = http_client
        self.config = config or default_settings

    def build_authorization_url(self, internal_state: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self.config.provider_client_id or "",
            "redirect_uri": self.config.provider_redirect_uri or "",
            "state": internal_state,
            "scope": ",".join(self.config.provider_scope_list),
        }
        separator = "&" if "?" in self.config.provider_authorize_url else "?"
        return f"{self.config.provider_authorize_url}{separator}{urlencode(params)}"

    async def exchange_code(self, code: str) -> ProviderTokenGrant:
        logger.info("Exchanging provider authorization code for tokens.")
        return await self._request_token({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.config.provider_redirect_uri or "",
        })

    async def refresh(self, refresh_token: str) -> ProviderTokenGrant:
        logger.info("Refreshing provider access token.")
        return await self._request_token({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

    async def _request_token(self, grant_fields: Dict[str, str]) -> ProviderTokenGrant:
        form = {
            "action": "requesttoken",
            "client_id": self.config.provider_client_id or "",
            "client_secret": self.config.provider_client_secret or "",
            **grant_fields,
        }
        try:
            response = await self.http_client.post(
                self.config.provider_token_url,
                data=form,
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Provider token endpoint returned HTTP {e.response.status_code}: {e.response.text[:500]}"
            )
            raise ProviderUnavailableError("Provider token endpoint returned an error.") from e
        except httpx.HTTPError as e:
            logger.error(f"Provider token endpoint unreachable: {e}", exc_info=True)
            raise ProviderUnavailableError("Provider token endpoint unreachable.") from e
        except ValueError as e:
            logger.error(f"Provider token endpoint returned invalid JSON: {e}")
            raise ProviderUnavailableError("Provider token endpoint returned an invalid response.") from e

        if not isinstance(payload, dict):
            logger.error("Provider token endpoint returned a non-object payload.")
            raise ProviderUnavailableError("Provider token endpoint returned an invalid response.")

        status = payload.get("status")
        if status != 0:
            logger.error(
                f"Provider token request ({grant_fields.get('grant_type')}) failed with status {status}: "
                f"{payload.get('error')}"
            )
            raise ProviderRejectedError(status if isinstance(status, int) else -1)

        body = payload.get("body")
        if not isinstance(body, dict):
            logger.error("Provider token response carries no body object.")
            raise ProviderUnavailableError("Provider token endpoint returned an incomplete response.")
        try:
            return ProviderTokenGrant(
                access_token=body.get("access_token"),
                refresh_token=body.get("refresh_token"),
                expires_in=body.get("expires_in"),
                provider_user_id=str(body.get("userid", "")),
            )
        except PydanticValidationError as e:
            logger.error(f"Provider token response missing fields: {e.errors()}")
            raise ProviderUnavailableError("Provider token endpoint returned an incomplete response.") from e
