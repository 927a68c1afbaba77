# mcp_bridge/provider/__init__.py
"""Upstream provider access: OAuth token exchange/refresh and authenticated API calls."""

from .errors import (
    ProviderError,
    ProviderUnavailableError,
    ProviderRejectedError,
    CredentialNotFoundError,
    ReauthenticationRequiredError,
    describe_provider_status,
)
from .oauth_client import ProviderOAuthClient, ProviderTokenGrant
from .api_client import ProviderApiClient

__all__ = [
    "ProviderError",
    "ProviderUnavailableError",
    "ProviderRejectedError",
    "CredentialNotFoundError",
    "ReauthenticationRequiredError",
    "describe_provider_status",
    "ProviderOAuthClient",
    "ProviderTokenGrant",
    "ProviderApiClient",
]
