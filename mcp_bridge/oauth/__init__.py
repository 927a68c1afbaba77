# mcp_bridge/oauth/__init__.py
"""OAuth 2.1 authorization server for MCP clients, brokered to the upstream provider."""

from .errors import (
    OAuthError,
    InvalidRequestError,
    InvalidClientError,
    InvalidClientMetadataError,
    InvalidGrantError,
    InvalidTokenError,
    UnsupportedGrantTypeError,
    UnsupportedResponseTypeError,
    ServerError,
    TemporarilyUnavailableError,
)
from .models import (
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    RegisteredClient,
    AuthRequest,
    AuthorizationSession,
    AuthorizationCode,
    TokenRequest,
    TokenResponse,
    WellKnownOAuthMetadata,
    ProtectedResourceMetadata,
)
from .provider import BridgeOAuthBroker
from .storage import get_auth_code_store, get_auth_session_store, get_client_store

__all__ = [
    "OAuthError",
    "InvalidRequestError",
    "InvalidClientError",
    "InvalidClientMetadataError",
    "InvalidGrantError",
    "InvalidTokenError",
    "UnsupportedGrantTypeError",
    "UnsupportedResponseTypeError",
    "ServerError",
    "TemporarilyUnavailableError",
    "ClientRegistrationRequest",
    "ClientRegistrationResponse",
    "RegisteredClient",
    "AuthRequest",
    "AuthorizationSession",
    "AuthorizationCode",
    "TokenRequest",
    "TokenResponse",
    "WellKnownOAuthMetadata",
    "ProtectedResourceMetadata",
    "BridgeOAuthBroker",
    "get_auth_code_store",
    "get_auth_session_store",
    "get_client_store",
]
