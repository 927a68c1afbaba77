# mcp_bridge/oauth/models.py
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClientRegistrationRequest(BaseModel):
    """Dynamic client registration body (RFC 7591, subset)."""
    redirect_uris: List[str] = Field(default_factory=list)
    client_name: Optional[str] = None


class ClientRegistrationResponse(BaseModel):
    client_id: str
    redirect_uris: List[str]
    client_name: Optional[str] = None
    client_id_issued_at: int
    token_endpoint_auth_method: str = "none"


class RegisteredClient(BaseModel):
    """A dynamically registered client. Redirect URIs are compared as exact strings."""
    client_id: str
    client_secret: Optional[str] = None
    client_name: Optional[str] = None
    redirect_uris: List[str]
    created_at: datetime = Field(default_factory=_utcnow)


class AuthRequest(BaseModel):
    """Validated /authorize parameters."""
    response_type: str
    client_id: str
    redirect_uri: str
    state: str
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None


class AuthorizationSession(BaseModel):
    """Pending authorization between /authorize and /callback, keyed by the internal state."""
    internal_state: str
    client_state: str
    registered_client_id: str
    redirect_uri: str
    pkce_code_challenge: Optional[str] = None
    pkce_method: Optional[str] = None
    expires_at: datetime
    created_at: datetime = Field(default_factory=_utcnow)


class AuthorizationCode(BaseModel):
    """Single-use code handed to the client at /callback and redeemed at /token."""
    code: str
    encrypted_provider_code: str
    registered_client_id: str
    redirect_uri: str
    pkce_code_challenge: Optional[str] = None
    pkce_method: Optional[str] = None
    expires_at: datetime
    issued_at: datetime = Field(default_factory=_utcnow)


class TokenRequest(BaseModel):
    grant_type: str
    code: Optional[str] = None
    redirect_uri: Optional[str] = None
    client_id: Optional[str] = None
    code_verifier: Optional[str] = None


class TokenResponse(BaseModel):
    """OAuth token response structure as per RFC 6749."""
    access_token: str
    token_type: str = "Bearer"
    expires_in: int


class WellKnownOAuthMetadata(BaseModel):
    """OAuth 2.0 server metadata as defined in RFC 8414 for discovery endpoint."""
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    registration_endpoint: str
    scopes_supported: Optional[List[str]] = None
    response_types_supported: List[str] = ["code"]
    grant_types_supported: List[str] = ["authorization_code"]
    token_endpoint_auth_methods_supported: List[str] = ["none"]
    code_challenge_methods_supported: List[str] = ["S256"]
    mcp_endpoint: Optional[str] = None


class ProtectedResourceMetadata(BaseModel):
    """OAuth 2.0 protected resource metadata (RFC 9728, subset)."""
    resource: str
    authorization_servers: List[str]
    bearer_methods_supported: List[str] = ["header"]
