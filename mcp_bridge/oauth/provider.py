# mcp_bridge/oauth/provider.py
import logging
import sqlite3
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from urllib.parse import urlencode, urlsplit

from redis.exceptions import RedisError

from ..settings import Settings, settings as default_settings
from ..provider import ProviderOAuthClient, ProviderRejectedError, ProviderUnavailableError
from ..utils.security import TokenCipher, generate_opaque_token, redact
from ..vault import AbstractCredentialVault, ProviderCredential
from .errors import (
    InvalidClientError,
    InvalidClientMetadataError,
    InvalidGrantError,
    InvalidRequestError,
    ServerError,
    TemporarilyUnavailableError,
    UnsupportedGrantTypeError,
    UnsupportedResponseTypeError,
)
from .models import (
    AuthorizationCode,
    AuthorizationSession,
    AuthRequest,
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    RegisteredClient,
    TokenRequest,
    TokenResponse,
)
from .pkce import SUPPORTED_METHODS, verify_pkce_code_verifier
from .storage_interfaces import AbstractAuthCodeStore, AbstractAuthSessionStore, AbstractClientStore

logger = logging.getLogger(__name__)

STORAGE_ERRORS = (sqlite3.Error, RedisError)


def is_acceptable_redirect_uri(uri: str) -> bool:
    """Absolute http(s) URI with a host and no fragment (RFC 6749 - Section 3.1.2)."""
    try:
        parts = urlsplit(uri)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc) and not parts.fragment


def append_query_params(uri: str, params: Dict[str, Optional[str]]) -> str:
    query = urlencode({k: v for k, v in params.items() if v is not None})
    separator = "&" if "?" in uri else "?"
    return f"{uri}{separator}{query}"


class BridgeOAuthBroker:
    """
    Authorization server facing the MCP client, and OAuth client facing the provider.

    register -> authorize -> (provider) -> callback -> token. The client's
    PKCE challenge and state never leave the bridge; the provider only
    ever sees the bridge's own internal state value.
    """

    def __init__(
        self,
        client_store: AbstractClientStore,
        session_store: AbstractAuthSessionStore,
        code_store: AbstractAuthCodeStore,
        vault: AbstractCredentialVault,
        cipher: TokenCipher,
        provider_oauth: ProviderOAuthClient,
        config: Optional[Settings] = None,
    ):
        self.client_store = client_store
        self.session_store = session_store
        self.code_store = code_store
        self.vault = vault
        self.cipher = cipher
        self.provider_oauth = provider_oauth
        self.config = config or default_settings

    # --- register ---

    async def register_client(self, registration: ClientRegistrationRequest) -> ClientRegistrationResponse:
        if not registration.redirect_uris:
            raise InvalidClientMetadataError("redirect_uris must contain at least one URI.")
        for uri in registration.redirect_uris:
            if not is_acceptable_redirect_uri(uri):
                raise InvalidClientMetadataError(f"Invalid redirect_uri: {uri}")

        client = RegisteredClient(
            client_id=generate_opaque_token(16),
            client_name=registration.client_name,
            redirect_uris=list(registration.redirect_uris),
        )
        await self.client_store.save_client(client)
        logger.info(f"Registered client '{client.client_id}' with {len(client.redirect_uris)} redirect URI(s).")

        return ClientRegistrationResponse(
            client_id=client.client_id,
            redirect_uris=client.redirect_uris,
            client_name=client.client_name,
            client_id_issued_at=int(client.created_at.timestamp()),
        )

    # --- authorize ---

    async def _validate_client(self, client_id: str, redirect_uri: str) -> RegisteredClient:
        client = await self.client_store.load_client(client_id)
        if not client:
            logger.warning(f"Authorization attempt with unknown client_id '{client_id}'.")
            raise InvalidClientError("Unknown client_id.")
        if redirect_uri not in client.redirect_uris:
            logger.warning(f"redirect_uri not registered for client '{client_id}'.")
            raise InvalidRequestError("redirect_uri is not registered for this client.")
        return client

    def validate_authorization_parameters(
        self,
        response_type: Optional[str],
        client_id: Optional[str],
        redirect_uri: Optional[str],
        state: Optional[str],
        code_challenge: Optional[str],
        code_challenge_method: Optional[str],
    ) -> AuthRequest:
        if not response_type:
            raise InvalidRequestError("response_type is required.")
        if response_type != "code":
            raise UnsupportedResponseTypeError("Only response_type=code is supported.")
        if not client_id:
            raise InvalidRequestError("client_id is required.")
        if not redirect_uri:
            raise InvalidRequestError("redirect_uri is required.")
        if not state:
            raise InvalidRequestError("state is required.")

        method = None
        if code_challenge:
            method = code_challenge_method or "S256"
            if method not in SUPPORTED_METHODS:
                raise InvalidRequestError("code_challenge_method must be S256.")
        elif code_challenge_method:
            raise InvalidRequestError("code_challenge_method given without code_challenge.")

        return AuthRequest(
            response_type=response_type,
            client_id=client_id,
            redirect_uri=redirect_uri,
            state=state,
            code_challenge=code_challenge,
            code_challenge_method=method,
        )

    async def begin_authorization(self, auth_request: AuthRequest) -> str:
        """Persist an AuthorizationSession and return the provider authorization URL."""
        client = await self._validate_client(auth_request.client_id, auth_request.redirect_uri)

        internal_state = generate_opaque_token()
        session = AuthorizationSession(
            internal_state=internal_state,
            client_state=auth_request.state,
            registered_client_id=client.client_id,
            redirect_uri=auth_request.redirect_uri,
            pkce_code_challenge=auth_request.code_challenge,
            pkce_method=auth_request.code_challenge_method,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=self.config.auth_session_ttl_seconds),
        )
        await self.session_store.save_session(session)
        logger.info(f"Authorization session {redact(internal_state)} created for client '{client.client_id}'.")
        return self.provider_oauth.build_authorization_url(internal_state)

    # --- callback ---

    async def complete_callback(
        self,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
    ) -> str:
        """Turn the provider's answer into a redirect back to the client."""
        if not state:
            raise InvalidRequestError("Missing state parameter.")

        session = await self.session_store.consume_session(state)
        if not session:
            logger.warning(f"Callback with unknown or expired state {redact(state)}.")
            raise InvalidRequestError("Invalid or expired state parameter.")

        if error:
            logger.warning(f"Provider returned error '{error}' for session {redact(state)}.")
            return append_query_params(session.redirect_uri, {"error": "access_denied", "state": session.client_state})

        if not code:
            return append_query_params(session.redirect_uri, {
                "error": "invalid_request",
                "error_description": "Provider did not return an authorization code.",
                "state": session.client_state,
            })

        auth_code = AuthorizationCode(
            code=generate_opaque_token(),
            encrypted_provider_code=self.cipher.encrypt(code),
            registered_client_id=session.registered_client_id,
            redirect_uri=session.redirect_uri,
            pkce_code_challenge=session.pkce_code_challenge,
            pkce_method=session.pkce_method,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=self.config.auth_code_ttl_seconds),
        )
        await self.code_store.save_auth_code(auth_code)
        logger.info(f"Authorization code {redact(auth_code.code)} issued to client '{session.registered_client_id}'.")
        return append_query_params(session.redirect_uri, {"code": auth_code.code, "state": session.client_state})

    # --- token ---

    async def handle_token_request(self, token_request: TokenRequest) -> TokenResponse:
        if token_request.grant_type != "authorization_code":
            raise UnsupportedGrantTypeError(f"Unsupported grant_type: {token_request.grant_type}")
        if not token_request.code:
            raise InvalidRequestError("code is required.")

        # From here on the code is spent, whatever happens next
        auth_code = await self.code_store.consume_auth_code(token_request.code)
        if not auth_code:
            logger.warning(f"Token exchange with unknown, expired or used code {redact(token_request.code)}.")
            raise InvalidGrantError("Invalid, expired or already used authorization code.")

        if token_request.redirect_uri and token_request.redirect_uri != auth_code.redirect_uri:
            raise InvalidGrantError("redirect_uri does not match the authorization request.")
        if token_request.client_id and token_request.client_id != auth_code.registered_client_id:
            raise InvalidGrantError("Authorization code was issued to another client.")
        if auth_code.pkce_code_challenge:
            if not verify_pkce_code_verifier(
                token_request.code_verifier,
                auth_code.pkce_code_challenge,
                auth_code.pkce_method or "S256",
            ):
                logger.warning(f"PKCE verification failed for code {redact(auth_code.code)}.")
                raise InvalidGrantError("PKCE verification failed.")

        provider_code = self.cipher.decrypt(auth_code.encrypted_provider_code)
        if provider_code is None:
            raise ServerError("Stored authorization data could not be read.")

        try:
            grant = await self.provider_oauth.exchange_code(provider_code)
        except ProviderRejectedError as e:
            logger.error(f"Provider rejected code exchange (status {e.status}).")
            raise ServerError("Failed to exchange authorization code with the provider.")
        except ProviderUnavailableError:
            raise TemporarilyUnavailableError("The provider is currently unavailable. Please retry the authorization.")

        bridge_token = generate_opaque_token()
        credential = ProviderCredential(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            provider_user_id=grant.provider_user_id,
            provider_expires_at=grant.expires_at(),
        )
        try:
            await self.vault.store(bridge_token, credential)
        except STORAGE_ERRORS as e:
            logger.error(f"Failed to persist credential: {e}", exc_info=True)
            raise ServerError("Failed to persist credentials.")

        logger.info(
            f"Bridge token {redact(bridge_token)} issued to client '{auth_code.registered_client_id}' "
            f"at {int(time.time())}."
        )
        return TokenResponse(access_token=bridge_token, expires_in=self.vault.ttl_seconds)
