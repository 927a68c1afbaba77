# mcp_bridge/oauth/endpoints.py
from fastapi import APIRouter, Depends, Form, Query, Request, Response
from fastapi.responses import RedirectResponse
from typing import Annotated, Optional
import json
import logging

from pydantic import ValidationError as PydanticValidationError

from ..dependencies import get_oauth_broker
from ..settings import settings
from .errors import InvalidClientMetadataError, InvalidRequestError, OAuthError, ServerError
from .models import (
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    ProtectedResourceMetadata,
    TokenRequest,
    TokenResponse,
    WellKnownOAuthMetadata,
)
from .provider import BridgeOAuthBroker

logger = logging.getLogger(__name__)
oauth_router = APIRouter()


def get_public_base_url(request: Request) -> str:
    """Externally visible base URL, preferring the configured value over the request's."""
    if settings.public_base_url:
        return settings.public_base_url.rstrip("/")
    return str(request.base_url).rstrip("/")


@oauth_router.post(
    "/register",
    response_model=ClientRegistrationResponse,
    response_model_exclude_none=True,
    status_code=201,
    name="oauth_register",
)
async def register_client(
    request: Request,
    broker: Annotated[BridgeOAuthBroker, Depends(get_oauth_broker)],
):
    """Dynamic client registration (RFC 7591)."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidClientMetadataError("Request body must be a JSON object.")
    if not isinstance(payload, dict):
        raise InvalidClientMetadataError("Request body must be a JSON object.")

    try:
        registration = ClientRegistrationRequest.model_validate(payload)
    except PydanticValidationError as e:
        logger.warning(f"Client registration validation failed: {e.errors()}")
        raise InvalidClientMetadataError("redirect_uris must be a list of strings.")

    return await broker.register_client(registration)


@oauth_router.get("/authorize", name="oauth_authorize")
async def authorize(
    broker: Annotated[BridgeOAuthBroker, Depends(get_oauth_broker)],
    response_type: Annotated[Optional[str], Query()] = None,
    client_id: Annotated[Optional[str], Query()] = None,
    redirect_uri: Annotated[Optional[str], Query()] = None,
    state: Annotated[Optional[str], Query()] = None,
    code_challenge: Annotated[Optional[str], Query()] = None,
    code_challenge_method: Annotated[Optional[str], Query()] = None,
):
    """
    Authorization endpoint. Redirects the user agent to the provider.

    Failures are answered with a JSON error body instead of a redirect,
    since the redirect_uri cannot be trusted until it has been matched
    against the client's registration.
    """
    logger.info(f"Authorization request for client '{client_id}'.")
    auth_request = broker.validate_authorization_parameters(
        response_type=response_type,
        client_id=client_id,
        redirect_uri=redirect_uri,
        state=state,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
    )
    provider_url = await broker.begin_authorization(auth_request)
    return RedirectResponse(url=provider_url, status_code=302)


@oauth_router.get("/callback", name="oauth_callback")
async def provider_callback(
    broker: Annotated[BridgeOAuthBroker, Depends(get_oauth_broker)],
    code: Annotated[Optional[str], Query()] = None,
    state: Annotated[Optional[str], Query()] = None,
    error: Annotated[Optional[str], Query()] = None,
):
    """Landing point for the provider redirect; forwards a bridge code to the client."""
    logger.info(f"Provider callback received. Code: {'SET' if code else 'NOT_SET'}, error: {error}")
    client_redirect = await broker.complete_callback(code=code, state=state, error=error)
    return RedirectResponse(url=client_redirect, status_code=302)


@oauth_router.get("/auth/callback", include_in_schema=False)
async def legacy_provider_callback(request: Request):
    """Older deployments registered this path with the provider."""
    target = request.app.url_path_for("oauth_callback")
    if request.url.query:
        target = f"{target}?{request.url.query}"
    return RedirectResponse(url=target, status_code=307)


@oauth_router.post("/token", response_model=TokenResponse, name="oauth_token")
async def token(
    response: Response,
    broker: Annotated[BridgeOAuthBroker, Depends(get_oauth_broker)],
    grant_type: Annotated[Optional[str], Form()] = None,
    code: Annotated[Optional[str], Form()] = None,
    redirect_uri: Annotated[Optional[str], Form()] = None,
    client_id: Annotated[Optional[str], Form()] = None,
    code_verifier: Annotated[Optional[str], Form()] = None,
):
    """OAuth token endpoint exchanging a bridge authorization code for a bridge token."""
    logger.info(f"Token endpoint called. Grant type: '{grant_type}' Client ID: {client_id}")
    if not grant_type:
        raise InvalidRequestError("grant_type is required.")

    token_request = TokenRequest(
        grant_type=grant_type,
        code=code,
        redirect_uri=redirect_uri,
        client_id=client_id,
        code_verifier=code_verifier,
    )

    try:
        token_response = await broker.handle_token_request(token_request)
    except OAuthError as e:
        logger.error(f"Token endpoint OAuthError: {e.error} - {e.error_description}")
        raise
    except Exception as e:
        logger.error(f"Unexpected error during /token: {e}", exc_info=True)
        raise ServerError(error_description="An unexpected error occurred while processing the token request.")

    response.headers["Cache-Control"] = "no-store"
    response.headers["Pragma"] = "no-cache"
    return token_response


@oauth_router.get(
    "/.well-known/oauth-authorization-server",
    response_model=WellKnownOAuthMetadata,
    response_model_exclude_none=True,
    name="oauth_metadata",
)
async def get_oauth_metadata(request: Request):
    """OAuth discovery endpoint providing server metadata (RFC 8414)."""
    base_url = get_public_base_url(request)
    return WellKnownOAuthMetadata(
        issuer=base_url,
        authorization_endpoint=f"{base_url}{request.app.url_path_for('oauth_authorize')}",
        token_endpoint=f"{base_url}{request.app.url_path_for('oauth_token')}",
        registration_endpoint=f"{base_url}{request.app.url_path_for('oauth_register')}",
        scopes_supported=settings.provider_scope_list,
        mcp_endpoint=f"{base_url}/mcp",
    )


@oauth_router.get(
    "/.well-known/oauth-protected-resource",
    response_model=ProtectedResourceMetadata,
    name="oauth_protected_resource",
)
async def get_protected_resource_metadata(request: Request):
    base_url = get_public_base_url(request)
    return ProtectedResourceMetadata(resource=f"{base_url}/mcp", authorization_servers=[base_url])
