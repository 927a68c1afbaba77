# mcp_bridge/sessions/endpoints.py
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from functools import partial
from typing import Annotated, Any, Optional
import json
import logging

from ..dependencies import get_credential_vault, get_session_manager
from ..oauth.endpoints import get_public_base_url
from ..oauth.errors import InvalidTokenError, OAuthError
from ..vault import AbstractCredentialVault
from .protocol import InvalidMessageError, McpSessionHandler
from .session_manager import (
    SessionForbiddenError,
    SessionNotFoundError,
    SessionTransportManager,
    TransportSession,
)

logger = logging.getLogger(__name__)
mcp_router = APIRouter()

SESSION_HEADER = "Mcp-Session-Id"
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def require_bridge_token(
    request: Request,
    vault: Annotated[AbstractCredentialVault, Depends(get_credential_vault)],
) -> str:
    """Resolve the bearer token and make sure the vault still knows it."""
    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        metadata_url = f"{get_public_base_url(request)}/.well-known/oauth-protected-resource"
        raise OAuthError(
            status_code=401,
            error="unauthorized",
            error_description="Missing or invalid Authorization header.",
            headers={"WWW-Authenticate": f'Bearer resource_metadata="{metadata_url}"'},
        )

    if await vault.get(token) is None:
        logger.warning("Request to /mcp with unknown or expired bridge token.")
        raise InvalidTokenError("Invalid or expired token")
    return token


def _error_response(status_code: int, error: str, description: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "error_description": description})


def _session_not_found() -> JSONResponse:
    return _error_response(404, "invalid_session", "Session not found or expired")


def _forbidden() -> JSONResponse:
    return _error_response(403, "forbidden", "Session is bound to a different token")


async def _read_json_body(request: Request) -> Any:
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidMessageError("Request body is not valid JSON.")
    if not isinstance(payload, (dict, list)):
        raise InvalidMessageError("Request body must be a JSON-RPC object or batch.")
    return payload


def _event_stream(manager: SessionTransportManager, session: TransportSession) -> StreamingResponse:
    return StreamingResponse(
        session.channel.stream(on_disconnect=partial(manager.close_session, session.session_id, session)),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, SESSION_HEADER: session.session_id},
    )


@mcp_router.get("/mcp", name="mcp_stream")
async def open_stream(
    bridge_token: Annotated[str, Depends(require_bridge_token)],
    manager: Annotated[SessionTransportManager, Depends(get_session_manager)],
    mcp_session_id: Annotated[Optional[str], Header(alias=SESSION_HEADER)] = None,
):
    """Open the server-to-client SSE stream, replacing a live session under the same id."""
    try:
        session = await manager.create_session(bridge_token, mcp_session_id)
    except SessionForbiddenError:
        return _forbidden()
    logger.info(f"MCP session {session.session_id[:8]} established via GET.")
    return _event_stream(manager, session)


@mcp_router.post("/mcp", name="mcp_message")
async def post_message(
    request: Request,
    bridge_token: Annotated[str, Depends(require_bridge_token)],
    manager: Annotated[SessionTransportManager, Depends(get_session_manager)],
    mcp_session_id: Annotated[Optional[str], Header(alias=SESSION_HEADER)] = None,
):
    """
    Client-to-server JSON-RPC.

    Without a session id this is the handshake: a session is created, the
    body becomes its first message, and the reply comes back on the SSE
    stream returned here. With a session id the message is queued and the
    answer is 202; replies travel over the already open stream.
    """
    if not mcp_session_id:
        try:
            payload = await _read_json_body(request)
            McpSessionHandler.parse(payload)
        except InvalidMessageError as e:
            return _error_response(400, "invalid_request", str(e))

        session = await manager.create_session(bridge_token)
        try:
            await manager.dispatch(session, payload)
        except Exception as e:
            logger.error(f"Failed to process initial message for session {session.session_id[:8]}: {e}", exc_info=True)
            await manager.close_session(session.session_id, expected=session)
            return _error_response(500, "internal_error", "Failed to process message")
        logger.info(f"MCP session {session.session_id[:8]} established via POST.")
        return _event_stream(manager, session)

    try:
        session = await manager.authorize(mcp_session_id, bridge_token)
    except SessionNotFoundError:
        logger.warning("Message received for invalid or expired session.")
        return _session_not_found()
    except SessionForbiddenError:
        logger.warning(f"Bearer mismatch on session {mcp_session_id[:8]}.")
        return _forbidden()

    try:
        payload = await _read_json_body(request)
        await manager.dispatch(session, payload)
    except InvalidMessageError as e:
        return _error_response(400, "invalid_request", str(e))
    except SessionNotFoundError:
        return _session_not_found()
    except Exception as e:
        logger.error(f"Failed to process message for session {mcp_session_id[:8]}: {e}", exc_info=True)
        return _error_response(500, "internal_error", "Failed to process message")

    return Response(status_code=202)


@mcp_router.delete("/mcp", name="mcp_terminate")
async def terminate_session(
    bridge_token: Annotated[str, Depends(require_bridge_token)],
    manager: Annotated[SessionTransportManager, Depends(get_session_manager)],
    mcp_session_id: Annotated[Optional[str], Header(alias=SESSION_HEADER)] = None,
):
    """Explicitly end a session."""
    if not mcp_session_id:
        return _error_response(400, "invalid_request", f"{SESSION_HEADER} header is required")
    try:
        session = await manager.authorize(mcp_session_id, bridge_token)
    except SessionNotFoundError:
        return _session_not_found()
    except SessionForbiddenError:
        return _forbidden()

    await manager.close_session(session.session_id, expected=session)
    return Response(status_code=204)
