# mcp_bridge/dependencies.py
"""FastAPI dependencies resolving the services built in the application lifespan."""

import logging
from typing import TYPE_CHECKING

from fastapi import Request

from .oauth.errors import TemporarilyUnavailableError

if TYPE_CHECKING:
    from .oauth.provider import BridgeOAuthBroker
    from .sessions.session_manager import SessionTransportManager
    from .vault import AbstractCredentialVault

logger = logging.getLogger(__name__)


def _from_state(request: Request, attribute: str, label: str):
    instance = getattr(request.app.state, attribute, None)
    if instance is None:
        logger.error(f"CRITICAL: {label} not initialized on app.state.")
        raise TemporarilyUnavailableError(f"{label} unavailable.")
    return instance


async def get_oauth_broker(request: Request) -> "BridgeOAuthBroker":
    return _from_state(request, "oauth_broker", "OAuth broker")


async def get_credential_vault(request: Request) -> "AbstractCredentialVault":
    return _from_state(request, "vault", "Credential vault")


async def get_session_manager(request: Request) -> "SessionTransportManager":
    return _from_state(request, "session_manager", "Session manager")
