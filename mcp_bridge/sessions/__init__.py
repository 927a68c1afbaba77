# mcp_bridge/sessions/__init__.py
"""
Session transport for MCP clients.

A session pairs an SSE channel with a per-session MCP handler, bound to
the bridge token that opened it.
"""

from .channel import ChannelClosedError, SessionChannel, format_sse
from .protocol import InvalidMessageError, McpSessionHandler
from .session_manager import (
    SessionForbiddenError,
    SessionNotFoundError,
    SessionTransportManager,
    TransportSession,
)

__all__ = [
    "ChannelClosedError",
    "SessionChannel",
    "format_sse",
    "InvalidMessageError",
    "McpSessionHandler",
    "SessionForbiddenError",
    "SessionNotFoundError",
    "SessionTransportManager",
    "TransportSession",
]
