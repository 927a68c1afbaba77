# mcp_bridge/sessions/protocol.py
import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Union

import anyio
import mcp.types as types
from fastmcp import FastMCP
from mcp.shared.message import SessionMessage
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)

OutboundSender = Callable[[str], Awaitable[None]]

STREAM_BUFFER_SIZE = 100


class InvalidMessageError(ValueError):
    """The inbound payload is not a JSON-RPC message."""


class McpSessionHandler:
    """
    Drives one FastMCP server instance for one transport session.

    Inbound JSON-RPC messages are fed into the low-level MCP server through
    in-memory anyio streams; whatever the server writes back is serialized
    and handed to ``send`` in the order it was produced.
    """

    def __init__(self, session_id: str, server: FastMCP, send: OutboundSender):
        self.session_id = session_id
        self.server = server
        self._send = send
        self._inbound_send = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self._task is not None:
            return
        inbound_send, server_read = anyio.create_memory_object_stream(STREAM_BUFFER_SIZE)
        server_write, outbound_read = anyio.create_memory_object_stream(STREAM_BUFFER_SIZE)
        self._inbound_send = inbound_send
        self._task = asyncio.create_task(
            self._serve(server_read, server_write, outbound_read),
            name=f"mcp-session-{self.session_id[:8]}",
        )
        logger.debug(f"MCP handler started for session {self.session_id[:8]}.")

    async def _serve(self, server_read, server_write, outbound_read) -> None:
        low_level_server = self.server._mcp_server
        try:
            async with anyio.create_task_group() as tg:
                tg.start_soon(self._pump_outbound, outbound_read)
                await low_level_server.run(
                    server_read,
                    server_write,
                    low_level_server.create_initialization_options(),
                )
                tg.cancel_scope.cancel()
        except Exception as e:
            logger.error(f"MCP handler for session {self.session_id[:8]} failed: {e}", exc_info=True)

    async def _pump_outbound(self, outbound_read) -> None:
        async with outbound_read:
            async for session_message in outbound_read:
                payload = session_message.message.model_dump_json(by_alias=True, exclude_none=True)
                await self._send(payload)

    @staticmethod
    def parse(payload: Any) -> List[types.JSONRPCMessage]:
        """Validate one JSON-RPC message or a batch of them."""
        items: List[Any] = payload if isinstance(payload, list) else [payload]
        if not items:
            raise InvalidMessageError("Empty JSON-RPC batch.")
        messages = []
        for item in items:
            if not isinstance(item, dict):
                raise InvalidMessageError("JSON-RPC messages must be objects.")
            try:
                messages.append(types.JSONRPCMessage.model_validate(item))
            except PydanticValidationError as e:
                raise InvalidMessageError(f"Invalid JSON-RPC message: {e.error_count()} error(s).") from e
        return messages

    async def handle(self, payload: Union[dict, list]) -> None:
        """Feed one message or batch into the server."""
        if not self.running or self._inbound_send is None:
            raise RuntimeError(f"MCP handler for session {self.session_id[:8]} is not running.")
        for message in self.parse(payload):
            await self._inbound_send.send(SessionMessage(message=message))

    async def close(self) -> None:
        if self._inbound_send is not None:
            await self._inbound_send.aclose()
            self._inbound_send = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.debug(f"MCP handler closed for session {self.session_id[:8]}.")
