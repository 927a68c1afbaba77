"""
Tests for the session transport: channel framing, the session table and
the per-session MCP handler.
"""

import asyncio
import json
import time
from functools import partial

import pytest
from fastmcp import FastMCP

from mcp_bridge.provider import ReauthenticationRequiredError
from mcp_bridge.sessions import (
    ChannelClosedError,
    InvalidMessageError,
    McpSessionHandler,
    SessionChannel,
    SessionForbiddenError,
    SessionNotFoundError,
    SessionTransportManager,
    format_sse,
)
from mcp_bridge.tools import PROVIDER_TOOL_NAMES, register_provider_tools


class EchoHandler:
    """Stands in for McpSessionHandler: writes every inbound message straight back."""

    instances = []

    def __init__(self, session_id, bridge_token, send):
        self.session_id = session_id
        self.bridge_token = bridge_token
        self.send = send
        self.running = False
        self.closed = False
        EchoHandler.instances.append(self)

    async def start(self):
        self.running = True

    async def handle(self, payload):
        if not self.running:
            raise RuntimeError("not running")
        messages = payload if isinstance(payload, list) else [payload]
        for message in messages:
            await self.send(json.dumps(message))

    async def close(self):
        self.running = False
        self.closed = True


@pytest.fixture
def manager():
    EchoHandler.instances.clear()
    return SessionTransportManager(EchoHandler, idle_timeout_seconds=60, heartbeat_interval_seconds=3600)


async def next_frame(stream, timeout: float = 2.0) -> str:
    return await asyncio.wait_for(stream.__anext__(), timeout)


class TestSessionChannel:
    """Tests for SSE framing and ordering."""

    def test_format_sse(self):
        assert format_sse("message", '{"a":1}') == 'event: message\ndata: {"a":1}\n\n'
        assert format_sse("ping", "") == "event: ping\ndata: \n\n"
        assert format_sse("message", "a\nb") == "event: message\ndata: a\ndata: b\n\n"

    async def test_frames_arrive_in_send_order(self):
        channel = SessionChannel("session-1")
        for i in range(5):
            await channel.send("message", str(i))
        channel.close()

        frames = [frame async for frame in channel.stream()]
        assert frames == [format_sse("message", str(i)) for i in range(5)]

    async def test_send_after_close_raises(self):
        channel = SessionChannel("session-1")
        channel.close()
        with pytest.raises(ChannelClosedError):
            await channel.send("message", "x")

    async def test_disconnect_callback_runs_once_stream_ends(self):
        calls = []

        async def on_disconnect():
            calls.append(True)

        channel = SessionChannel("session-1")
        await channel.send("message", "x")
        stream = channel.stream(on_disconnect)
        await next_frame(stream)
        await stream.aclose()

        assert calls == [True]
        assert channel.closed is True


class TestSessionTransportManager:
    """Tests for session lifecycle and binding."""

    async def test_create_and_authorize(self, manager):
        session = await manager.create_session("token-a")

        assert manager.active_session_count == 1
        assert await manager.authorize(session.session_id, "token-a") is session
        assert EchoHandler.instances[0].bridge_token == "token-a"
        await manager.stop()

    async def test_generated_ids_are_unique(self, manager):
        ids = {(await manager.create_session("token-a")).session_id for _ in range(10)}
        assert len(ids) == 10
        await manager.stop()

    async def test_authorize_with_other_token_is_forbidden(self, manager):
        session = await manager.create_session("token-a")
        with pytest.raises(SessionForbiddenError):
            await manager.authorize(session.session_id, "token-b")
        await manager.stop()

    async def test_authorize_unknown_session(self, manager):
        with pytest.raises(SessionNotFoundError):
            await manager.authorize("nope", "token-a")

    async def test_replacement_closes_previous_session(self, manager):
        first = await manager.create_session("token-a", "fixed-id")
        second = await manager.create_session("token-a", "fixed-id")

        assert first is not second
        assert first.channel.closed is True
        with pytest.raises(ChannelClosedError):
            await first.channel.send("message", "late")
        assert EchoHandler.instances[0].closed is True
        assert manager.active_session_count == 1
        assert await manager.get_session("fixed-id") is second
        await manager.stop()

    async def test_replacement_with_other_token_is_forbidden(self, manager):
        first = await manager.create_session("token-a", "fixed-id")
        with pytest.raises(SessionForbiddenError):
            await manager.create_session("token-b", "fixed-id")
        assert await manager.get_session("fixed-id") is first
        await manager.stop()

    async def test_stale_close_does_not_remove_replacement(self, manager):
        first = await manager.create_session("token-a", "fixed-id")
        second = await manager.create_session("token-a", "fixed-id")

        assert await manager.close_session("fixed-id", expected=first) is False
        assert await manager.get_session("fixed-id") is second
        assert await manager.close_session("fixed-id", expected=second) is True
        assert manager.active_session_count == 0

    async def test_stream_disconnect_closes_session(self, manager):
        session = await manager.create_session("token-a")
        await manager.dispatch(session, {"jsonrpc": "2.0", "method": "ping", "id": 1})

        stream = session.channel.stream(partial(manager.close_session, session.session_id, session))
        await next_frame(stream)
        await stream.aclose()

        assert manager.active_session_count == 0
        assert EchoHandler.instances[0].closed is True

    async def test_replies_keep_dispatch_order(self, manager):
        session = await manager.create_session("token-a")
        for i in range(5):
            await manager.dispatch(session, {"jsonrpc": "2.0", "method": "ping", "id": i})

        stream = session.channel.stream()
        ids = [json.loads((await next_frame(stream)).split("data: ", 1)[1])["id"] for _ in range(5)]
        assert ids == [0, 1, 2, 3, 4]
        await manager.stop()

    async def test_dispatch_to_closed_session(self, manager):
        session = await manager.create_session("token-a")
        await manager.close_session(session.session_id)
        with pytest.raises(SessionNotFoundError):
            await manager.dispatch(session, {"jsonrpc": "2.0", "method": "ping", "id": 1})

    async def test_idle_sessions_are_reaped(self, manager):
        idle = await manager.create_session("token-a")
        busy = await manager.create_session("token-b")

        busy.last_activity_at = time.monotonic() + 30
        reaped = await manager.sweep_idle(now=time.monotonic() + 61)

        assert reaped == 1
        assert idle.channel.closed is True
        assert manager.active_session_count == 1
        await manager.stop()

    async def test_expired_session_is_closed_on_access(self, manager):
        session = await manager.create_session("token-a")
        session.last_activity_at = time.monotonic() - 120

        assert await manager.get_session(session.session_id) is None
        assert manager.active_session_count == 0

    async def test_expired_session_can_be_claimed_by_another_token(self, manager):
        session = await manager.create_session("token-a", "fixed-id")
        session.last_activity_at = time.monotonic() - 120

        replacement = await manager.create_session("token-b", "fixed-id")
        assert replacement.bridge_token == "token-b"
        await manager.stop()

    async def test_heartbeat_sends_ping_without_activity(self):
        manager = SessionTransportManager(EchoHandler, idle_timeout_seconds=60, heartbeat_interval_seconds=0.01)
        session = await manager.create_session("token-a")
        before = session.last_activity_at

        frame = await next_frame(session.channel.stream())

        assert frame == "event: ping\ndata: \n\n"
        assert session.last_activity_at == before
        await manager.stop()

    async def test_stop_closes_everything(self, manager):
        manager.start()
        sessions = [await manager.create_session("token-a") for _ in range(3)]

        await manager.stop()

        assert manager.active_session_count == 0
        assert all(s.channel.closed for s in sessions)
        assert all(h.closed for h in EchoHandler.instances)
        assert manager._sweep_task is None


class StubApiClient:
    """Records provider calls and returns canned bodies."""

    def __init__(self, error=None):
        self.calls = []
        self.error = error

    async def request(self, bridge_token, path, action, params=None):
        self.calls.append((bridge_token, path, action, params))
        if self.error is not None:
            raise self.error
        return {"devices": [{"type": "Scale", "battery": "high"}]}


async def start_handler(api_client):
    outbound: asyncio.Queue = asyncio.Queue()
    server = FastMCP(name="test-bridge")
    register_provider_tools(server, api_client, "bridge-token-1")
    handler = McpSessionHandler("session-1", server, outbound.put)
    await handler.start()
    return handler, outbound


async def initialize(handler, outbound):
    await handler.handle({
        "jsonrpc": "2.0",
        "id": 1,
        "method": "initialize",
        "params": {
            "protocolVersion": "2025-03-26",
            "capabilities": {},
            "clientInfo": {"name": "pytest", "version": "1.0"},
        },
    })
    reply = json.loads(await asyncio.wait_for(outbound.get(), 5))
    await handler.handle({"jsonrpc": "2.0", "method": "notifications/initialized"})
    return reply


class TestMcpSessionHandler:
    """Tests for the FastMCP-backed per-session handler."""

    async def test_initialize_and_list_tools(self):
        handler, outbound = await start_handler(StubApiClient())
        try:
            reply = await initialize(handler, outbound)
            assert reply["id"] == 1
            assert "serverInfo" in reply["result"]
            assert "tools" in reply["result"]["capabilities"]

            await handler.handle({"jsonrpc": "2.0", "id": 2, "method": "tools/list"})
            listed = json.loads(await asyncio.wait_for(outbound.get(), 5))
            assert listed["id"] == 2
            assert {tool["name"] for tool in listed["result"]["tools"]} == set(PROVIDER_TOOL_NAMES)
        finally:
            await handler.close()

    async def test_tool_call_uses_session_token(self):
        api_client = StubApiClient()
        handler, outbound = await start_handler(api_client)
        try:
            await initialize(handler, outbound)
            await handler.handle({
                "jsonrpc": "2.0",
                "id": 3,
                "method": "tools/call",
                "params": {"name": "get_user_devices", "arguments": {}},
            })
            reply = json.loads(await asyncio.wait_for(outbound.get(), 5))

            assert reply["id"] == 3
            assert reply["result"].get("isError", False) is False
            assert "Scale" in reply["result"]["content"][0]["text"]
            assert api_client.calls == [("bridge-token-1", "/v2/user", "getdevice", None)]
        finally:
            await handler.close()

    async def test_tool_failure_is_reported_as_error_result(self):
        handler, outbound = await start_handler(StubApiClient(error=ReauthenticationRequiredError()))
        try:
            await initialize(handler, outbound)
            await handler.handle({
                "jsonrpc": "2.0",
                "id": 4,
                "method": "tools/call",
                "params": {"name": "get_user_goals", "arguments": {}},
            })
            reply = json.loads(await asyncio.wait_for(outbound.get(), 5))

            assert reply["result"]["isError"] is True
            assert "Re-authentication required" in reply["result"]["content"][0]["text"]
        finally:
            await handler.close()

    async def test_handle_before_start_raises(self):
        handler = McpSessionHandler("session-1", FastMCP(name="x"), asyncio.Queue().put)
        with pytest.raises(RuntimeError):
            await handler.handle({"jsonrpc": "2.0", "id": 1, "method": "ping"})

    @pytest.mark.parametrize("payload", [[], [1, 2], {"not": "jsonrpc"}, "text"])
    def test_parse_rejects_non_jsonrpc(self, payload):
        with pytest.raises(InvalidMessageError):
            McpSessionHandler.parse(payload)

    def test_parse_accepts_batches(self):
        messages = McpSessionHandler.parse([
            {"jsonrpc": "2.0", "id": 1, "method": "ping"},
            {"jsonrpc": "2.0", "method": "notifications/initialized"},
        ])
        assert len(messages) == 2
