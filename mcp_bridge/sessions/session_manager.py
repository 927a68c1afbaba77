# mcp_bridge/sessions/session_manager.py
import asyncio
import hmac
import logging
import time
from typing import Callable, Dict, List, Optional, Union
from uuid import uuid4

from .channel import MESSAGE_EVENT, PING_EVENT, ChannelClosedError, SessionChannel
from .protocol import McpSessionHandler, OutboundSender

logger = logging.getLogger(__name__)

# (session_id, bridge_token, send) -> handler
HandlerFactory = Callable[[str, str, OutboundSender], McpSessionHandler]


class SessionNotFoundError(Exception):
    """No live session exists under the given id."""


class SessionForbiddenError(Exception):
    """The session exists but is bound to a different bridge token."""


class TransportSession:
    """One live streaming session, owned by the SessionTransportManager."""

    def __init__(self, session_id: str, bridge_token: str, channel: SessionChannel):
        self.session_id = session_id
        self.bridge_token = bridge_token
        self.channel = channel
        self.handler: Optional[McpSessionHandler] = None
        self.created_at = time.monotonic()
        self.last_activity_at = self.created_at
        self.dispatch_lock = asyncio.Lock()
        self.heartbeat_task: Optional[asyncio.Task] = None

    def touch(self) -> None:
        """Record application traffic. Heartbeats never call this."""
        self.last_activity_at = time.monotonic()

    def idle_seconds(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.monotonic()) - self.last_activity_at

    def is_bound_to(self, bridge_token: str) -> bool:
        return hmac.compare_digest(self.bridge_token.encode("utf-8"), bridge_token.encode("utf-8"))


class SessionTransportManager:
    """
    Owns the table of live sessions.

    Every session leaves the table through ``close_session`` (or the bulk
    variants built on it), whether it was replaced, terminated by the
    client, dropped by the network, or reaped for idleness.
    """

    def __init__(
        self,
        handler_factory: HandlerFactory,
        idle_timeout_seconds: float = 1800,
        heartbeat_interval_seconds: float = 15.0,
        sweep_interval_seconds: float = 60,
    ):
        self.handler_factory = handler_factory
        self.idle_timeout_seconds = idle_timeout_seconds
        self.heartbeat_interval_seconds = heartbeat_interval_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._sessions: Dict[str, TransportSession] = {}
        self._lock = asyncio.Lock()
        self._sweep_task: Optional[asyncio.Task] = None
        logger.info(
            f"SessionTransportManager initialized. Idle timeout: {idle_timeout_seconds}s, "
            f"heartbeat: {heartbeat_interval_seconds}s, sweep: {sweep_interval_seconds}s."
        )

    @property
    def active_session_count(self) -> int:
        return len(self._sessions)

    def _is_expired(self, session: TransportSession, now: Optional[float] = None) -> bool:
        return session.idle_seconds(now) > self.idle_timeout_seconds

    def _outbound_sender(self, session: TransportSession) -> OutboundSender:
        async def send(payload: str) -> None:
            session.touch()
            await session.channel.send(MESSAGE_EVENT, payload)
        return send

    async def create_session(self, bridge_token: str, session_id: Optional[str] = None) -> TransportSession:
        """
        Open a session, replacing any live session under the same id.

        Raises:
            SessionForbiddenError: the live session under ``session_id`` is
                bound to another bridge token.
        """
        session_id = session_id or str(uuid4())
        replaced: Optional[TransportSession] = None

        async with self._lock:
            existing = self._sessions.get(session_id)
            if existing is not None:
                if not self._is_expired(existing) and not existing.is_bound_to(bridge_token):
                    logger.warning(f"Refusing to replace session {session_id[:8]} bound to another token.")
                    raise SessionForbiddenError(session_id)
                replaced = self._sessions.pop(session_id)
                # Old channel refuses writes before the new session is visible
                replaced.channel.close()

            session = TransportSession(session_id, bridge_token, SessionChannel(session_id))
            session.handler = self.handler_factory(session_id, bridge_token, self._outbound_sender(session))
            self._sessions[session_id] = session

        if replaced is not None:
            logger.info(f"Replacing existing session {session_id[:8]}.")
            await self._teardown(replaced)

        try:
            await session.handler.start()
        except Exception:
            logger.error(f"Failed to start handler for session {session_id[:8]}.", exc_info=True)
            await self.close_session(session_id, expected=session)
            raise

        session.heartbeat_task = asyncio.create_task(
            self._heartbeat(session), name=f"heartbeat-{session_id[:8]}"
        )
        logger.info(f"Session {session_id[:8]} opened. Active sessions: {self.active_session_count}.")
        return session

    async def get_session(self, session_id: str) -> Optional[TransportSession]:
        """Look up a live session. An idle-expired session is closed on the spot."""
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if self._is_expired(session):
            logger.info(f"Session {session_id[:8]} expired on access.")
            await self.close_session(session_id, expected=session)
            return None
        return session

    async def authorize(self, session_id: str, bridge_token: str) -> TransportSession:
        session = await self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if not session.is_bound_to(bridge_token):
            raise SessionForbiddenError(session_id)
        return session

    async def dispatch(self, session: TransportSession, payload: Union[dict, list]) -> None:
        """Feed an inbound message into the session's handler, one at a time per session."""
        async with session.dispatch_lock:
            if self._sessions.get(session.session_id) is not session or session.handler is None:
                raise SessionNotFoundError(session.session_id)
            session.touch()
            await session.handler.handle(payload)

    async def close_session(self, session_id: str, expected: Optional[TransportSession] = None) -> bool:
        """
        Remove and tear down a session.

        With ``expected`` set, only that exact session object is closed, so a
        stale disconnect cannot take down the session that replaced it.
        """
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None or (expected is not None and session is not expected):
                return False
            del self._sessions[session_id]
        await self._teardown(session)
        logger.info(f"Session {session_id[:8]} closed. Active sessions: {self.active_session_count}.")
        return True

    async def _teardown(self, session: TransportSession) -> None:
        task = session.heartbeat_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        session.channel.close()
        if session.handler is not None:
            await session.handler.close()

    async def _heartbeat(self, session: TransportSession) -> None:
        while not session.channel.closed:
            await asyncio.sleep(self.heartbeat_interval_seconds)
            try:
                await session.channel.send(PING_EVENT, "")
            except ChannelClosedError:
                await self.close_session(session.session_id, expected=session)
                break

    async def sweep_idle(self, now: Optional[float] = None) -> int:
        async with self._lock:
            expired: List[TransportSession] = [
                s for s in self._sessions.values() if self._is_expired(s, now)
            ]
        closed = 0
        for session in expired:
            if await self.close_session(session.session_id, expected=session):
                closed += 1
        if closed:
            logger.info(f"Reaped {closed} idle session(s).")
        return closed

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                await self.sweep_idle()
            except Exception as e:
                logger.error(f"Idle session sweep failed: {e}", exc_info=True)

    def start(self) -> None:
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop(), name="session-sweep")

    async def close_all(self) -> int:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await self._teardown(session)
        if sessions:
            logger.info(f"Closed {len(sessions)} session(s).")
        return len(sessions)

    async def stop(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        await self.close_all()
