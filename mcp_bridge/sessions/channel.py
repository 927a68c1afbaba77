# mcp_bridge/sessions/channel.py
import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

MESSAGE_EVENT = "message"
PING_EVENT = "ping"


class ChannelClosedError(Exception):
    """Raised when writing to a channel whose stream has ended."""


def format_sse(event: str, data: str) -> str:
    lines = data.split("\n") if data else [""]
    payload = "".join(f"data: {line}\n" for line in lines)
    return f"event: {event}\n{payload}\n"


class SessionChannel:
    """
    Outbound half of a session: an ordered queue of SSE frames.

    Frames come out of ``stream()`` in exactly the order ``send()`` accepted
    them. ``close()`` ends the stream after any frames already queued.
    """

    def __init__(self, session_id: str):
        self.session_id = session_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: str, data: str) -> None:
        if self._closed:
            raise ChannelClosedError(f"Channel for session {self.session_id[:8]} is closed.")
        await self._queue.put(format_sse(event, data))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def stream(self, on_disconnect: Optional[Callable[[], Awaitable[None]]] = None) -> AsyncIterator[str]:
        """Yield SSE frames until the channel closes or the consumer goes away."""
        try:
            while True:
                frame = await self._queue.get()
                if frame is None:
                    break
                yield frame
        finally:
            self._closed = True
            if on_disconnect is not None:
                await on_disconnect()
