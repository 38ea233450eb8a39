"""WebSocket fan-out of session updates with rate limiting and keepalive."""
import asyncio
import time
from typing import Callable, Optional

import orjson
import structlog
from fastapi import WebSocket, WebSocketDisconnect

from ..errors import EventNotFound
from ..metrics import Metrics
from ..services.session import LiveSession

log = structlog.get_logger()


class SessionStreamManager:
    """
    Manages UI WebSocket connections per session.

    Features:
    - Per-session fan-out of status, events, selection and profile updates
    - One outbound queue per connection, so updates keep their order
    - Automatic connection cleanup
    """

    def __init__(self, max_queue: int = 1000, metrics: Optional[Metrics] = None):
        self._connections: dict[str, dict[WebSocket, asyncio.Queue]] = {}
        self._max_queue = max_queue
        self.metrics = metrics

    async def connect(self, session_id: str, websocket: WebSocket) -> asyncio.Queue:
        """
        Accept a WebSocket and register it for a session.

        Returns:
            The queue that receives this connection's outbound messages
        """
        await websocket.accept()
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue)
        self._connections.setdefault(session_id, {})[websocket] = queue
        self._update_gauge()
        log.info("websocket.connected", session_id=session_id, total_connections=self.connection_count)
        return queue

    def disconnect(self, session_id: str, websocket: WebSocket):
        connections = self._connections.get(session_id)
        if connections is None:
            return
        connections.pop(websocket, None)
        if not connections:
            del self._connections[session_id]
        self._update_gauge()
        log.info("websocket.disconnected", session_id=session_id, total_connections=self.connection_count)

    def publish(self, session_id: str, message: dict):
        """
        Queue a message for every connection watching a session.

        Slow consumers lose messages rather than holding up the session.
        """
        for websocket, queue in list(self._connections.get(session_id, {}).items()):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                log.warning("websocket.queue_full", session_id=session_id, dropped=message.get("type"))

    def publisher(self, session_id: str) -> Callable[[dict], None]:
        """Listener to register on a ``LiveSession``."""
        def _publish(message: dict) -> None:
            self.publish(session_id, message)
        return _publish

    def session_connections(self, session_id: str) -> int:
        return len(self._connections.get(session_id, {}))

    @property
    def connection_count(self) -> int:
        return sum(len(c) for c in self._connections.values())

    def _update_gauge(self):
        if self.metrics:
            self.metrics.set_websocket_connections(self.connection_count)


class RateLimiter:
    """Simple rate limiter for WebSocket messages."""

    def __init__(self, max_messages: int = 100, window_seconds: int = 60):
        self.max_messages = max_messages
        self.window_seconds = window_seconds
        self._message_times: list[float] = []

    def check_limit(self) -> bool:
        """
        Check if rate limit is exceeded.

        Returns:
            True if within limit, False if exceeded
        """
        now = time.time()
        cutoff = now - self.window_seconds
        self._message_times = [t for t in self._message_times if t > cutoff]

        if len(self._message_times) >= self.max_messages:
            return False

        self._message_times.append(now)
        return True

    def remaining(self) -> int:
        now = time.time()
        cutoff = now - self.window_seconds
        recent = len([t for t in self._message_times if t > cutoff])
        return max(0, self.max_messages - recent)


def _encode(message: dict) -> str:
    return orjson.dumps(message).decode()


async def _drain(websocket: WebSocket, queue: asyncio.Queue):
    while True:
        message = await queue.get()
        await websocket.send_text(_encode(message))
        if message.get("type") == "closed":
            await websocket.close()
            return


async def _handle_command(websocket: WebSocket, session: LiveSession, message: str):
    if message == "pong":
        log.debug("websocket.pong_received")
        return
    if message == "ping":
        await websocket.send_text("pong")
        return

    try:
        command = orjson.loads(message)
    except orjson.JSONDecodeError:
        await websocket.send_text(_encode({"type": "error", "message": "Invalid message"}))
        return
    if not isinstance(command, dict):
        await websocket.send_text(_encode({"type": "error", "message": "Invalid message"}))
        return

    action = command.get("action")
    if action == "select":
        try:
            session.select(str(command.get("messageId", "")))
        except EventNotFound as e:
            await websocket.send_text(_encode({"type": "error", "message": str(e)}))
    elif action == "dismiss_profile_error":
        session.dismiss_profile_error()
    else:
        await websocket.send_text(_encode({"type": "error", "message": f"Unknown action: {action}"}))


async def handle_session_stream(
    websocket: WebSocket,
    session: LiveSession,
    manager: SessionStreamManager,
    ping_interval: int = 30,
    rate_limit_messages: int = 100,
    rate_limit_window: int = 60
):
    """
    Stream one session's updates to a WebSocket client.

    The client receives a ``snapshot`` first, then incremental messages. It
    may send ``ping``, or JSON commands ``{"action": "select", "messageId": ...}``
    and ``{"action": "dismiss_profile_error"}``.
    """
    rate_limiter = RateLimiter(rate_limit_messages, rate_limit_window)
    queue = await manager.connect(session.session_id, websocket)
    writer = None

    try:
        await websocket.send_text(_encode({
            "type": "snapshot",
            "data": session.snapshot().model_dump(mode="json"),
            "rate_limit": {
                "max_messages": rate_limit_messages,
                "window_seconds": rate_limit_window
            }
        }))
        writer = asyncio.create_task(_drain(websocket, queue))

        last_ping = time.time()

        while not writer.done():
            if time.time() - last_ping > ping_interval:
                await websocket.send_json({"type": "ping", "ts": time.time()})
                last_ping = time.time()

            try:
                message = await asyncio.wait_for(websocket.receive_text(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            if not rate_limiter.check_limit():
                await websocket.send_json({
                    "type": "error",
                    "message": "Rate limit exceeded",
                    "retry_after": rate_limit_window
                })
                continue

            await _handle_command(websocket, session, message)

    except WebSocketDisconnect:
        log.info("websocket.client_disconnected", session_id=session.session_id)
    except Exception as e:
        log.error("websocket.error", session_id=session.session_id, error=str(e), exc_info=True)
    finally:
        if writer is not None:
            writer.cancel()
            await asyncio.gather(writer, return_exceptions=True)
        manager.disconnect(session.session_id, websocket)
