"""Socket.IO implementation of the streaming transport."""
from typing import Any, Callable, Optional
from urllib.parse import urlencode

import socketio
import structlog
from socketio.exceptions import ConnectionError as SocketIOConnectionError

from .transport import StreamTransport, TransportSignal

log = structlog.get_logger()


def _message(data: Any) -> str:
    """Extract a human-readable message from a Socket.IO error payload."""
    if isinstance(data, dict):
        return str(data.get("message") or data)
    if data is None:
        return "Unknown error"
    return str(data)


class SocketIOTransport(StreamTransport):
    """
    Socket.IO client over WebSocket.

    The client's built-in reconnection is disabled; reconnecting is the
    supervisor's decision. The bearer token travels in the connection URL's
    query string because the server validates it during the handshake.
    """

    def __init__(
        self,
        transports: tuple[str, ...] = ("websocket",),
        wait_timeout: float = 10.0,
        client_factory: Optional[Callable[[], socketio.AsyncClient]] = None,
    ):
        """
        Initialize transport.

        Args:
            transports: Engine.IO transports to allow
            wait_timeout: Seconds to wait for the handshake to complete
            client_factory: Builds the underlying client (for tests)
        """
        super().__init__()
        self._transports = list(transports)
        self._wait_timeout = wait_timeout
        self._client = (client_factory or self._default_client)()
        self._error_reported = False
        self._register_handlers()

    @staticmethod
    def _default_client() -> socketio.AsyncClient:
        return socketio.AsyncClient(reconnection=False, logger=False, engineio_logger=False)

    def _register_handlers(self) -> None:
        self._client.on("connect", self._on_connect)
        self._client.on("disconnect", self._on_disconnect)
        self._client.on("connect_error", self._on_connect_error)
        self._client.on("error", self._on_error)
        self._client.on("live_events", self._on_live_events)
        # Everything without a dedicated handler lands here
        self._client.on("*", self._on_any)

    @property
    def connected(self) -> bool:
        return bool(self._client.connected)

    async def connect(self, url: str, query: dict[str, str]) -> None:
        self._error_reported = False
        separator = "&" if "?" in url else "?"
        full_url = f"{url}{separator}{urlencode(query)}"
        try:
            await self._client.connect(
                full_url,
                transports=self._transports,
                wait_timeout=self._wait_timeout,
            )
        except SocketIOConnectionError as e:
            log.warning("socketio.connect_failed", url=url, error=str(e))
            if not self._error_reported:
                self.push(TransportSignal.connect_error(str(e) or "Connection failed"))

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        await self._client.emit(event, payload)

    async def disconnect(self) -> None:
        await self._client.disconnect()

    async def _on_connect(self) -> None:
        self.push(TransportSignal.connected())

    async def _on_disconnect(self, *args) -> None:
        # Recent python-socketio versions pass the reason, older ones nothing
        reason = str(args[0]) if args else None
        self.push(TransportSignal.disconnected(reason))

    async def _on_connect_error(self, data: Any = None) -> None:
        self._error_reported = True
        self.push(TransportSignal.connect_error(_message(data)))

    async def _on_error(self, data: Any = None) -> None:
        self.push(TransportSignal.error(_message(data)))

    async def _on_live_events(self, data: Any) -> None:
        self.push(TransportSignal.data("live_events", data))

    async def _on_any(self, event: str, *args) -> None:
        payload = args[0] if len(args) == 1 else list(args)
        self.push(TransportSignal.data(event, payload))
