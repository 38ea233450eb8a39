"""Tests for the Socket.IO streaming transport."""
import importlib.util
from unittest.mock import AsyncMock, MagicMock

import pytest
from socketio.exceptions import ConnectionError as SocketIOConnectionError

from livebridge.streaming.policy import FailureKind, ReconnectPolicy
from livebridge.streaming.socketio_transport import SocketIOTransport
from livebridge.streaming.transport import SignalKind


def fake_client():
    client = MagicMock()
    client.connect = AsyncMock()
    client.emit = AsyncMock()
    client.disconnect = AsyncMock()
    client.connected = False
    return client


def build_transport(**kwargs):
    client = fake_client()
    transport = SocketIOTransport(client_factory=lambda: client, **kwargs)
    handlers = {call.args[0]: call.args[1] for call in client.on.call_args_list}
    return transport, client, handlers


def drain(transport):
    signals = []
    while not transport.signals.empty():
        signals.append(transport.signals.get_nowait())
    return signals


class TestSocketIOTransport:

    def test_handlers_registered(self):
        _, _, handlers = build_transport()

        assert set(handlers) == {"connect", "disconnect", "connect_error", "error", "live_events", "*"}

    def test_default_client_does_not_reconnect_itself(self):
        transport = SocketIOTransport()

        assert transport._client.reconnection is False
        assert transport.connected is False

    def test_websocket_client_dependency_installed(self):
        # The asyncio client's WebSocket transport runs on aiohttp
        assert importlib.util.find_spec("aiohttp") is not None

    @pytest.mark.asyncio
    async def test_token_travels_in_query_string(self):
        transport, client, _ = build_transport(wait_timeout=3.0)

        await transport.connect("https://stream.example.com", {"auth": "tok"})

        client.connect.assert_awaited_once_with(
            "https://stream.example.com?auth=tok",
            transports=["websocket"],
            wait_timeout=3.0,
        )

    @pytest.mark.asyncio
    async def test_query_appended_to_existing_query(self):
        transport, client, _ = build_transport()

        await transport.connect("https://stream.example.com/live?x=1", {"auth": "a b"})

        assert client.connect.await_args.args[0] == "https://stream.example.com/live?x=1&auth=a+b"

    @pytest.mark.asyncio
    async def test_refused_connect_becomes_signal(self):
        transport, client, _ = build_transport()
        client.connect.side_effect = SocketIOConnectionError("refused")

        await transport.connect("https://stream.example.com", {"auth": "tok"})

        signals = drain(transport)
        assert [(s.kind, s.reason) for s in signals] == [(SignalKind.CONNECT_ERROR, "refused")]

    @pytest.mark.asyncio
    async def test_connect_error_reported_once(self):
        transport, client, handlers = build_transport()

        async def rejected(*args, **kwargs):
            await handlers["connect_error"]({"message": "jwt expired"})
            raise SocketIOConnectionError("One or more namespaces failed to connect")

        client.connect.side_effect = rejected

        await transport.connect("https://stream.example.com", {"auth": "tok"})

        signals = drain(transport)
        assert len(signals) == 1
        assert signals[0].kind == SignalKind.CONNECT_ERROR
        assert signals[0].reason == "jwt expired"

    @pytest.mark.asyncio
    async def test_error_flag_resets_per_connect(self):
        transport, client, handlers = build_transport()
        await handlers["connect_error"](None)
        drain(transport)
        client.connect.side_effect = SocketIOConnectionError("")

        await transport.connect("https://stream.example.com", {"auth": "tok"})

        assert [s.reason for s in drain(transport)] == ["Connection failed"]

    @pytest.mark.asyncio
    async def test_server_disconnect_reason_is_kept(self):
        transport, _, handlers = build_transport()

        await handlers["connect"]()
        await handlers["disconnect"]("io server disconnect")
        await handlers["disconnect"]()

        connected, server_side, bare = drain(transport)
        assert connected.kind == SignalKind.CONNECTED
        assert server_side.kind == SignalKind.DISCONNECTED
        assert server_side.reason == "io server disconnect"
        assert ReconnectPolicy().classify(server_side) == FailureKind.AUTH
        assert bare.reason is None

    @pytest.mark.asyncio
    async def test_error_payload_messages(self):
        transport, _, handlers = build_transport()

        await handlers["error"]({"message": "bad channel"})
        await handlers["error"]({"code": 7})
        await handlers["error"](None)
        await handlers["error"]("plain")

        assert [s.reason for s in drain(transport)] == ["bad channel", "{'code': 7}", "Unknown error", "plain"]

    @pytest.mark.asyncio
    async def test_live_events_become_data(self):
        transport, _, handlers = build_transport()
        batch = [{"data": {"messageId": "m1"}}]

        await handlers["live_events"](batch)

        (signal,) = drain(transport)
        assert signal.kind == SignalKind.DATA
        assert signal.event == "live_events"
        assert signal.payload == batch

    @pytest.mark.asyncio
    async def test_other_events_caught_by_wildcard(self):
        transport, _, handlers = build_transport()

        await handlers["*"]("subscribed", {"id": "src-1"})
        await handlers["*"]("pair", 1, 2)

        single, multiple = drain(transport)
        assert (single.event, single.payload) == ("subscribed", {"id": "src-1"})
        assert (multiple.event, multiple.payload) == ("pair", [1, 2])

    @pytest.mark.asyncio
    async def test_emit_and_disconnect_delegate(self):
        transport, client, _ = build_transport()
        client.connected = True

        assert transport.connected is True
        await transport.emit("subscribe", {"id": "src-1", "type": "source"})
        await transport.disconnect()

        client.emit.assert_awaited_once_with("subscribe", {"id": "src-1", "type": "source"})
        client.disconnect.assert_awaited_once()
