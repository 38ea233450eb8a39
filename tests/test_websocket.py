"""Tests for WebSocket fan-out of session updates."""
import asyncio
from unittest.mock import AsyncMock

import pytest

from livebridge.metrics import Metrics
from livebridge.streaming.websocket import RateLimiter, SessionStreamManager


@pytest.mark.asyncio
async def test_rate_limiter():
    """Test rate limiter functionality."""
    limiter = RateLimiter(max_messages=5, window_seconds=1)

    for _ in range(5):
        assert limiter.check_limit() is True

    assert limiter.check_limit() is False

    await asyncio.sleep(1.1)
    assert limiter.check_limit() is True


def test_rate_limiter_remaining():
    """Test rate limiter remaining count."""
    limiter = RateLimiter(max_messages=10, window_seconds=60)

    assert limiter.remaining() == 10

    limiter.check_limit()
    assert limiter.remaining() == 9

    limiter.check_limit()
    limiter.check_limit()
    assert limiter.remaining() == 7


@pytest.mark.asyncio
async def test_stream_manager_connection_count():
    """Test stream manager tracks connections per session."""
    metrics = Metrics()
    manager = SessionStreamManager(metrics=metrics)
    first, second = AsyncMock(), AsyncMock()

    await manager.connect("s1", first)
    await manager.connect("s1", second)
    await manager.connect("s2", AsyncMock())

    assert manager.connection_count == 3
    assert manager.session_connections("s1") == 2
    assert metrics.registry.get_sample_value("livebridge_websocket_connections") == 3
    first.accept.assert_awaited_once()

    manager.disconnect("s1", first)
    manager.disconnect("s1", second)
    manager.disconnect("s1", second)
    assert manager.session_connections("s1") == 0
    assert manager.connection_count == 1
    assert metrics.registry.get_sample_value("livebridge_websocket_connections") == 1


@pytest.mark.asyncio
async def test_publish_is_scoped_to_session():
    manager = SessionStreamManager()
    queue_a = await manager.connect("s1", AsyncMock())
    queue_b = await manager.connect("s2", AsyncMock())

    publish = manager.publisher("s1")
    publish({"type": "selection", "messageId": "m1"})
    publish({"type": "selection", "messageId": "m2"})

    assert queue_a.get_nowait() == {"type": "selection", "messageId": "m1"}
    assert queue_a.get_nowait() == {"type": "selection", "messageId": "m2"}
    assert queue_b.empty()


@pytest.mark.asyncio
async def test_slow_consumer_drops_messages():
    manager = SessionStreamManager(max_queue=2)
    queue = await manager.connect("s1", AsyncMock())

    for i in range(5):
        manager.publish("s1", {"type": "events", "n": i})

    assert queue.qsize() == 2
    assert queue.get_nowait()["n"] == 0


def test_publish_without_connections():
    manager = SessionStreamManager()
    manager.publish("nobody", {"type": "closed"})
    assert manager.connection_count == 0
