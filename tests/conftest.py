"""Shared test helpers: a scripted streaming transport, tokens and identities."""
import asyncio
import base64
import json
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import pytest

from livebridge.credentials.models import SecondaryIdentity
from livebridge.services.token_models import BearerToken
from livebridge.streaming.transport import StreamTransport, TransportSignal


def make_jwt(exp: datetime) -> str:
    """Unsigned JWT carrying only an ``exp`` claim."""
    def _segment(data: dict) -> str:
        raw = json.dumps(data).encode()
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()
    return f"{_segment({'alg': 'none', 'typ': 'JWT'})}.{_segment({'exp': int(exp.timestamp())})}.sig"


def make_token(value: str = "token-abc", ttl: float = 3600) -> BearerToken:
    return BearerToken(value=value, expires_at=datetime.now(timezone.utc) + timedelta(seconds=ttl))


async def settle(rounds: int = 20):
    """Let queued callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
    await asyncio.sleep(0.01)


async def eventually(predicate: Callable[[], bool], timeout: float = 1.0):
    """Wait until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


class FakeTransport(StreamTransport):
    """
    Scripted transport.

    ``behaviour`` decides what happens on each connect: "accept" (default),
    or any other string, which is pushed as a connect error reason.
    """

    def __init__(self, behaviour: Optional[Callable[[int], str]] = None):
        super().__init__()
        self._connected = False
        self._behaviour = behaviour or (lambda attempt: "accept")
        self.connects: list[tuple[str, dict]] = []
        self.emitted: list[tuple[str, dict]] = []
        self.disconnects = 0
        self.loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self, url, query):
        self.loop = asyncio.get_running_loop()
        self.connects.append((url, dict(query)))
        outcome = self._behaviour(len(self.connects))
        if outcome == "accept":
            self._connected = True
            self.push(TransportSignal.connected())
        else:
            self.push(TransportSignal.connect_error(outcome))

    async def emit(self, event, payload):
        self.emitted.append((event, payload))

    async def disconnect(self):
        self.disconnects += 1
        self._connected = False

    def drop(self, reason: str):
        self._connected = False
        self.push(TransportSignal.disconnected(reason))

    def deliver(self, payload, event: str = "live_events"):
        self.push(TransportSignal.data(event, payload))

    def deliver_threadsafe(self, payload, event: str = "live_events"):
        """Deliver from outside the event loop (e.g. a TestClient test body)."""
        self.loop.call_soon_threadsafe(self.deliver, payload, event)

    def emitted_names(self) -> list[str]:
        return [name for name, _ in self.emitted]


@pytest.fixture
def identity():
    return SecondaryIdentity.from_password("analyst@example.com", "s3cret")


@pytest.fixture
def token():
    return make_token()
