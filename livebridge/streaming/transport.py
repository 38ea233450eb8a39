"""Streaming transport interface and the typed signals it produces."""
import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class SignalKind(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CONNECT_ERROR = "connect_error"
    ERROR = "error"
    DATA = "data"
    # Raised by the supervisor itself once the delayed subscribe was emitted
    SUBSCRIBED = "subscribed"


class TransportSignal(BaseModel):
    """One inbound occurrence on the transport."""
    model_config = ConfigDict(frozen=True)

    kind: SignalKind
    reason: Optional[str] = None
    event: Optional[str] = None
    payload: Any = None

    @classmethod
    def connected(cls) -> "TransportSignal":
        return cls(kind=SignalKind.CONNECTED)

    @classmethod
    def disconnected(cls, reason: Optional[str] = None) -> "TransportSignal":
        return cls(kind=SignalKind.DISCONNECTED, reason=reason)

    @classmethod
    def connect_error(cls, reason: str) -> "TransportSignal":
        return cls(kind=SignalKind.CONNECT_ERROR, reason=reason)

    @classmethod
    def error(cls, reason: str) -> "TransportSignal":
        return cls(kind=SignalKind.ERROR, reason=reason)

    @classmethod
    def data(cls, event: str, payload: Any) -> "TransportSignal":
        return cls(kind=SignalKind.DATA, event=event, payload=payload)


class Subscription(BaseModel):
    """The channel a connection is subscribed to."""
    model_config = ConfigDict(frozen=True)

    channel_id: str
    channel_type: str = "source"

    def payload(self) -> dict[str, str]:
        return {"id": self.channel_id, "type": self.channel_type}


class StreamTransport(ABC):
    """
    Abstract persistent, bidirectional streaming connection.

    Implementations never report failures by raising from ``connect``; every
    outcome is delivered as a ``TransportSignal`` on ``signals`` so the
    supervisor sees one ordered stream.
    """

    def __init__(self):
        self.signals: asyncio.Queue[TransportSignal] = asyncio.Queue()

    def push(self, signal: TransportSignal) -> None:
        self.signals.put_nowait(signal)

    @property
    @abstractmethod
    def connected(self) -> bool:
        """Whether the transport currently has an open connection."""
        pass

    @abstractmethod
    async def connect(self, url: str, query: dict[str, str]) -> None:
        """
        Open the connection.

        Args:
            url: Base URL of the streaming endpoint
            query: Connection parameters appended to the URL (carries the token)
        """
        pass

    @abstractmethod
    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        """Send a named event to the server."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the connection. Must be safe to call when already closed."""
        pass
