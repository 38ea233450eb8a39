"""Reconnection and failure-classification policy for the stream supervisor."""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .transport import SignalKind, TransportSignal


class FailureKind(str, Enum):
    CLIENT = "client"
    AUTH = "auth"
    TRANSIENT = "transient"


class ReconnectPolicy(BaseModel):
    """
    Tunable reconnection behaviour.

    Attempts are spaced by a fixed ``delay``; after ``max_attempts`` failed
    reconnects the supervisor gives up. Failures classified as ``AUTH`` are
    never retried with the same token.
    """
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=5, ge=0)
    delay: float = Field(default=1.0, ge=0)
    subscribe_grace: float = Field(default=1.0, ge=0)
    # Disconnect reasons meaning the server closed the session on purpose
    auth_disconnect_reasons: frozenset[str] = frozenset({"io server disconnect", "server disconnect"})
    client_disconnect_reasons: frozenset[str] = frozenset({"io client disconnect", "client disconnect"})
    # Substrings of error messages that indicate a rejected token
    auth_markers: tuple[str, ...] = (
        "unauthorized",
        "unauthenticated",
        "forbidden",
        "invalid token",
        "token expired",
        "jwt",
        "authentication",
        "not authorized",
        "401",
        "403",
    )

    def classify(self, signal: TransportSignal) -> FailureKind:
        """
        Classify a disconnect or connect-error signal.

        Args:
            signal: DISCONNECTED or CONNECT_ERROR signal

        Returns:
            Whether the failure was caused by us, by authentication, or is transient
        """
        reason = (signal.reason or "").strip().lower()
        if signal.kind == SignalKind.DISCONNECTED:
            if reason in self.client_disconnect_reasons:
                return FailureKind.CLIENT
            if reason in self.auth_disconnect_reasons:
                return FailureKind.AUTH
        if self._has_auth_marker(reason):
            return FailureKind.AUTH
        return FailureKind.TRANSIENT

    def should_retry(self, attempts: int) -> bool:
        return attempts < self.max_attempts

    def _has_auth_marker(self, reason: Optional[str]) -> bool:
        return bool(reason) and any(marker in reason for marker in self.auth_markers)
