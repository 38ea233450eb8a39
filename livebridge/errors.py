"""
Error taxonomy for the live event session bridge.

Every failure in the bridge is scoped to one session and is recoverable by
re-authenticating, reconnecting, or re-selecting.
"""

from enum import Enum
from typing import Optional


class BridgeError(Exception):
    """Base exception for bridge errors"""
    pass


class AuthFailureReason(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    ENDPOINT_UNAVAILABLE = "endpoint_unavailable"
    MALFORMED_RESPONSE = "malformed_response"


class AuthFailure(BridgeError):
    """Raised when the identity endpoint does not yield a usable bearer token"""

    def __init__(self, reason: AuthFailureReason, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.reason = reason
        self.status_code = status_code

    def __repr__(self) -> str:
        return f"AuthFailure(reason={self.reason.value!r}, message={str(self)!r})"


class CredentialsMissing(BridgeError):
    """Raised when a tenant has no stored secondary identity"""
    pass


class CredentialStoreUnavailable(BridgeError):
    """Raised when the credential store cannot be read"""
    pass


class AuthRejected(BridgeError):
    """Raised when the live connection is refused or severed for authentication reasons"""
    pass


class StreamConnectionError(BridgeError):
    """Raised when the streaming transport fails and retries are exhausted"""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class NormalizationGap(BridgeError):
    """A raw record was missing fields the canonical event expects"""

    def __init__(self, fields: tuple[str, ...], message_id: str):
        super().__init__(f"record {message_id} missing {', '.join(fields)}")
        self.fields = fields
        self.message_id = message_id


class ProfileLookupError(BridgeError, LookupError):
    """Raised when the profile side channel fails"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EventNotFound(BridgeError, KeyError):
    """Raised when selecting a message id that is not in the event log"""

    def __str__(self) -> str:
        return f"Event {self.args[0]!r} not found"


class SessionNotFound(BridgeError, KeyError):
    """Raised when a session id does not refer to an active session"""

    def __str__(self) -> str:
        return f"Session {self.args[0]!r} not found"
