"""
Bearer token models for the identity exchange
"""

import base64
import binascii
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def decode_expiry_claim(value: str) -> Optional[datetime]:
    """
    Read the ``exp`` claim from a JWT-shaped token without verifying it.

    Args:
        value: Raw token string

    Returns:
        Expiry as an aware UTC datetime, or None if the token carries no
        readable ``exp`` claim
    """
    parts = value.split(".")
    if len(parts) < 2:
        return None
    segment = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = orjson.loads(base64.urlsafe_b64decode(segment))
    except (binascii.Error, ValueError):
        return None
    exp = claims.get("exp") if isinstance(claims, dict) else None
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    try:
        return datetime.fromtimestamp(exp, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


class TokenResponse(BaseModel):
    """
    Successful response body of the identity endpoint
    """
    model_config = ConfigDict(extra="allow")

    access_token: str = Field(..., min_length=1)
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    uid: Optional[Union[str, int]] = None


class BearerToken(BaseModel):
    """
    Short-lived bearer token issued by the identity endpoint
    """
    model_config = ConfigDict(frozen=True)

    value: str
    token_type: str = "Bearer"
    expires_at: datetime
    refresh_token: Optional[str] = None
    uid: Optional[Union[str, int]] = None

    @classmethod
    def from_response(cls, response: TokenResponse, issued_at: Optional[datetime] = None) -> "BearerToken":
        """
        Build a token from an exchange response.

        The expiry comes from the token's own ``exp`` claim; ``expires_in`` is
        only used when the token is not self-describing.

        Raises:
            ValueError: If no expiry can be derived
        """
        expires_at = decode_expiry_claim(response.access_token)
        if expires_at is None and response.expires_in is not None:
            expires_at = (issued_at or utcnow()) + timedelta(seconds=response.expires_in)
        if expires_at is None:
            raise ValueError("token carries no expiry claim and no expires_in")
        return cls(
            value=response.access_token,
            token_type=response.token_type,
            expires_at=expires_at,
            refresh_token=response.refresh_token,
            uid=response.uid,
        )

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """A token is valid only while now < expiry"""
        return (now or utcnow()) < self.expires_at

    @property
    def is_expired(self) -> bool:
        return not self.is_valid()

    @property
    def ttl_remaining(self) -> float:
        """Get remaining time-to-live in seconds"""
        if self.is_expired:
            return 0.0
        return (self.expires_at - utcnow()).total_seconds()

    @property
    def preview(self) -> str:
        return f"{self.value[:8]}..."

    def __repr__(self) -> str:
        return f"BearerToken(value={self.preview!r}, expires_at={self.expires_at.isoformat()!r})"

    __str__ = __repr__
