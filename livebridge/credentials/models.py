"""
Credential models held by the credential store
"""

import hashlib
import re
from pydantic import BaseModel, ConfigDict, Field, field_validator

_SHA256_HEX = re.compile(r"^[0-9a-f]{64}$")


def hash_secret(password: str, encoding: str = "utf-8") -> str:
    """
    Hash a raw password into the form the identity endpoint expects.

    The identity endpoint accepts an unsalted hex SHA-256 digest and does not
    hash it again, so this must run exactly once per password.

    Args:
        password: Raw password as typed by the operator
        encoding: Text encoding (default: utf-8)

    Returns:
        Lowercase hex SHA-256 digest
    """
    hasher = hashlib.sha256()
    hasher.update(password.encode(encoding))
    return hasher.hexdigest()


class SecondaryIdentity(BaseModel):
    """
    Tenant-scoped identity for the external identity endpoint
    """
    model_config = ConfigDict(frozen=True)

    username: str = Field(..., min_length=1)
    secret_hash: str = Field(..., description="Hex SHA-256 digest of the password")

    @field_validator("secret_hash")
    @classmethod
    def validate_secret_hash(cls, v: str) -> str:
        v = v.strip().lower()
        if not _SHA256_HEX.match(v):
            raise ValueError("secret_hash must be a hex SHA-256 digest, not a raw password")
        return v

    @classmethod
    def from_password(cls, username: str, password: str) -> "SecondaryIdentity":
        """Build an identity from a raw password (credential-submission flow only)"""
        return cls(username=username, secret_hash=hash_secret(password))

    @property
    def coalescing_key(self) -> tuple[str, str]:
        return (self.username, self.secret_hash)

    def __repr__(self) -> str:
        return f"SecondaryIdentity(username={self.username!r}, secret_hash='{self.secret_hash[:8]}...')"


class TenantLookupConfig(BaseModel):
    """
    Per-tenant settings for the profile lookup side channel
    """
    model_config = ConfigDict(frozen=True)

    client_id: str = Field(..., min_length=1)
    api_key: str = Field(..., min_length=1)
    api_endpoint: str = Field(..., min_length=1)

    @field_validator("api_endpoint")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

