from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..credentials.models import SecondaryIdentity
from ..services.token_models import BearerToken


class CredentialSubmission(BaseModel):
    """Challenge dialog input: a raw password, or an already-hashed one."""
    username: str = Field(min_length=1)
    password: Optional[str] = Field(default=None, min_length=1)
    password_hash: Optional[str] = None

    @model_validator(mode="after")
    def require_secret(self) -> "CredentialSubmission":
        if self.password is None and self.password_hash is None:
            raise ValueError("password or password_hash is required")
        return self

    def to_identity(self) -> SecondaryIdentity:
        if self.password_hash is not None:
            return SecondaryIdentity(username=self.username, secret_hash=self.password_hash)
        return SecondaryIdentity.from_password(self.username, self.password)


class CoreAuthTokenRequest(BaseModel):
    username: Optional[str] = None
    # SHA-256 hex digest of the password
    password: Optional[str] = None


class CoreAuthTokenResponse(BaseModel):
    access_token: str
    token_type: str
    expires_at: datetime
    refresh_token: Optional[str] = None
    uid: Optional[Union[str, int]] = None

    @classmethod
    def from_token(cls, token: BearerToken) -> "CoreAuthTokenResponse":
        return cls(
            access_token=token.value,
            token_type=token.token_type,
            expires_at=token.expires_at,
            refresh_token=token.refresh_token,
            uid=token.uid,
        )


class CreateSessionRequest(BaseModel):
    tenant_id: str = Field(min_length=1)
    source_id: str = Field(min_length=1)


class SelectEventRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: str = Field(alias="messageId", min_length=1)
