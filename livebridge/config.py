from pydantic import AnyUrl
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal

class Settings(BaseSettings):
    ENV: str = "dev"
    SERVICE_PORT: int = 8080
    LOG_JSON: bool = True
    REDIS_URL: AnyUrl | None = None
    # Credential store backend: "memory" or "redis"
    CREDENTIAL_STORE: Literal["memory", "redis"] = "memory"
    # Admin session token (long-lived operator credential)
    ADMIN_TOKEN: str = ""
    REQUIRE_AUTH: bool = False
    # Identity exchange endpoint (password grant)
    IDENTITY_URL: str = "http://localhost:9000"
    IDENTITY_CLIENT_ID: str = "client_id"
    IDENTITY_CLIENT_SECRET: str = "client_secret"
    # Streaming transport
    STREAM_URL: str = "http://localhost:9100"
    STREAM_AUTH_PARAM: str = "auth"
    STREAM_CHANNEL_TYPE: str = "source"
    SUBSCRIBE_GRACE_SECONDS: float = 1.0
    RECONNECT_DELAY_SECONDS: float = 1.0
    RECONNECT_MAX_ATTEMPTS: int = 5
    # How long a mount request waits for the connection to settle
    CONNECT_SETTLE_SECONDS: float = 5.0
    HTTP_TIMEOUT_SECONDS: float = 10.0
    PROFILE_CAMPAIGN_PREFIX: str = "VIZVRM"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
