"""
Credential storage for the live event console

Holds the admin session token and, per tenant, the secondary identity used
for the token exchange and the profile lookup settings.
"""

import structlog

from ..config import get_settings
from .base import CredentialStore
from .memory import InMemoryCredentialStore
from .redis_store import RedisCredentialStore
from .models import (
    SecondaryIdentity,
    TenantLookupConfig,
    hash_secret,
)

log = structlog.get_logger()


def create_credential_store() -> CredentialStore:
    """
    Create the credential store based on configuration.

    Returns:
        CredentialStore instance based on the CREDENTIAL_STORE setting
    """
    settings = get_settings()
    if settings.CREDENTIAL_STORE == "redis":
        if not settings.REDIS_URL:
            log.warning(
                "credentials.store_fallback",
                requested="redis",
                actual="memory",
                reason="REDIS_URL not configured"
            )
            return InMemoryCredentialStore()

        log.info("credentials.store_selected", type="redis", url=str(settings.REDIS_URL))
        return RedisCredentialStore()

    log.info("credentials.store_selected", type="memory")
    return InMemoryCredentialStore()


__all__ = [
    "CredentialStore",
    "InMemoryCredentialStore",
    "RedisCredentialStore",
    "SecondaryIdentity",
    "TenantLookupConfig",
    "hash_secret",
    "create_credential_store",
]
