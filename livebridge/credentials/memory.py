"""In-memory credential store."""
from typing import Optional
import structlog
from .base import CredentialStore
from .models import SecondaryIdentity, TenantLookupConfig

log = structlog.get_logger()


class InMemoryCredentialStore(CredentialStore):
    """In-memory implementation of the credential store."""

    def __init__(self, admin_token: Optional[str] = None):
        self._admin_token = admin_token or None
        self._identities: dict[str, SecondaryIdentity] = {}
        self._lookups: dict[str, TenantLookupConfig] = {}

    async def get_admin_token(self) -> Optional[str]:
        return self._admin_token

    async def set_admin_token(self, token: Optional[str]) -> None:
        self._admin_token = token or None
        log.info("credentials.admin_token_set", cleared=token is None, store="memory")

    async def get_identity(self, tenant_id: str) -> Optional[SecondaryIdentity]:
        return self._identities.get(tenant_id)

    async def set_identity(self, tenant_id: str, identity: SecondaryIdentity) -> None:
        self._identities[tenant_id] = identity
        log.info("credentials.identity_stored", tenant_id=tenant_id, username=identity.username, store="memory")

    async def remove_identity(self, tenant_id: str) -> bool:
        removed = self._identities.pop(tenant_id, None) is not None
        if removed:
            log.info("credentials.identity_removed", tenant_id=tenant_id, store="memory")
        return removed

    async def get_lookup_config(self, tenant_id: str) -> Optional[TenantLookupConfig]:
        return self._lookups.get(tenant_id)

    async def set_lookup_config(self, tenant_id: str, config: TenantLookupConfig) -> None:
        self._lookups[tenant_id] = config
        log.info("credentials.lookup_stored", tenant_id=tenant_id, client_id=config.client_id, store="memory")

    async def health_check(self) -> bool:
        """In-memory store is always healthy."""
        return True
