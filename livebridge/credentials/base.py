"""Base interface for credential store backends."""
from abc import ABC, abstractmethod
from typing import Optional
from .models import SecondaryIdentity, TenantLookupConfig


class CredentialStore(ABC):
    """
    Abstract interface for credential store implementations.

    The store is plain read/write storage. It is read by any number of
    concurrent sessions and written only by the credential-submission flow.
    Bearer tokens are never stored here.
    """

    @abstractmethod
    async def get_admin_token(self) -> Optional[str]:
        """Return the long-lived admin session token, if any."""
        pass

    @abstractmethod
    async def set_admin_token(self, token: Optional[str]) -> None:
        """Replace (or clear, with None) the admin session token."""
        pass

    @abstractmethod
    async def get_identity(self, tenant_id: str) -> Optional[SecondaryIdentity]:
        """
        Retrieve the secondary identity stored for a tenant.

        Args:
            tenant_id: Tenant identifier

        Returns:
            The identity, or None if the tenant has none
        """
        pass

    @abstractmethod
    async def set_identity(self, tenant_id: str, identity: SecondaryIdentity) -> None:
        """Store (or replace) the secondary identity for a tenant."""
        pass

    @abstractmethod
    async def remove_identity(self, tenant_id: str) -> bool:
        """
        Forget a tenant's secondary identity.

        Returns:
            True if an identity was removed
        """
        pass

    @abstractmethod
    async def get_lookup_config(self, tenant_id: str) -> Optional[TenantLookupConfig]:
        """Retrieve the profile lookup settings for a tenant."""
        pass

    @abstractmethod
    async def set_lookup_config(self, tenant_id: str, config: TenantLookupConfig) -> None:
        """Store the profile lookup settings for a tenant."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the backend is healthy and accessible.

        Returns:
            True if backend is healthy, False otherwise
        """
        pass
