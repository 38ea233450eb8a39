"""
Tenant credential routes

The challenge dialog submits the secondary identity here; the raw password
is hashed once on arrival and never stored.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import ValidationError

from ..auth.admin_token import verify_admin_token
from ..credentials.base import CredentialStore
from ..credentials.models import TenantLookupConfig
from .deps import get_credential_store
from .schemas import CredentialSubmission

log = structlog.get_logger()

router = APIRouter(prefix="/v1/tenants", tags=["credentials"], dependencies=[Depends(verify_admin_token)])


@router.post("/{tenant_id}/credentials", status_code=status.HTTP_204_NO_CONTENT)
async def submit_credentials(
    tenant_id: str,
    req: CredentialSubmission,
    store: CredentialStore = Depends(get_credential_store),
) -> None:
    """
    Store the tenant's secondary identity

    - **username**: Core API user name
    - **password**: Raw password (hashed before storage), or
    - **password_hash**: SHA-256 hex digest of the password
    """
    try:
        identity = req.to_identity()
    except ValidationError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="password_hash must be a SHA-256 hex digest"
        )
    await store.set_identity(tenant_id, identity)
    log.info("credentials.submitted", tenant_id=tenant_id, username=identity.username)


@router.delete("/{tenant_id}/credentials", status_code=status.HTTP_204_NO_CONTENT)
async def forget_credentials(
    tenant_id: str,
    store: CredentialStore = Depends(get_credential_store),
) -> None:
    await store.remove_identity(tenant_id)


@router.put("/{tenant_id}/lookup", status_code=status.HTTP_204_NO_CONTENT)
async def set_lookup_config(
    tenant_id: str,
    config: TenantLookupConfig,
    store: CredentialStore = Depends(get_credential_store),
) -> None:
    """Store the profile lookup settings (client id, API key, endpoint)"""
    await store.set_lookup_config(tenant_id, config)
