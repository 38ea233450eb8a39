"""Admin session token authentication."""
import secrets
from typing import Optional

import structlog
from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import APIKeyHeader

from ..api.deps import get_app_settings, get_credential_store
from ..config import Settings
from ..credentials.base import CredentialStore

log = structlog.get_logger()

# Admin token header scheme
admin_token_header = APIKeyHeader(name="X-Admin-Token", auto_error=False)


async def verify_admin_token(
    request: Request,
    token: Optional[str] = Security(admin_token_header),
    settings: Settings = Depends(get_app_settings),
    store: CredentialStore = Depends(get_credential_store),
) -> Optional[str]:
    """
    Dependency to verify the admin session token.

    Skipped entirely unless REQUIRE_AUTH is set.

    Raises:
        HTTPException: If the token is missing, unknown, or none is configured
    """
    if not settings.REQUIRE_AUTH:
        return None

    expected = await store.get_admin_token()
    if not expected:
        log.warning("auth.failed", reason="no_admin_token")
        raise HTTPException(
            status_code=401,
            detail="Auth token not found. Sign in again.",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    if not token:
        log.warning("auth.failed", reason="missing_token", path=request.url.path)
        raise HTTPException(
            status_code=401,
            detail="Missing admin token. Provide X-Admin-Token header.",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    if not secrets.compare_digest(token, expected):
        log.warning("auth.failed", reason="invalid_token", path=request.url.path)
        raise HTTPException(
            status_code=403,
            detail="Invalid admin token",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    log.debug("auth.success")
    return token
