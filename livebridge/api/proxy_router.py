"""
Identity and profile proxy routes

Thin HTTP front-ends over the token exchanger and the profile lookup client,
for callers that only hold the credentials.
"""

from typing import Any, Optional

import httpx
import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import ValidationError

from ..auth.admin_token import verify_admin_token
from ..config import Settings
from ..credentials.models import SecondaryIdentity, TenantLookupConfig
from ..errors import AuthFailure, AuthFailureReason, ProfileLookupError
from ..metrics import Metrics
from ..services.profile_correlator import ProfileLookupClient
from ..services.token_exchanger import TokenExchanger
from .deps import get_app_settings, get_exchanger, get_http_client, get_metrics
from .schemas import CoreAuthTokenRequest, CoreAuthTokenResponse

log = structlog.get_logger()

router = APIRouter(prefix="/v1", tags=["proxy"], dependencies=[Depends(verify_admin_token)])


@router.post("/core-auth/token", response_model=CoreAuthTokenResponse)
async def exchange_token(
    req: CoreAuthTokenRequest,
    exchanger: TokenExchanger = Depends(get_exchanger),
    metrics: Metrics = Depends(get_metrics),
) -> CoreAuthTokenResponse:
    """
    Exchange a secondary identity for a bearer token

    - **username**: Core API user name
    - **password**: SHA-256 hex digest of the password

    Returns 401 for rejected credentials and 502 when the identity endpoint
    is unreachable or answers with something unusable.
    """
    if not req.username or not req.password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username and password are required"
        )
    try:
        identity = SecondaryIdentity(username=req.username, secret_hash=req.password)
    except ValidationError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="password must be a SHA-256 hex digest"
        )

    try:
        token = await exchanger.acquire_token(identity)
    except AuthFailure as e:
        metrics.record_token_exchange(e.reason.value)
        if e.reason == AuthFailureReason.INVALID_CREDENTIALS:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    metrics.record_token_exchange("success")
    return CoreAuthTokenResponse.from_token(token)


@router.get("/profile/{event_id}")
async def lookup_profile(
    event_id: str,
    x_client_id: Optional[str] = Header(default=None),
    x_api_key: Optional[str] = Header(default=None),
    x_api_endpoint: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_app_settings),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    metrics: Metrics = Depends(get_metrics),
) -> Any:
    """
    Fetch the profile and segments for an event's identifier

    Requires the x-client-id, x-api-key and x-api-endpoint headers.
    """
    if not x_client_id or not x_api_key or not x_api_endpoint:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required headers: x-client-id, x-api-key, or x-api-endpoint"
        )

    client = ProfileLookupClient(
        TenantLookupConfig(client_id=x_client_id, api_key=x_api_key, api_endpoint=x_api_endpoint),
        http_client=http_client,
        campaign_prefix=settings.PROFILE_CAMPAIGN_PREFIX,
    )
    try:
        record = await client.fetch(event_id)
    except ProfileLookupError as e:
        metrics.record_profile_lookup("error")
        raise HTTPException(
            status_code=e.status_code if e.status_code and e.status_code >= 400 else status.HTTP_502_BAD_GATEWAY,
            detail=str(e)
        )

    metrics.record_profile_lookup("success")
    return record
