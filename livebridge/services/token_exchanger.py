"""
TokenExchanger: trades a stored secondary identity for a bearer token
"""

import asyncio
from typing import Optional

import httpx
import orjson
import structlog
from pydantic import ValidationError

from ..credentials.models import SecondaryIdentity
from ..errors import AuthFailure, AuthFailureReason
from .token_models import BearerToken, TokenResponse, utcnow

log = structlog.get_logger()

# Status codes the identity endpoint uses for bad credentials
_CREDENTIAL_STATUSES = {400, 401, 403}


class TokenExchanger:
    """
    Password-grant exchange against the external identity endpoint.

    Provides:
    - A single ``acquire_token`` operation
    - Coalescing of concurrent exchanges for the same identity
    - Classification of failures into ``AuthFailure`` reasons

    The exchanger neither retries nor caches; both belong to the caller.
    """

    def __init__(
        self,
        identity_url: str,
        client_id: str,
        client_secret: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        """
        Initialize TokenExchanger

        Args:
            identity_url: Base URL of the identity endpoint
            client_id: Fixed OAuth2 client id
            client_secret: Fixed OAuth2 client secret
            http_client: Shared client (created and owned here if not provided)
            timeout: Request timeout in seconds for an owned client
        """
        self._token_url = f"{identity_url.rstrip('/')}/oauth2/token"
        self._client_id = client_id
        self._client_secret = client_secret
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._inflight: dict[tuple[str, str], asyncio.Task] = {}

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    async def acquire_token(self, identity: SecondaryIdentity) -> BearerToken:
        """
        Exchange an identity for a bearer token

        Concurrent callers for the same identity share one request. A caller
        being cancelled does not cancel the shared request.

        Args:
            identity: Tenant identity with an already-hashed secret

        Returns:
            BearerToken whose expiry is in the future

        Raises:
            AuthFailure: If the exchange does not yield a usable token
        """
        key = identity.coalescing_key
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._exchange(identity))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            log.debug("token.exchange_coalesced", username=identity.username)
        return await asyncio.shield(task)

    def _forget(self, key: tuple[str, str], task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the exception retrieved when every caller has gone away
        if not task.cancelled():
            task.exception()

    async def _exchange(self, identity: SecondaryIdentity) -> BearerToken:
        form = {
            "username": identity.username,
            # Sent as stored: the endpoint expects the hash and does not re-hash it
            "password": identity.secret_hash,
            "grant_type": "password",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        }
        log.info("token.exchange_started", username=identity.username, url=self._token_url)
        issued_at = utcnow()

        try:
            response = await self._http.post(self._token_url, data=form)
        except httpx.HTTPError as e:
            log.error("token.exchange_failed", username=identity.username, error=str(e), reason="endpoint_unavailable")
            raise AuthFailure(
                AuthFailureReason.ENDPOINT_UNAVAILABLE,
                f"Identity endpoint unreachable: {e}",
            ) from e

        if response.status_code in _CREDENTIAL_STATUSES:
            log.warning("token.exchange_rejected", username=identity.username, status=response.status_code)
            raise AuthFailure(
                AuthFailureReason.INVALID_CREDENTIALS,
                "Authentication failed",
                status_code=response.status_code,
            )
        if not response.is_success:
            log.error(
                "token.exchange_failed",
                username=identity.username,
                status=response.status_code,
                body_preview=response.text[:200],
                reason="endpoint_unavailable",
            )
            raise AuthFailure(
                AuthFailureReason.ENDPOINT_UNAVAILABLE,
                f"Identity endpoint error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        try:
            body = TokenResponse(**orjson.loads(response.content))
            token = BearerToken.from_response(body, issued_at=issued_at)
        except (orjson.JSONDecodeError, TypeError, ValidationError, ValueError) as e:
            log.error("token.exchange_malformed", username=identity.username, error=str(e))
            raise AuthFailure(
                AuthFailureReason.MALFORMED_RESPONSE,
                "Invalid response format",
                status_code=response.status_code,
            ) from e

        if not token.is_valid():
            log.error("token.exchange_malformed", username=identity.username, error="token already expired")
            raise AuthFailure(
                AuthFailureReason.MALFORMED_RESPONSE,
                "Identity endpoint returned an expired token",
                status_code=response.status_code,
            )

        log.info(
            "token.exchange_succeeded",
            username=identity.username,
            token=token.preview,
            expires_at=token.expires_at.isoformat(),
            uid=token.uid,
        )
        return token

    async def aclose(self) -> None:
        """Close the HTTP client if this exchanger created it"""
        if self._owns_client:
            await self._http.aclose()
