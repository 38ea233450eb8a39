"""
Tests for the password-grant token exchange

Tests cover:
- Successful exchange with expiry from the JWT claim or expires_in
- Failure classification (credentials, endpoint, malformed body)
- Coalescing of concurrent exchanges
"""

import asyncio
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from livebridge.credentials.models import SecondaryIdentity
from livebridge.errors import AuthFailure, AuthFailureReason
from livebridge.services.token_exchanger import TokenExchanger
from livebridge.services.token_models import BearerToken, TokenResponse, decode_expiry_claim

from conftest import make_jwt


def exchanger_for(handler) -> TokenExchanger:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TokenExchanger("https://identity.example.com/", "client_id", "client_secret", http_client=client)


class TestTokenModels:
    """Expiry derivation"""

    def test_decode_expiry_claim(self):
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)
        decoded = decode_expiry_claim(make_jwt(exp))
        assert decoded is not None
        assert abs((decoded - exp).total_seconds()) < 1

    def test_decode_expiry_claim_opaque_token(self):
        assert decode_expiry_claim("opaque-token") is None
        assert decode_expiry_claim("a.!!!.c") is None

    def test_from_response_prefers_claim(self):
        exp = datetime.now(timezone.utc) + timedelta(hours=2)
        token = BearerToken.from_response(TokenResponse(access_token=make_jwt(exp), expires_in=60))
        assert token.ttl_remaining > 3600

    def test_from_response_falls_back_to_expires_in(self):
        token = BearerToken.from_response(TokenResponse(access_token="opaque", expires_in=600))
        assert 590 < token.ttl_remaining <= 600

    def test_from_response_without_expiry(self):
        with pytest.raises(ValueError):
            BearerToken.from_response(TokenResponse(access_token="opaque"))

    def test_repr_hides_token(self):
        token = BearerToken(value="abcdefghijklmnop", expires_at=datetime.now(timezone.utc))
        assert "abcdefghijklmnop" not in repr(token)
        assert token.is_expired


class TestAcquireToken:
    """Exchange against a mocked identity endpoint"""

    @pytest.mark.asyncio
    async def test_success_has_future_expiry(self, identity):
        seen = {}
        exp = datetime.now(timezone.utc) + timedelta(hours=1)

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={
                "access_token": make_jwt(exp),
                "token_type": "Bearer",
                "expires_in": 3600,
                "uid": "u-1",
            })

        token = await exchanger_for(handler).acquire_token(identity)

        assert token.is_valid()
        assert token.expires_at > datetime.now(timezone.utc)
        assert token.uid == "u-1"
        assert seen["url"] == "https://identity.example.com/oauth2/token"
        assert seen["form"]["grant_type"] == ["password"]
        assert seen["form"]["username"] == ["analyst@example.com"]
        # The stored hash is sent as-is
        assert seen["form"]["password"] == [identity.secret_hash]
        assert seen["form"]["client_id"] == ["client_id"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 403])
    async def test_rejected_credentials(self, identity, status):
        exchanger = exchanger_for(lambda request: httpx.Response(status, json={"error": "invalid_grant"}))

        with pytest.raises(AuthFailure) as exc_info:
            await exchanger.acquire_token(identity)

        assert exc_info.value.reason == AuthFailureReason.INVALID_CREDENTIALS
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_server_error_is_endpoint_unavailable(self, identity):
        exchanger = exchanger_for(lambda request: httpx.Response(503, text="maintenance"))

        with pytest.raises(AuthFailure) as exc_info:
            await exchanger.acquire_token(identity)

        assert exc_info.value.reason == AuthFailureReason.ENDPOINT_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_unreachable_endpoint(self, identity):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(AuthFailure) as exc_info:
            await exchanger_for(handler).acquire_token(identity)

        assert exc_info.value.reason == AuthFailureReason.ENDPOINT_UNAVAILABLE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        httpx.Response(200, text="<html>not json</html>"),
        httpx.Response(200, json={"token_type": "Bearer"}),
        httpx.Response(200, json={"access_token": "opaque-without-expiry"}),
    ])
    async def test_malformed_response(self, identity, response):
        exchanger = exchanger_for(lambda request: response)

        with pytest.raises(AuthFailure) as exc_info:
            await exchanger.acquire_token(identity)

        assert exc_info.value.reason == AuthFailureReason.MALFORMED_RESPONSE

    @pytest.mark.asyncio
    async def test_already_expired_token_is_malformed(self, identity):
        exp = datetime.now(timezone.utc) - timedelta(minutes=1)
        exchanger = exchanger_for(lambda request: httpx.Response(200, json={"access_token": make_jwt(exp)}))

        with pytest.raises(AuthFailure) as exc_info:
            await exchanger.acquire_token(identity)

        assert exc_info.value.reason == AuthFailureReason.MALFORMED_RESPONSE


class TestCoalescing:
    """Concurrent exchanges for one identity share a request"""

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_request(self, identity):
        calls = []
        release = asyncio.Event()

        async def handler(request):
            calls.append(request)
            await release.wait()
            return httpx.Response(200, json={"access_token": "opaque", "expires_in": 300})

        exchanger = exchanger_for(handler)
        first = asyncio.create_task(exchanger.acquire_token(identity))
        second = asyncio.create_task(exchanger.acquire_token(identity))
        await asyncio.sleep(0.01)
        assert exchanger.inflight_count == 1

        release.set()
        token_a, token_b = await asyncio.gather(first, second)

        assert len(calls) == 1
        assert token_a == token_b
        assert exchanger.inflight_count == 0

    @pytest.mark.asyncio
    async def test_completed_exchange_is_not_reused(self, identity):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"access_token": f"opaque-{len(calls)}", "expires_in": 300})

        exchanger = exchanger_for(handler)
        first = await exchanger.acquire_token(identity)
        second = await exchanger.acquire_token(identity)

        assert len(calls) == 2
        assert first.value != second.value

    @pytest.mark.asyncio
    async def test_different_identities_do_not_coalesce(self, identity):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"access_token": "opaque", "expires_in": 300})

        exchanger = exchanger_for(handler)
        other = SecondaryIdentity.from_password("other@example.com", "s3cret")
        await asyncio.gather(exchanger.acquire_token(identity), exchanger.acquire_token(other))

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_failure_is_shared_and_then_forgotten(self, identity):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401)

        exchanger = exchanger_for(handler)
        results = await asyncio.gather(
            exchanger.acquire_token(identity),
            exchanger.acquire_token(identity),
            return_exceptions=True,
        )

        assert all(isinstance(r, AuthFailure) for r in results)
        assert exchanger.inflight_count == 0
        with pytest.raises(AuthFailure):
            await exchanger.acquire_token(identity)
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_shared_request(self, identity):
        release = asyncio.Event()

        async def handler(request):
            await release.wait()
            return httpx.Response(200, json={"access_token": "opaque", "expires_in": 300})

        exchanger = exchanger_for(handler)
        impatient = asyncio.create_task(exchanger.acquire_token(identity))
        patient = asyncio.create_task(exchanger.acquire_token(identity))
        await asyncio.sleep(0.01)

        impatient.cancel()
        release.set()

        token = await patient
        assert token.value == "opaque"
        assert impatient.cancelled()
