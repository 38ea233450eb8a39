"""Tests for middleware components."""
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from livebridge.errors import (
    AuthFailure,
    AuthFailureReason,
    CredentialsMissing,
    EventNotFound,
    ProfileLookupError,
    SessionNotFound,
)
from livebridge.metrics import Metrics
from livebridge.middleware import (
    CorrelationIdMiddleware,
    ErrorHandlerMiddleware,
    MetricsMiddleware,
    bridge_error_status,
    get_correlation_id,
)


def build_app(metrics: Metrics) -> FastAPI:
    app = FastAPI()
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(MetricsMiddleware, metrics=metrics)
    app.add_middleware(CorrelationIdMiddleware)

    @app.get("/echo")
    async def echo():
        return {"correlation_id": get_correlation_id()}

    @app.get("/lookup")
    async def lookup():
        raise ProfileLookupError("SST API error: 500 Internal Server Error", status_code=500)

    @app.get("/boom")
    async def boom():
        raise RuntimeError("boom")

    return app


@pytest.fixture
def metrics():
    return Metrics()


@pytest.fixture
def app(metrics):
    return build_app(metrics)


@pytest.mark.asyncio
async def test_correlation_id_injection(app):
    """Test that correlation ID is auto-generated if not provided."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/echo")
        assert response.status_code == 200
        assert "X-Correlation-ID" in response.headers
        assert response.json()["correlation_id"] == response.headers["X-Correlation-ID"]


@pytest.mark.asyncio
async def test_correlation_id_preserved(app):
    """Test that provided correlation ID is preserved."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        correlation_id = "test-correlation-123"
        response = await client.get("/echo", headers={"X-Correlation-ID": correlation_id})
        assert response.headers["X-Correlation-ID"] == correlation_id
        assert response.json()["correlation_id"] == correlation_id


@pytest.mark.asyncio
async def test_bridge_error_is_bad_gateway(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/lookup", headers={"X-Correlation-ID": "cid-1"})
        assert response.status_code == 502
        data = response.json()
        assert data["error"] == "ProfileLookupError"
        assert data["message"] == "SST API error: 500 Internal Server Error"
        assert data["correlation_id"] == "cid-1"
        assert data["path"] == "/lookup"


@pytest.mark.asyncio
async def test_unhandled_error_is_hidden(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/boom")
        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "InternalServerError"
        assert "boom" not in data["message"]


@pytest.mark.asyncio
async def test_requests_are_counted(app, metrics):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await client.get("/echo")
        await client.get("/echo")

    count = metrics.registry.get_sample_value(
        "http_requests_total",
        {"service": "livebridge", "method": "GET", "path": "/echo", "status": "200"},
    )
    assert count == 2
    assert metrics.registry.get_sample_value("http_requests_active") == 0


@pytest.mark.asyncio
async def test_path_parameters_are_not_labels(metrics):
    app = build_app(metrics)

    @app.get("/items/{item_id}")
    async def item(item_id: str):
        return {"id": item_id}

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await client.get("/items/a")
        await client.get("/items/b")

    count = metrics.registry.get_sample_value(
        "http_requests_total",
        {"service": "livebridge", "method": "GET", "path": "/items/{item_id}", "status": "200"},
    )
    assert count == 2


@pytest.mark.parametrize("exc, status", [
    (SessionNotFound("s1"), 404),
    (EventNotFound("m1"), 404),
    (CredentialsMissing("none"), 409),
    (AuthFailure(AuthFailureReason.INVALID_CREDENTIALS, "Authentication failed"), 401),
    (AuthFailure(AuthFailureReason.ENDPOINT_UNAVAILABLE, "down"), 502),
])
def test_bridge_error_status(exc, status):
    assert bridge_error_status(exc) == status
