"""
LiveBridge - live event stream session bridge.

Features:
- Live sessions over a Socket.IO event stream with supervised reconnects
- Token exchange for tenant secondary identities
- Profile correlation for the selected event
- Structured logging with correlation IDs
- Prometheus metrics
- Health checks (liveness and readiness)
"""
from typing import Callable, Optional

import httpx
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from .api.credentials_router import router as credentials_router
from .api.proxy_router import router as proxy_router
from .api.router import router as sessions_router
from .api.ws_router import router as ws_router
from .config import Settings, get_settings
from .credentials import create_credential_store
from .credentials.base import CredentialStore
from .health import HealthChecker
from .logging import get_logger, setup_logging
from .metrics import Metrics
from .middleware import CorrelationIdMiddleware, ErrorHandlerMiddleware, MetricsMiddleware
from .services.session_manager import SessionManager
from .services.token_exchanger import TokenExchanger
from .streaming.socketio_transport import SocketIOTransport
from .streaming.transport import StreamTransport
from .streaming.websocket import SessionStreamManager

SERVICE_NAME = "livebridge"
VERSION = "0.1.0"

logger = get_logger()


def create_app(
    settings: Optional[Settings] = None,
    credentials: Optional[CredentialStore] = None,
    transport_factory: Optional[Callable[[], StreamTransport]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Build the application and its shared components.

    Args:
        settings: Application settings (defaults to get_settings())
        credentials: Credential store (defaults to the configured backend)
        transport_factory: Builds one streaming transport per session
        http_client: Client shared by the token exchanger and profile lookups
    """
    settings = settings or get_settings()
    setup_logging(json_output=settings.LOG_JSON, service_name=SERVICE_NAME)

    metrics = Metrics(service_name=SERVICE_NAME, version=VERSION)
    credentials = credentials or create_credential_store()
    http_client = http_client or httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
    exchanger = TokenExchanger(
        settings.IDENTITY_URL,
        settings.IDENTITY_CLIENT_ID,
        settings.IDENTITY_CLIENT_SECRET,
        http_client=http_client,
    )
    streams = SessionStreamManager(metrics=metrics)
    sessions = SessionManager(
        credentials,
        exchanger,
        transport_factory=transport_factory or SocketIOTransport,
        settings=settings,
        http_client=http_client,
        metrics=metrics,
        publisher=streams.publisher,
    )
    health_checker = HealthChecker(
        service_name=SERVICE_NAME,
        version=VERSION,
        credential_store=credentials,
        session_count=lambda: len(sessions),
    )

    app = FastAPI(
        title="LiveBridge",
        version=VERSION,
        description="Live event stream session bridge with profile correlation",
    )
    app.state.settings = settings
    app.state.metrics = metrics
    app.state.credentials = credentials
    app.state.http_client = http_client
    app.state.exchanger = exchanger
    app.state.streams = streams
    app.state.sessions = sessions

    # Outermost first: errors are rendered after correlation ids are bound
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(MetricsMiddleware, metrics=metrics)
    app.add_middleware(CorrelationIdMiddleware)

    app.include_router(sessions_router)
    app.include_router(credentials_router)
    app.include_router(proxy_router)
    app.include_router(ws_router)

    metrics_app = make_asgi_app(registry=metrics.registry)
    app.mount("/metrics", metrics_app)

    @app.get("/health")
    async def health():
        """
        Liveness probe - basic health check.

        Returns 200 if service is running.
        """
        logger.debug("health_check_liveness")
        return health_checker.liveness()

    @app.get("/health/ready")
    async def health_ready():
        """
        Readiness probe - comprehensive health check.

        Returns:
            200: Service is ready to handle traffic
            503: Service is not ready
        """
        logger.debug("health_check_readiness")
        metrics.update_system_metrics()
        result = await health_checker.readiness()
        status_code = 200 if result["status"] == "ready" else 503
        return JSONResponse(result, status_code=status_code)

    @app.on_event("startup")
    async def startup_event():
        logger.info(
            "service_starting",
            version=VERSION,
            env=settings.ENV,
            credential_store=type(credentials).__name__,
            identity_url=settings.IDENTITY_URL,
            stream_url=settings.STREAM_URL,
        )
        if settings.ADMIN_TOKEN:
            await credentials.set_admin_token(settings.ADMIN_TOKEN)

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("service_stopping", sessions=len(sessions))
        await sessions.close_all()
        await exchanger.aclose()
        await http_client.aclose()
        close = getattr(credentials, "close", None)
        if close is not None:
            await close()
        metrics.app_up.labels(service=SERVICE_NAME, version=VERSION).set(0)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "livebridge.main:app",
        host="0.0.0.0",
        port=get_settings().SERVICE_PORT,
        reload=True,
    )
