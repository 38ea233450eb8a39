"""
Middleware for observability and error responses.
"""
import time
import uuid
from contextvars import ContextVar

import structlog
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from .errors import (
    AuthFailure,
    AuthFailureReason,
    BridgeError,
    CredentialsMissing,
    EventNotFound,
    SessionNotFound,
)

log = structlog.get_logger()

# Correlation ID of the request being handled
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    return correlation_id_var.get()


def route_label(request: Request) -> str:
    """Route template (``/v1/sessions/{session_id}``) so ids never become label values."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


def bridge_error_status(exc: BridgeError) -> int:
    if isinstance(exc, (SessionNotFound, EventNotFound)):
        return 404
    if isinstance(exc, CredentialsMissing):
        return 409
    if isinstance(exc, AuthFailure) and exc.reason == AuthFailureReason.INVALID_CREDENTIALS:
        return 401
    return 502


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with a correlation id.

    The id comes from X-Correlation-ID when the caller sends one. It is bound
    to structlog's context and echoed back in the response headers.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        correlation_id_var.set(correlation_id)
        request.state.correlation_id = correlation_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            correlation_id=correlation_id,
            http_method=request.method,
            http_path=request.url.path,
        )

        response = await call_next(request)
        response.headers["x-correlation-id"] = correlation_id
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """Counts and times HTTP requests by route template."""

    def __init__(self, app, metrics):
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith("/metrics"):
            return await call_next(request)

        self.metrics.http_requests_active.inc()
        start_time = time.time()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            duration = time.time() - start_time
            path = route_label(request)
            self.metrics.http_requests_total.labels(
                service=self.metrics.service_name,
                method=request.method,
                path=path,
                status=status,
            ).inc()
            self.metrics.http_request_duration.labels(
                service=self.metrics.service_name,
                method=request.method,
                path=path,
            ).observe(duration)
            self.metrics.http_requests_active.dec()
            log.info("http_request", http_status=status, route=path, duration_ms=round(duration * 1000, 2))


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Renders exceptions that escape the routes as JSON.

    Bridge errors keep their message; anything else is reported as an opaque
    500 so internals do not leak.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except BridgeError as exc:
            status = bridge_error_status(exc)
            log.warning("bridge.exception", error=str(exc), error_type=type(exc).__name__, status=status)
            return self._render(request, status, type(exc).__name__, str(exc))
        except Exception as exc:
            log.error("unhandled.exception", error=str(exc), error_type=type(exc).__name__, exc_info=True)
            return self._render(request, 500, "InternalServerError", "An unexpected error occurred")

    @staticmethod
    def _render(request: Request, status: int, error: str, message: str) -> JSONResponse:
        return JSONResponse(
            status_code=status,
            content={
                "error": error,
                "message": message,
                "correlation_id": get_correlation_id(),
                "path": request.url.path,
            },
        )
