"""HTTP request/response logging middleware."""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log HTTP requests with method, path, tenant, status code, and latency.

    Server-side failures (5xx, including 503 on pool exhaustion) log at
    warning so they survive a production log level of WARNING.
    """

    SKIP_PATHS: frozenset[str] = frozenset(
        {"/health", "/docs", "/openapi.json", "/redoc"}
    )

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request and log timing information."""
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        structlog.contextvars.clear_contextvars()
        start = time.perf_counter()
        response = await call_next(request)
        latency_ms = int((time.perf_counter() - start) * 1000)

        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "http_request",
            method=request.method,
            path=request.url.path,
            tenant=getattr(request.state, "tenant_slug", None),
            status_code=response.status_code,
            latency_ms=latency_ms,
        )
        return response
