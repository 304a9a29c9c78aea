"""
HTTP middleware for request logging context and Prometheus metrics.

Components:
- StructuredLoggingMiddleware: request_id context, completion log with latency
- PrometheusMiddleware: request latency and count per route
"""

import time
import uuid
from collections.abc import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from scribeledger.observability.logging import get_logger, request_context
from scribeledger.observability.metrics import track_request

logger = get_logger(__name__)

EXCLUDED_PATHS = {"/health", "/metrics", "/docs", "/redoc", "/openapi.json"}


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """
    Request logging with structured context.

    - Reads X-Request-ID or generates one, echoes it in the response
    - Logs method, path, status and latency for every non-probe request
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or f"req_{uuid.uuid4().hex[:16]}"

        with request_context(request_id=request_id):
            start_time = time.perf_counter()

            try:
                response = await call_next(request)
            except Exception as exc:
                latency_ms = (time.perf_counter() - start_time) * 1000
                logger.error(
                    "HTTP request failed",
                    method=request.method,
                    path=request.url.path,
                    latency_ms=round(latency_ms, 2),
                    exception_type=type(exc).__name__,
                    exc_info=True,
                )
                raise

            latency_ms = (time.perf_counter() - start_time) * 1000
            if request.url.path not in EXCLUDED_PATHS:
                logger.info(
                    "HTTP request completed",
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    latency_ms=round(latency_ms, 2),
                )

            response.headers["X-Request-ID"] = request_id
            return response


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Prometheus request metrics.

    Uses the matched route template as the endpoint label so that
    cardinality stays bounded.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        method = request.method
        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            route = request.scope.get("route")
            endpoint = getattr(route, "path", None) or "unmatched"
            track_request(
                method=method,
                endpoint=endpoint,
                status_code=status_code,
                duration_seconds=time.perf_counter() - start_time,
            )
