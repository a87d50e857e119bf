from __future__ import annotations

import logging
import time
import uuid

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from opai.context import bind_context
from opai.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("opai.request")

CORRELATION_HEADER = "x-correlation-id"
TENANT_HEADER = "x-tenant-id"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds correlation and tenant ids for the request, then logs and meters it."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        tenant_id = request.headers.get(TENANT_HEADER)
        request.state.correlation_id = correlation_id
        request.state.tenant_id = tenant_id

        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("correlation_id", correlation_id)

        method = request.method
        started = time.perf_counter()
        with bind_context(correlation_id=correlation_id, tenant_id=tenant_id):
            try:
                response = await call_next(request)
            except Exception:
                duration = time.perf_counter() - started
                path = resolve_http_path_label(request)
                observe_http_request(method=method, path=path, status=500, duration=duration)
                logger.error(
                    "http.error",
                    exc_info=True,
                    extra={"method": method, "path": path, "status_code": 500, "duration_ms": round(duration * 1000, 2)},
                )
                raise

            duration = time.perf_counter() - started
            path = resolve_http_path_label(request)
            observe_http_request(method=method, path=path, status=response.status_code, duration=duration)
            logger.info(
                "http.request",
                extra={
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration * 1000, 2),
                },
            )

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
