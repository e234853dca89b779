"""
Per-request correlation and access logging.

The request id is bound into the structlog context so every lock, booking,
and CAS log line written while serving the request carries it. Health and
metrics paths are logged at debug so load balancer polling does not drown
the access log.
"""

import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.core.logging import bind_context, clear_context, get_logger

logger = get_logger(__name__)

QUIET_PATHS = frozenset({"/health", "/metrics"})


def _log_method(path: str, status_code: int):
    if status_code >= 500:
        return logger.error
    if path in QUIET_PATHS:
        return logger.debug
    if status_code >= 400:
        # 409/410 are ordinary outcomes of contended locks and bookings
        return logger.info if status_code in (409, 410) else logger.warning
    return logger.info


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        path = request.url.path
        started = time.perf_counter()

        clear_context()
        bind_context(request_id=request_id, method=request.method, path=path)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(
                "request_failed",
                error_type=type(e).__name__,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            raise

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        _log_method(path, response.status_code)(
            "request_completed",
            status_code=response.status_code,
            duration_ms=elapsed_ms,
        )
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_ms}ms"
        return response
