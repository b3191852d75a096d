"""Request logging with a per-request correlation id."""
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger("app.requests")

CORRELATION_HEADER = "X-Correlation-ID"


class LoggingMiddleware(BaseHTTPMiddleware):
    """Stamp ``request.state.correlation_id`` and log method/path/status/duration.

    An incoming ``X-Correlation-ID`` is reused so a trace can span services;
    it is echoed back on the response either way.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        start = time.time()
        extra = {"correlation_id": correlation_id}

        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.time() - start) * 1000
            logger.error(
                f"[{correlation_id}] {request.method} {request.url.path} failed after {duration_ms:.1f}ms",
                exc_info=True,
                extra=extra,
            )
            raise

        duration_ms = (time.time() - start) * 1000
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level,
            f"[{correlation_id}] {request.method} {request.url.path} -> {response.status_code} ({duration_ms:.1f}ms)",
            extra=extra,
        )
        response.headers[CORRELATION_HEADER] = correlation_id
        return response
