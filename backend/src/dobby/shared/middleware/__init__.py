"""FastAPI middleware — per-request context and access logging."""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable, Awaitable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Health probes log at debug
QUIET_PATHS = frozenset({"/api/v1/health"})


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id and writes one access-log line for it.

    The id comes from the caller's ``X-Request-ID`` header when present,
    is bound into structlog's context for every log line emitted while the
    request is handled (gateway retries, fallbacks, ...), and is echoed back
    on the response.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.bind_contextvars(request_id=request_id)
        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "http_request_failed",
                method=request.method,
                path=request.url.path,
                duration_ms=self._elapsed_ms(start),
            )
            raise
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        log = logger.debug if request.url.path in QUIET_PATHS else logger.info
        log(
            "http_request",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=self._elapsed_ms(start),
            client=request.client.host if request.client else "unknown",
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return round((time.monotonic() - start) * 1000, 2)
