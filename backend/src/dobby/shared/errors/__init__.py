"""Global exception handlers — map domain errors to HTTP responses.

    ValidationError          → 422
    ProviderUnavailable      → 400
    ConfigurationError       → 503
    AllProvidersFailedError  → 502
    other DomainError        → 400
    anything else            → 500
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse
import structlog

from dobby.application.dtos import ErrorResponse
from dobby.domain.exceptions import (
    AllProvidersFailedError,
    ConfigurationError,
    DomainError,
    ProviderUnavailable,
    ValidationError,
)

logger = structlog.get_logger(__name__)

# First match wins, so subclasses go before their bases
DOMAIN_STATUS: tuple[tuple[type[DomainError], int], ...] = (
    (ValidationError, 422),
    (ProviderUnavailable, 400),
    (ConfigurationError, 503),
    (AllProvidersFailedError, 502),
)


def status_for(exc: DomainError) -> int:
    for cls, status in DOMAIN_STATUS:
        if isinstance(exc, cls):
            return status
    return 400


def error_response(
    status: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> ORJSONResponse:
    body = ErrorResponse(code=code, message=message, details=details)
    return ORJSONResponse(status_code=status, content=body.model_dump(exclude_none=True))


def register_exception_handlers(app: FastAPI) -> None:
    """Register all domain→HTTP exception mappings."""

    @app.exception_handler(AllProvidersFailedError)
    async def handle_all_failed(request: Request, exc: AllProvidersFailedError) -> ORJSONResponse:
        # Upstream error text stays in the logs, not the response
        logger.error(
            "all_providers_failed_http",
            path=request.url.path,
            last_provider=exc.last_provider,
            errors=exc.errors,
        )
        return error_response(
            502,
            exc.code,
            "Failed to process chat request",
            {"last_provider": exc.last_provider, "providers_tried": list(exc.errors)},
        )

    @app.exception_handler(DomainError)
    async def handle_domain(request: Request, exc: DomainError) -> ORJSONResponse:
        status = status_for(exc)
        log = logger.error if status >= 500 else logger.warning
        log("domain_error_http", path=request.url.path, status=status, code=exc.code, message=exc.message)
        return error_response(status, exc.code, exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("unhandled_exception", path=request.url.path, error=str(exc))
        return error_response(500, "INTERNAL_ERROR", "An unexpected error occurred")
