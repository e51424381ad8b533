"""FastAPI application entry-point.

``create_app`` wires one ``GatewayContext`` per application.  Pass a
prebuilt context (fake adapters, fake clock) to serve tests; otherwise the
lifespan builds it from settings and refuses to start when no provider has
an API key.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

import structlog
from fastapi import APIRouter, FastAPI
from fastapi.responses import ORJSONResponse

from dobby import __version__
from dobby.adapters.inbound.rest.routers import chat_router, health_router, providers_router
from dobby.config import Settings, get_settings
from dobby.dependencies import GatewayContext, build_context
from dobby.shared.errors import register_exception_handlers
from dobby.shared.middleware import RequestContextMiddleware
from dobby.shared.observability import configure_logging

logger = structlog.get_logger(__name__)

API_PREFIX = "/api/v1"
ROUTERS: tuple[APIRouter, ...] = (health_router, providers_router, chat_router)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings
    configure_logging(log_level=settings.log_level, json_logs=settings.is_production)

    if app.state.context is None:
        app.state.context = build_context(settings)
    ctx: GatewayContext = app.state.context

    logger.info(
        "application_starting",
        env=settings.app_env.value,
        providers=ctx.gateway.get_available_providers(),
        default_provider=ctx.registry.default_provider().value,
        max_concurrent=ctx.limiter.max_concurrent,
        min_interval_ms=settings.ai_min_time_ms,
    )
    try:
        yield
    finally:
        await ctx.aclose()
        logger.info("application_shutdown")


def create_app(
    settings: Settings | None = None,
    *,
    context: GatewayContext | None = None,
) -> FastAPI:
    """Application factory — creates a fully configured FastAPI instance."""
    if settings is None:
        settings = context.settings if context is not None else get_settings()

    app = FastAPI(
        title="Dobby AI Gateway",
        description=(
            "Multi-provider chat gateway for the DobbyAI Reddit agent. "
            "Rotates provider credentials, rate-limits outbound calls, "
            "retries transient failures and falls back across providers."
        ),
        version=__version__,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.context = context

    app.add_middleware(RequestContextMiddleware)
    register_exception_handlers(app)
    for router in ROUTERS:
        app.include_router(router, prefix=API_PREFIX)

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, str]:
        return {
            "message": f"{settings.app_name} is running",
            "docs": "/docs",
            "health": f"{API_PREFIX}/health",
        }

    return app


# Uvicorn entry-point
app = create_app()
