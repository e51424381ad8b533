"""Health, Providers, Chat — REST routers."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from dobby.application.dtos import (
    ChatMetadata,
    ChatRequest,
    ChatResponse,
    HealthResponse,
    ProviderHealthResponse,
    RateLimiterStatsResponse,
)
from dobby.application.services import ChatService
from dobby.dependencies import GatewayContext, get_chat_service, get_context, get_gateway
from dobby.ports.outbound import ConversationHistoryWriterPort
from dobby.shared.providers.gateway import ChatGateway


# ═══════════════════════════════════════════════════════════════
#  Health
# ═══════════════════════════════════════════════════════════════
health_router = APIRouter(tags=["Health"])


@health_router.get("/health", response_model=HealthResponse)
async def health_check(ctx: GatewayContext = Depends(get_context)) -> HealthResponse:
    providers = ctx.gateway.get_available_providers()
    return HealthResponse(
        status="ok" if any(providers.values()) else "degraded",
        environment=ctx.settings.app_env.value,
        providers=providers,
    )


# ═══════════════════════════════════════════════════════════════
#  Providers
# ═══════════════════════════════════════════════════════════════
providers_router = APIRouter(prefix="/providers", tags=["Providers"])


@providers_router.get("")
async def available_providers(gateway: ChatGateway = Depends(get_gateway)) -> dict[str, bool]:
    """Which providers have at least one configured key."""
    return gateway.get_available_providers()


@providers_router.get("/health", response_model=list[ProviderHealthResponse])
async def provider_health(
    gateway: ChatGateway = Depends(get_gateway),
) -> list[ProviderHealthResponse]:
    """Health snapshots for all known providers."""
    return [
        ProviderHealthResponse(
            provider_id=h.provider_id,
            status=h.status.value,
            configured=h.configured,
            key_count=h.key_count,
            current_key_index=h.current_key_index,
            total_requests=h.total_requests,
            total_successes=h.total_successes,
            total_failures=h.total_failures,
            consecutive_failures=h.consecutive_failures,
            success_rate=h.success_rate,
            latency_p50_ms=h.latency_p50_ms,
            latency_p95_ms=h.latency_p95_ms,
            latency_p99_ms=h.latency_p99_ms,
            last_error=h.last_error,
            failures_by_kind=h.failures_by_kind,
        )
        for h in gateway.get_all_health()
    ]


@providers_router.get("/rate-limiter", response_model=RateLimiterStatsResponse)
async def rate_limiter_stats(
    gateway: ChatGateway = Depends(get_gateway),
) -> RateLimiterStatsResponse:
    return RateLimiterStatsResponse(**gateway.limiter.stats())


# ═══════════════════════════════════════════════════════════════
#  Chat
# ═══════════════════════════════════════════════════════════════
chat_router = APIRouter(prefix="/chat", tags=["Chat"])


@chat_router.post("", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    service: ChatService = Depends(get_chat_service),
    ctx: GatewayContext = Depends(get_context),
) -> ChatResponse:
    reply = await service.reply(
        body.message,
        user_id=body.user_id,
        include_history=body.include_history,
        provider=body.provider,
    )

    # Read-only history sources are owned by whoever writes them
    if body.user_id and isinstance(ctx.history, ConversationHistoryWriterPort):
        await ctx.history.append(body.user_id, reply.as_turn())

    usage = reply.result.usage
    return ChatResponse(
        response=reply.result.content,
        metadata=ChatMetadata(
            provider=reply.result.provider_name,
            model=reply.result.model,
            prompt_tokens=usage.prompt_tokens,
            response_tokens=usage.response_tokens,
            tokens_used=usage.total_tokens,
            history_turns=reply.history_turns,
        ),
    )
