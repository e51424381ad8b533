"""Dependency wiring — builds the gateway context from settings.

There are no module-level singletons: ``create_app`` builds one
``GatewayContext`` per application and stores it on ``app.state``; route
handlers reach it through the ``Depends()`` factories below.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from fastapi import Request

from dobby.adapters.outbound.history import InMemoryConversationHistory
from dobby.adapters.outbound.llm import build_adapters, build_provider_configs
from dobby.application.services import ChatService
from dobby.config import Settings
from dobby.domain.enums import ProviderName
from dobby.ports.outbound import ConversationHistoryPort, ProviderAdapter
from dobby.shared.providers.gateway import ChatGateway
from dobby.shared.providers.rate_limiter import RateLimiter
from dobby.shared.providers.registry import (
    HttpClientFactory,
    ProviderRegistry,
    default_http_factory,
)
from dobby.shared.providers.retry import RetryPolicy


@dataclass
class GatewayContext:
    """Everything one process needs to serve chat calls."""

    settings: Settings
    registry: ProviderRegistry
    limiter: RateLimiter
    retry_policy: RetryPolicy
    gateway: ChatGateway
    history: ConversationHistoryPort
    chat_service: ChatService

    async def aclose(self) -> None:
        await self.gateway.aclose()


def build_registry(
    settings: Settings,
    *,
    http_factory: HttpClientFactory = default_http_factory,
) -> ProviderRegistry:
    configs = build_provider_configs(
        sentient_api_keys=settings.sentient_api_keys,
        openai_api_keys=settings.openai_api_keys,
        anthropic_api_keys=settings.anthropic_api_keys,
        sentient_base_url=settings.sentient_base_url,
        openai_base_url=settings.openai_base_url,
        anthropic_base_url=settings.anthropic_base_url,
        sentient_model=settings.sentient_model,
        openai_model=settings.ai_model,
        anthropic_model=settings.anthropic_model,
        timeout_s=settings.ai_timeout_seconds,
        priority_order=settings.ai_provider_priority,
    )
    return ProviderRegistry(
        configs,
        default_provider=settings.default_ai_provider,
        http_factory=http_factory,
    )


def build_context(
    settings: Settings,
    *,
    adapters: Mapping[ProviderName, ProviderAdapter] | None = None,
    history: ConversationHistoryPort | None = None,
    retry_policy: RetryPolicy | None = None,
    http_factory: HttpClientFactory = default_http_factory,
) -> GatewayContext:
    """Build registry, limiter, retry policy, gateway and chat service.

    Raises:
        ConfigurationError: if no provider has a key.
    """
    registry = build_registry(settings, http_factory=http_factory)
    limiter = RateLimiter(
        max_concurrent=settings.ai_max_concurrent,
        min_interval_s=settings.ai_min_time_ms / 1000,
    )
    retry_policy = retry_policy or RetryPolicy(
        initial_delay_s=settings.ai_retry_initial_delay,
        max_delay_s=settings.ai_retry_max_delay,
    )
    gateway = ChatGateway(
        registry,
        limiter,
        adapters if adapters is not None else build_adapters(),
        retry_policy=retry_policy,
        default_timeout_s=settings.ai_timeout_seconds,
        enable_key_rotation=settings.enable_key_rotation,
        enable_fallback=settings.enable_provider_fallback,
    )
    history = history if history is not None else InMemoryConversationHistory()
    chat_service = ChatService(
        gateway,
        history,
        max_history=settings.max_conversation_history,
        max_tokens=settings.max_response_length,
        temperature=settings.ai_temperature,
        max_retries=settings.ai_max_retries,
        timeout_s=settings.ai_timeout_seconds,
    )
    return GatewayContext(
        settings=settings,
        registry=registry,
        limiter=limiter,
        retry_policy=retry_policy,
        gateway=gateway,
        history=history,
        chat_service=chat_service,
    )


# ── FastAPI Depends() factories ──────────────────────────────
def get_context(request: Request) -> GatewayContext:
    return request.app.state.context  # type: ignore[no-any-return]


def get_gateway(request: Request) -> ChatGateway:
    return get_context(request).gateway


def get_chat_service(request: Request) -> ChatService:
    return get_context(request).chat_service
