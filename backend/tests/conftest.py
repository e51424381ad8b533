"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import os
import sys
from collections.abc import Callable, Sequence

import httpx
import pytest

# Add src to path so imports work
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

from dobby.domain.enums import ProviderName
from dobby.domain.value_objects import CanonicalMessage, ChatResult, RequestOptions, TokenUsage
from dobby.ports.outbound import ProviderAdapter
from dobby.shared.providers.gateway import ChatGateway
from dobby.shared.providers.rate_limiter import RateLimiter
from dobby.shared.providers.registry import ProviderRegistry
from dobby.shared.providers.retry import RetryPolicy
from dobby.shared.providers.types import ProviderClient, ProviderConfig


# ═══════════════════════════════════════════════════════════════
#  Fakes
# ═══════════════════════════════════════════════════════════════
class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class ScriptedAdapter(ProviderAdapter):
    """Plays back a list of outcomes, one per call.

    An outcome is either reply text or an exception to raise.  Once the
    script runs out, ``default`` is used for every further call.
    """

    def __init__(
        self,
        provider: ProviderName,
        outcomes: Sequence[str | BaseException] = (),
        *,
        default: str | BaseException = "ok",
    ) -> None:
        self.provider = provider
        self.outcomes = list(outcomes)
        self.default = default
        self.calls: list[ProviderClient] = []
        self.seen_messages: list[tuple[CanonicalMessage, ...]] = []

    @property
    def keys_used(self) -> list[str]:
        return [c.api_key for c in self.calls]

    async def call(
        self,
        client: ProviderClient,
        messages: Sequence[CanonicalMessage],
        options: RequestOptions,
    ) -> ChatResult:
        self.calls.append(client)
        self.seen_messages.append(tuple(messages))
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        return ChatResult(
            content=outcome,
            provider_name=self.provider.value,
            model=options.model or client.default_model,
            usage=TokenUsage(prompt_tokens=10, response_tokens=5),
        )


def offline_http(cfg: ProviderConfig) -> httpx.AsyncClient:
    """HTTP client that never leaves the process."""

    def _refuse(request: httpx.Request) -> httpx.Response:
        return httpx.Response(599, text="offline")

    return httpx.AsyncClient(base_url=cfg.base_url, transport=httpx.MockTransport(_refuse))


# ═══════════════════════════════════════════════════════════════
#  Fixtures
# ═══════════════════════════════════════════════════════════════
@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider_configs() -> list[ProviderConfig]:
    return [
        ProviderConfig(
            name=ProviderName.SENTIENT,
            api_keys=("s-key-1", "s-key-2"),
            base_url="https://sentient.test/v1",
            default_model="dobby-mini",
            priority=1,
        ),
        ProviderConfig(
            name=ProviderName.OPENAI,
            api_keys=("o-key-1",),
            base_url="https://openai.test/v1",
            default_model="gpt-test",
            priority=2,
        ),
        ProviderConfig(
            name=ProviderName.ANTHROPIC,
            api_keys=("a-key-1",),
            base_url="https://anthropic.test/v1",
            default_model="claude-test",
            priority=3,
        ),
    ]


@pytest.fixture
def scripted() -> type[ScriptedAdapter]:
    return ScriptedAdapter


@pytest.fixture
def make_gateway(
    fake_clock: FakeClock,
    provider_configs: list[ProviderConfig],
) -> Callable[..., ChatGateway]:
    """Factory: ``make_gateway(adapters, configs=None, limiter=None, retry_policy=None, **gateway_kwargs)``."""

    def _make(
        adapters: dict[ProviderName, ProviderAdapter],
        *,
        configs: list[ProviderConfig] | None = None,
        default_provider: ProviderName | str | None = None,
        limiter: RateLimiter | None = None,
        retry_policy: RetryPolicy | None = None,
        **kwargs: object,
    ) -> ChatGateway:
        registry = ProviderRegistry(
            configs if configs is not None else provider_configs,
            default_provider=default_provider,
            http_factory=offline_http,
        )
        retry = retry_policy or RetryPolicy(
            initial_delay_s=1.0,
            max_delay_s=10.0,
            clock=fake_clock,
            sleep=fake_clock.sleep,
        )
        return ChatGateway(
            registry,
            limiter or RateLimiter(max_concurrent=5, min_interval_s=0),
            adapters,
            retry_policy=retry,
            **kwargs,  # type: ignore[arg-type]
        )

    return _make
