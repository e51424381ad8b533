"""Chat gateway — the single entry-point for LLM chat calls.

Composes ProviderRegistry, RateLimiter, RetryPolicy and one ProviderAdapter
per provider.  Each ``chat`` call runs a small state machine:

    ATTEMPTING ──ok──────────────────────────────▶ SUCCEEDED
        │ auth / rate-limit ─▶ ROTATING ─▶ ATTEMPTING   (no delay)
        │ transient ─────────▶ BACKOFF  ─▶ ATTEMPTING   (min(d0 * 2^n, dmax))
        │ fatal / retries used up ─▶ FALLBACK
    FALLBACK: one call per remaining provider, priority order
        │ ok ─▶ SUCCEEDED
        │ chain empty ─▶ FAILED (AllProvidersFailedError)

Only ``ValidationError``, ``ProviderUnavailable``, ``ConfigurationError`` and
``AllProvidersFailedError`` escape; every other failure is logged and
recovered here.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from dobby.domain.enums import ErrorKind, GatewayState, ProviderName
from dobby.domain.exceptions import (
    AllProvidersFailedError,
    ConfigurationError,
    FatalError,
    ProviderCallError,
    ProviderUnavailable,
    TransientError,
)
from dobby.domain.value_objects import (
    CanonicalMessage,
    ChatResult,
    RequestOptions,
    normalize_messages,
)
from dobby.shared.providers.health import ProviderHealthTracker
from dobby.shared.providers.rate_limiter import RateLimiter
from dobby.shared.providers.registry import ProviderRegistry
from dobby.shared.providers.retry import RetryPolicy
from dobby.shared.providers.types import ProviderHealth

if TYPE_CHECKING:
    from dobby.ports.outbound import ProviderAdapter

logger = structlog.get_logger(__name__)


@dataclass
class _ChatRun:
    """Mutable bookkeeping for one ``chat`` call."""

    primary: ProviderName
    options: RequestOptions
    messages: tuple[CanonicalMessage, ...]
    deadline: float | None
    attempts: int = 0
    fallback_attempts: int = 0
    fallback_queue: list[ProviderName] | None = None
    errors: dict[str, str] = field(default_factory=dict)
    last_provider: ProviderName | None = None
    last_error: ProviderCallError | None = None
    result: ChatResult | None = None

    def record_error(self, provider: ProviderName, exc: ProviderCallError) -> None:
        self.errors[provider.value] = exc.message
        self.last_provider = provider
        self.last_error = exc


class ChatGateway:
    """Multi-provider chat with key rotation, backoff and fallback.

    Usage::

        gateway = ChatGateway(registry, limiter, adapters, retry_policy=RetryPolicy())
        result = await gateway.chat(
            [CanonicalMessage.system("You are Dobby."), CanonicalMessage.user("hi")],
            RequestOptions(max_tokens=200),
        )
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        limiter: RateLimiter,
        adapters: Mapping[ProviderName, ProviderAdapter],
        *,
        retry_policy: RetryPolicy | None = None,
        default_timeout_s: float = 30.0,
        enable_key_rotation: bool = True,
        enable_fallback: bool = True,
    ) -> None:
        missing = [
            p.value for p in registry.priority_order
            if registry.is_available(p) and p not in adapters
        ]
        if missing:
            raise ConfigurationError(f"No adapter registered for: {', '.join(missing)}")

        self._registry = registry
        self._limiter = limiter
        self._adapters = dict(adapters)
        self._retry = retry_policy or RetryPolicy()
        self._clock = self._retry.clock
        self._default_timeout = default_timeout_s
        self._rotation_enabled = enable_key_rotation
        self._fallback_enabled = enable_fallback
        self._health: dict[ProviderName, ProviderHealthTracker] = {
            p: ProviderHealthTracker(p.value, clock=self._clock)
            for p in registry.priority_order
        }

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    # ── Main entry-point ─────────────────────────────────────
    async def chat(
        self,
        messages: Iterable[CanonicalMessage | Mapping[str, Any]],
        options: RequestOptions | None = None,
    ) -> ChatResult:
        """Send ``messages`` to the resolved provider, recovering failures.

        Raises:
            ValidationError: malformed messages.
            ProviderUnavailable: ``options.provider`` names an unconfigured provider.
            AllProvidersFailedError: primary and every fallback failed.
        """
        options = options or RequestOptions()
        canonical = normalize_messages(messages)
        primary = self._resolve_provider(options.provider)
        deadline = (
            self._clock() + options.deadline_s if options.deadline_s is not None else None
        )
        run = _ChatRun(primary=primary, options=options, messages=canonical, deadline=deadline)

        state = GatewayState.ATTEMPTING
        while not state.is_terminal:
            state = await self._step(state, run)

        if state is GatewayState.SUCCEEDED and run.result is not None:
            return run.result

        logger.error(
            "all_providers_failed",
            primary=primary.value,
            attempts=run.attempts,
            errors=run.errors,
        )
        raise AllProvidersFailedError(
            run.errors,
            last_provider=run.last_provider.value if run.last_provider else None,
            last_error=run.last_error,
        )

    def get_available_providers(self) -> dict[str, bool]:
        """Provider name → has at least one key.  Cheap, read-only."""
        return self._registry.available_providers()

    # ── State machine ────────────────────────────────────────
    async def _step(self, state: GatewayState, run: _ChatRun) -> GatewayState:
        if state is GatewayState.ATTEMPTING:
            return await self._attempt(run)
        if state is GatewayState.ROTATING:
            return self._rotate(run)
        if state is GatewayState.BACKOFF:
            return await self._backoff(run)
        if state is GatewayState.FALLBACK:
            return await self._fallback(run)
        return state

    async def _attempt(self, run: _ChatRun) -> GatewayState:
        if self._deadline_expired(run, run.primary):
            return GatewayState.FAILED

        attempt = run.attempts
        run.attempts += 1
        try:
            run.result = await self._call(run.primary, run, attempt=attempt)
        except ProviderCallError as exc:
            run.record_error(run.primary, exc)
            logger.warning(
                "provider_attempt_failed",
                provider=run.primary.value,
                attempt=attempt + 1,
                max_retries=run.options.max_retries,
                error_kind=exc.kind.value,
                error=exc.message,
            )
            return self._next_state(exc.kind, run)
        return GatewayState.SUCCEEDED

    def _next_state(self, kind: ErrorKind, run: _ChatRun) -> GatewayState:
        if kind in (ErrorKind.AUTH, ErrorKind.RATE_LIMIT):
            return GatewayState.ROTATING
        if kind is ErrorKind.FATAL or run.attempts >= run.options.max_retries:
            return GatewayState.FALLBACK
        return GatewayState.BACKOFF

    def _rotate(self, run: _ChatRun) -> GatewayState:
        if self._rotation_enabled:
            index = self._registry.rotate(run.primary)
            logger.info(
                "provider_key_rotated",
                provider=run.primary.value,
                attempt=run.attempts,
                key_index=index,
            )
        if run.attempts >= run.options.max_retries:
            return GatewayState.FALLBACK
        return GatewayState.ATTEMPTING

    async def _backoff(self, run: _ChatRun) -> GatewayState:
        remaining = self._remaining(run)
        wait = self._retry.delay(run.attempts - 1)
        logger.info(
            "provider_retry_backoff",
            provider=run.primary.value,
            attempt=run.attempts,
            delay_s=round(min(wait, remaining) if remaining is not None else wait, 3),
        )
        await self._retry.backoff(run.attempts - 1, limit_s=remaining)
        return GatewayState.ATTEMPTING

    async def _fallback(self, run: _ChatRun) -> GatewayState:
        if run.fallback_queue is None:
            run.fallback_queue = (
                self._registry.fallback_chain(exclude=run.primary)
                if self._fallback_enabled
                else []
            )
            if run.fallback_queue:
                logger.info(
                    "provider_fallback_started",
                    primary=run.primary.value,
                    attempts=run.attempts,
                    chain=[p.value for p in run.fallback_queue],
                )

        if not run.fallback_queue:
            return GatewayState.FAILED

        provider = run.fallback_queue.pop(0)
        if self._deadline_expired(run, provider):
            return GatewayState.FAILED

        run.fallback_attempts += 1
        position = {
            "attempt": run.attempts + run.fallback_attempts,
            "fallback_index": run.fallback_attempts,
        }
        logger.info(
            "provider_fallback_attempt",
            provider=provider.value,
            primary=run.primary.value,
            **position,
        )
        try:
            run.result = await self._call(provider, run, attempt=0)
        except ProviderCallError as exc:
            run.record_error(provider, exc)
            logger.warning(
                "provider_fallback_failed",
                provider=provider.value,
                **position,
                error_kind=exc.kind.value,
                error=exc.message,
            )
            if self._rotation_enabled and exc.kind in (ErrorKind.AUTH, ErrorKind.RATE_LIMIT):
                index = self._registry.rotate(provider)
                logger.info("provider_key_rotated", provider=provider.value, attempt=1, key_index=index)
            return GatewayState.FALLBACK

        logger.info("provider_failover_success", provider=provider.value, primary=run.primary.value)
        return GatewayState.SUCCEEDED

    # ── Single provider call ─────────────────────────────────
    async def _call(self, provider: ProviderName, run: _ChatRun, *, attempt: int) -> ChatResult:
        client = self._registry.get_current_client(provider)
        if client is None:
            raise FatalError(provider.value, "provider has no credentials")
        adapter = self._adapters[provider]
        tracker = self._health[provider]

        timeout = run.options.timeout_s or self._default_timeout
        remaining = self._remaining(run)
        if remaining is not None:
            timeout = min(timeout, remaining)

        log = logger.bind(provider=provider.value, attempt=attempt + 1, key_idx=client.key_index)
        try:
            permit = await self._limiter.acquire(timeout=timeout)
        except asyncio.TimeoutError as exc:
            err = TransientError(provider.value, f"Timed out waiting for a rate-limit slot after {timeout:.1f}s")
            tracker.record_failure(err.message, kind=err.kind)
            raise err from exc

        start = self._clock()
        try:
            result = await asyncio.wait_for(
                adapter.call(client, run.messages, run.options),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            err = TransientError(provider.value, f"Timeout after {timeout:.1f}s")
            tracker.record_failure(err.message, kind=err.kind, latency_ms=self._elapsed_ms(start))
            raise err from exc
        except ProviderCallError as exc:
            tracker.record_failure(exc.message, kind=exc.kind, latency_ms=self._elapsed_ms(start))
            raise
        except Exception as exc:
            err = FatalError(provider.value, f"{type(exc).__name__}: {exc}")
            tracker.record_failure(err.message, kind=err.kind, latency_ms=self._elapsed_ms(start))
            raise err from exc
        finally:
            self._limiter.release(permit)

        latency_ms = self._elapsed_ms(start)
        tracker.record_success(latency_ms)
        log.info("provider_request_success", latency_ms=round(latency_ms, 1), model=result.model)
        return result

    # ── Helpers ──────────────────────────────────────────────
    def _resolve_provider(self, requested: ProviderName | str | None) -> ProviderName:
        if requested is None:
            return self._registry.default_provider()
        name = ProviderName.parse(requested)
        if name is None or not self._registry.is_available(name) or name not in self._adapters:
            raw = requested.value if isinstance(requested, ProviderName) else str(requested)
            raise ProviderUnavailable(raw)
        return name

    def _remaining(self, run: _ChatRun) -> float | None:
        if run.deadline is None:
            return None
        return max(0.0, run.deadline - self._clock())

    def _deadline_expired(self, run: _ChatRun, provider: ProviderName) -> bool:
        remaining = self._remaining(run)
        if remaining is None or remaining > 0:
            return False
        exc = TransientError(provider.value, f"Deadline of {run.options.deadline_s}s exceeded")
        run.record_error(provider, exc)
        logger.warning("chat_deadline_exceeded", provider=provider.value, attempts=run.attempts)
        return True

    def _elapsed_ms(self, start: float) -> float:
        return (self._clock() - start) * 1000

    # ── Health observation ───────────────────────────────────
    def get_health(self, provider: ProviderName | str) -> ProviderHealth | None:
        name = ProviderName.parse(provider)
        tracker = self._health.get(name) if name else None
        if tracker is None or name is None:
            return None
        health = tracker.health
        health.configured = self._registry.is_available(name)
        health.key_count = self._registry.key_count(name)
        health.current_key_index = self._registry.current_key_index(name)
        return health

    def get_all_health(self) -> list[ProviderHealth]:
        results: list[ProviderHealth] = []
        for name in self._registry.priority_order:
            h = self.get_health(name)
            if h is not None:
                results.append(h)
        return results

    async def aclose(self) -> None:
        await self._registry.aclose()
