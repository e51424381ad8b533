"""Bounded exponential backoff for transient provider failures."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field


@dataclass(frozen=True)
class RetryPolicy:
    """``delay(attempt) = min(initial_delay_s * factor ** attempt, max_delay_s)``.

    ``attempt`` is the zero-based index of the attempt that just failed.
    ``clock`` and ``sleep`` are injectable so tests can run backoff without
    real waiting.
    """

    initial_delay_s: float = 1.0
    max_delay_s: float = 10.0
    factor: float = 2.0
    clock: Callable[[], float] = field(default=time.monotonic, repr=False, compare=False)
    sleep: Callable[[float], Awaitable[None]] = field(
        default=asyncio.sleep, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if self.initial_delay_s < 0 or self.max_delay_s < 0:
            raise ValueError("backoff delays must not be negative")
        if self.factor < 1:
            raise ValueError("backoff factor must be >= 1")

    def delay(self, attempt: int) -> float:
        # Exponent capped to keep the float finite
        return min(self.initial_delay_s * (self.factor ** min(attempt, 64)), self.max_delay_s)

    async def backoff(self, attempt: int, *, limit_s: float | None = None) -> float:
        """Sleep for ``delay(attempt)``, capped at ``limit_s``.  Returns the wait."""
        wait = self.delay(attempt)
        if limit_s is not None:
            wait = max(0.0, min(wait, limit_s))
        if wait > 0:
            await self.sleep(wait)
        return wait
