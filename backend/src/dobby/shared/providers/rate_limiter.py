"""Global rate limiter — bounded concurrency plus minimum dispatch spacing.

Every provider call, whichever provider it targets, passes through one shared
``RateLimiter``:

    admission (FIFO lock)
        → wait for a concurrency slot   (at most ``max_concurrent`` in flight)
        → wait out the spacing interval (``min_interval_s`` between dispatches)
        → dispatch
    ... call runs ...
    release slot (success, failure, or cancellation)

Only the holder of the admission lock waits on the slot semaphore, so
callers are dispatched in arrival order.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class Permit:
    """Proof of admission; ``dispatched_at`` is on the limiter's clock."""

    dispatched_at: float
    released: bool = False


class RateLimiter:
    """FIFO gate bounding in-flight calls and dispatch spacing.

    Usage::

        limiter = RateLimiter(max_concurrent=5, min_interval_s=0.2)

        async with limiter.slot():
            await call_provider()
    """

    def __init__(
        self,
        *,
        max_concurrent: int = 5,
        min_interval_s: float = 0.2,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if min_interval_s < 0:
            raise ValueError("min_interval_s must not be negative")
        self._max_concurrent = max_concurrent
        self._min_interval = min_interval_s
        self._clock = clock
        self._sleep = sleep

        self._admission = asyncio.Lock()
        self._slots = asyncio.Semaphore(max_concurrent)
        self._in_flight = 0
        self._waiting = 0
        self._last_dispatch: float | None = None
        self._total_dispatched = 0

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def min_interval_s(self) -> float:
        return self._min_interval

    @property
    def in_flight(self) -> int:
        return self._in_flight

    # ── Acquire / release ────────────────────────────────────
    async def acquire(self, timeout: float | None = None) -> Permit:
        """Suspend until both constraints allow a dispatch.

        Raises ``asyncio.TimeoutError`` if ``timeout`` elapses first.
        Cancellation or timeout at any point leaves the limiter unchanged.
        """
        if timeout is None:
            return await self._acquire()

        task = asyncio.ensure_future(self._acquire())
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except BaseException:
            # A permit granted while we were timing out must go back
            task.cancel()
            task.add_done_callback(self._release_orphan)
            raise

    def _release_orphan(self, task: asyncio.Future[Permit]) -> None:
        if not task.cancelled() and task.exception() is None:
            self.release(task.result())

    async def _acquire(self) -> Permit:
        self._waiting += 1
        try:
            async with self._admission:
                await self._slots.acquire()
                try:
                    await self._wait_for_spacing()
                except BaseException:
                    self._slots.release()
                    raise
                now = self._clock()
                self._last_dispatch = now
                self._in_flight += 1
                self._total_dispatched += 1
                return Permit(dispatched_at=now)
        finally:
            self._waiting -= 1

    def release(self, permit: Permit) -> None:
        """Return the concurrency slot.  Releasing twice is a no-op."""
        if permit.released:
            return
        permit.released = True
        self._in_flight = max(0, self._in_flight - 1)
        self._slots.release()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[Permit]:
        permit = await self.acquire()
        try:
            yield permit
        finally:
            self.release(permit)

    # ── Introspection ────────────────────────────────────────
    def stats(self) -> dict[str, float | int]:
        return {
            "in_flight": self._in_flight,
            "waiting": self._waiting,
            "max_concurrent": self._max_concurrent,
            "available": self._max_concurrent - self._in_flight,
            "min_interval_ms": round(self._min_interval * 1000, 1),
            "total_dispatched": self._total_dispatched,
        }

    # ── Internals ────────────────────────────────────────────
    async def _wait_for_spacing(self) -> None:
        """Sleep until ``min_interval_s`` has passed since the last dispatch."""
        if self._last_dispatch is None or self._min_interval <= 0:
            return
        while True:
            remaining = self._last_dispatch + self._min_interval - self._clock()
            if remaining <= 0:
                return
            logger.debug("rate_limiter_spacing_wait", wait_ms=round(remaining * 1000, 1))
            await self._sleep(remaining)
