"""Tests for the shared RateLimiter."""

from __future__ import annotations

import asyncio

import pytest

from dobby.shared.providers.rate_limiter import RateLimiter


async def _hammer(limiter: RateLimiter, n: int, hold_s: float) -> tuple[int, list[float]]:
    """Run ``n`` concurrent slot holders; return (peak in-flight, dispatch times)."""
    in_flight = 0
    peak = 0
    dispatched: list[float] = []

    async def worker() -> None:
        nonlocal in_flight, peak
        async with limiter.slot() as permit:
            dispatched.append(permit.dispatched_at)
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(hold_s)
            in_flight -= 1

    await asyncio.gather(*(worker() for _ in range(n)))
    return peak, sorted(dispatched)


class TestRateLimiterBounds:
    @pytest.mark.asyncio
    async def test_concurrency_and_spacing(self, fake_clock) -> None:
        limiter = RateLimiter(
            max_concurrent=5,
            min_interval_s=0.2,
            clock=fake_clock,
            sleep=fake_clock.sleep,
        )

        peak, dispatched = await _hammer(limiter, 20, hold_s=0.005)

        assert peak <= 5
        assert len(dispatched) == 20
        gaps = [b - a for a, b in zip(dispatched, dispatched[1:])]
        assert min(gaps) >= 0.2 - 1e-9
        assert limiter.in_flight == 0
        assert limiter.stats()["total_dispatched"] == 20

    @pytest.mark.asyncio
    async def test_spacing_on_real_clock(self) -> None:
        limiter = RateLimiter(max_concurrent=3, min_interval_s=0.02)

        peak, dispatched = await _hammer(limiter, 8, hold_s=0.001)

        assert peak <= 3
        gaps = [b - a for a, b in zip(dispatched, dispatched[1:])]
        assert min(gaps) >= 0.02 - 1e-6

    @pytest.mark.asyncio
    async def test_zero_interval_only_bounds_concurrency(self) -> None:
        limiter = RateLimiter(max_concurrent=2, min_interval_s=0)
        peak, _ = await _hammer(limiter, 10, hold_s=0.002)
        assert peak == 2

    @pytest.mark.asyncio
    async def test_fifo_admission(self) -> None:
        limiter = RateLimiter(max_concurrent=1, min_interval_s=0)
        order: list[int] = []
        gate = await limiter.acquire()

        async def worker(i: int) -> None:
            async with limiter.slot():
                order.append(i)

        tasks = [asyncio.create_task(worker(i)) for i in range(5)]
        await asyncio.sleep(0.01)
        limiter.release(gate)
        await asyncio.gather(*tasks)

        assert order == [0, 1, 2, 3, 4]


class TestRateLimiterRelease:
    @pytest.mark.asyncio
    async def test_timeout_leaves_no_permit_behind(self) -> None:
        limiter = RateLimiter(max_concurrent=1, min_interval_s=0)
        held = await limiter.acquire()

        with pytest.raises(asyncio.TimeoutError):
            await limiter.acquire(timeout=0.02)

        limiter.release(held)
        await asyncio.sleep(0)
        assert limiter.in_flight == 0
        permit = await limiter.acquire(timeout=1.0)
        assert limiter.in_flight == 1
        limiter.release(permit)
        assert limiter.stats()["available"] == 1

    @pytest.mark.asyncio
    async def test_cancelled_waiter_frees_its_place(self) -> None:
        limiter = RateLimiter(max_concurrent=1, min_interval_s=0)
        held = await limiter.acquire()

        waiter = asyncio.create_task(limiter.acquire())
        await asyncio.sleep(0.01)
        assert limiter.stats()["waiting"] == 1
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        limiter.release(held)
        permit = await asyncio.wait_for(limiter.acquire(), timeout=1.0)
        limiter.release(permit)
        assert limiter.in_flight == 0

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self) -> None:
        limiter = RateLimiter(max_concurrent=2, min_interval_s=0)
        permit = await limiter.acquire()
        limiter.release(permit)
        limiter.release(permit)
        assert permit.released
        assert limiter.in_flight == 0
        assert limiter.stats()["available"] == 2

    @pytest.mark.asyncio
    async def test_slot_releases_on_error(self) -> None:
        limiter = RateLimiter(max_concurrent=1, min_interval_s=0)
        with pytest.raises(RuntimeError):
            async with limiter.slot():
                raise RuntimeError("provider blew up")
        assert limiter.in_flight == 0


class TestRateLimiterConfig:
    def test_rejects_bad_limits(self) -> None:
        with pytest.raises(ValueError):
            RateLimiter(max_concurrent=0)
        with pytest.raises(ValueError):
            RateLimiter(min_interval_s=-1)

    def test_stats_shape(self) -> None:
        limiter = RateLimiter(max_concurrent=5, min_interval_s=0.2)
        assert limiter.stats() == {
            "in_flight": 0,
            "waiting": 0,
            "max_concurrent": 5,
            "available": 5,
            "min_interval_ms": 200.0,
            "total_dispatched": 0,
        }
