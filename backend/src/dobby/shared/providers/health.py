"""Sliding-window health for a single provider.

Observational only: the gateway records every call outcome here and serves
snapshots on ``/providers/health``, but never routes on them.
"""

from __future__ import annotations

import threading
import time
from collections import Counter, deque
from collections.abc import Callable, Sequence
from typing import NamedTuple

from dobby.domain.enums import ErrorKind
from dobby.shared.providers.types import ProviderHealth, ProviderStatus


class _Outcome(NamedTuple):
    at: float
    ok: bool
    latency_ms: float | None


def _percentile(ordered: Sequence[float], p: float) -> float:
    if not ordered:
        return 0.0
    return round(ordered[min(int(len(ordered) * p), len(ordered) - 1)], 2)


class ProviderHealthTracker:
    """Rolling outcome window plus lifetime counters for one provider.

    Status comes from the failure ratio inside the window: at or above
    ``unhealthy_threshold`` is UNHEALTHY, at or above ``degraded_threshold``
    is DEGRADED, anything lower (or an empty window) is HEALTHY.  Failures
    recorded without a latency (e.g. no rate-limit slot) count toward the
    ratio but not toward latency percentiles.
    """

    def __init__(
        self,
        provider_id: str,
        *,
        window_seconds: float = 60.0,
        degraded_threshold: float = 0.30,
        unhealthy_threshold: float = 0.60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider_id = provider_id
        self._window_s = window_seconds
        self._degraded_at = degraded_threshold
        self._unhealthy_at = unhealthy_threshold
        self._clock = clock

        self._outcomes: deque[_Outcome] = deque()
        self._lock = threading.Lock()

        # Lifetime counters, unaffected by the window
        self._successes = 0
        self._failures: Counter[ErrorKind] = Counter()
        self._streak = 0
        self._last_error: str | None = None
        self._last_error_at: float | None = None

    # ── Recording ────────────────────────────────────────────
    def record_success(self, latency_ms: float) -> None:
        with self._lock:
            self._push(_Outcome(self._clock(), True, latency_ms))
            self._successes += 1
            self._streak = 0

    def record_failure(
        self,
        error: str,
        *,
        kind: ErrorKind = ErrorKind.FATAL,
        latency_ms: float | None = None,
    ) -> None:
        with self._lock:
            now = self._clock()
            self._push(_Outcome(now, False, latency_ms))
            self._failures[kind] += 1
            self._streak += 1
            self._last_error = error
            self._last_error_at = now

    # ── Reading ──────────────────────────────────────────────
    @property
    def status(self) -> ProviderStatus:
        with self._lock:
            self._evict(self._clock())
            failed = sum(1 for o in self._outcomes if not o.ok)
            return self._classify(len(self._outcomes), failed)

    @property
    def consecutive_failures(self) -> int:
        return self._streak

    def failures_of(self, kind: ErrorKind) -> int:
        return self._failures[kind]

    @property
    def health(self) -> ProviderHealth:
        """Point-in-time snapshot; registry fields are filled in by the gateway."""
        with self._lock:
            self._evict(self._clock())
            window = list(self._outcomes)
            failed = sum(1 for o in window if not o.ok)
            latencies = sorted(o.latency_ms for o in window if o.latency_ms is not None)
            total_failures = sum(self._failures.values())
            return ProviderHealth(
                provider_id=self._provider_id,
                status=self._classify(len(window), failed),
                total_requests=self._successes + total_failures,
                total_successes=self._successes,
                total_failures=total_failures,
                consecutive_failures=self._streak,
                success_rate=round(1 - failed / len(window), 4) if window else 1.0,
                latency_p50_ms=_percentile(latencies, 0.50),
                latency_p95_ms=_percentile(latencies, 0.95),
                latency_p99_ms=_percentile(latencies, 0.99),
                last_error=self._last_error,
                last_error_time=self._last_error_at,
                failures_by_kind={k.value: n for k, n in self._failures.items() if n},
            )

    # ── Internals (caller holds lock) ────────────────────────
    def _push(self, outcome: _Outcome) -> None:
        self._outcomes.append(outcome)
        self._evict(outcome.at)

    def _evict(self, now: float) -> None:
        cutoff = now - self._window_s
        while self._outcomes and self._outcomes[0].at < cutoff:
            self._outcomes.popleft()

    def _classify(self, total: int, failed: int) -> ProviderStatus:
        if not total:
            return ProviderStatus.HEALTHY
        ratio = failed / total
        if ratio >= self._unhealthy_at:
            return ProviderStatus.UNHEALTHY
        if ratio >= self._degraded_at:
            return ProviderStatus.DEGRADED
        return ProviderStatus.HEALTHY
