"""Core types for the multi-provider chat gateway."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

import httpx

from dobby.domain.enums import ProviderName


class ProviderStatus(str, enum.Enum):
    """Health status of an API provider."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class ProviderConfig:
    """Static configuration for a single provider.

    Attributes:
        name:          Provider identifier.
        api_keys:      Ordered pool of API keys to rotate through.  Empty
                       means the provider is unconfigured.
        base_url:      Root URL of the provider's HTTP API.
        default_model: Model used when the request does not name one.
        priority:      Lower = tried earlier in the fallback chain.
        timeout_s:     Per-request timeout in seconds.
    """

    name: ProviderName
    api_keys: tuple[str, ...] = ()
    base_url: str = ""
    default_model: str = ""
    priority: int = 10
    timeout_s: float = 30.0

    @property
    def has_keys(self) -> bool:
        return bool(self.api_keys)


@dataclass(frozen=True)
class ProviderClient:
    """Client handle bound to one credential of one provider.

    ``__repr__`` masks the key so clients can be logged safely.
    """

    provider: ProviderName
    api_key: str
    key_index: int
    base_url: str
    default_model: str
    http: httpx.AsyncClient

    def __repr__(self) -> str:
        return (
            f"ProviderClient(provider={self.provider.value!r}, "
            f"key_index={self.key_index}, api_key={mask_key(self.api_key)!r})"
        )


@dataclass
class ProviderHealth:
    """Read-only snapshot of a provider's current health."""

    provider_id: str
    status: ProviderStatus = ProviderStatus.HEALTHY
    total_requests: int = 0
    total_successes: int = 0
    total_failures: int = 0
    consecutive_failures: int = 0
    success_rate: float = 1.0
    latency_p50_ms: float = 0.0
    latency_p95_ms: float = 0.0
    latency_p99_ms: float = 0.0
    last_error: str | None = None
    last_error_time: float | None = None
    configured: bool = False
    key_count: int = 0
    current_key_index: int = 0
    failures_by_kind: dict[str, int] = field(default_factory=dict)


def parse_keys(raw: str | None) -> tuple[str, ...]:
    """Split a comma-delimited secret string into an ordered key tuple."""
    if not raw:
        return ()
    keys: list[str] = []
    for part in raw.split(","):
        key = part.strip()
        if key and key not in keys:
            keys.append(key)
    return tuple(keys)


def mask_key(key: str) -> str:
    if len(key) <= 8:
        return "***"
    return f"{key[:4]}...{key[-4:]}"
