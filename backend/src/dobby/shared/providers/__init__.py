"""Multi-provider chat gateway.

Provides key rotation, global rate limiting, bounded backoff, cross-provider
fallback and health tracking for upstream LLM providers.
"""

from dobby.shared.providers.types import (
    ProviderClient,
    ProviderConfig,
    ProviderHealth,
    ProviderStatus,
    parse_keys,
)
from dobby.shared.providers.health import ProviderHealthTracker
from dobby.shared.providers.rate_limiter import Permit, RateLimiter
from dobby.shared.providers.registry import ProviderRegistry
from dobby.shared.providers.retry import RetryPolicy
from dobby.shared.providers.gateway import ChatGateway

__all__ = [
    "ChatGateway",
    "Permit",
    "ProviderClient",
    "ProviderConfig",
    "ProviderHealth",
    "ProviderHealthTracker",
    "ProviderRegistry",
    "ProviderStatus",
    "RateLimiter",
    "RetryPolicy",
    "parse_keys",
]
