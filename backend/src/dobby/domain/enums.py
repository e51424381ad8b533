"""Domain enumerations for the chat gateway."""

from __future__ import annotations

import enum


class ProviderName(str, enum.Enum):
    """Upstream language-model providers the gateway can talk to."""

    SENTIENT = "sentient"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"

    @classmethod
    def parse(cls, raw: str | ProviderName) -> ProviderName | None:
        """Lenient lookup by value; returns None for unknown names."""
        if isinstance(raw, ProviderName):
            return raw
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return None


class MessageRole(str, enum.Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ErrorKind(str, enum.Enum):
    """Classification of a failed provider call.

    Drives the gateway's next transition:
        AUTH / RATE_LIMIT → rotate key, retry immediately
        TRANSIENT        → back off, retry
        FATAL            → abandon provider, fall back
    """

    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    TRANSIENT = "transient"
    FATAL = "fatal"


class GatewayState(str, enum.Enum):
    """States of a single ``ChatGateway.chat`` run."""

    ATTEMPTING = "attempting"
    ROTATING = "rotating"
    BACKOFF = "backoff"
    FALLBACK = "fallback"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (GatewayState.SUCCEEDED, GatewayState.FAILED)
