"""Domain value objects — immutable, self-validating types.

Value objects have *no identity*; two instances with equal fields are equal.
They enforce invariants at construction time so the gateway can trust their
contents without re-checking.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from dobby.domain.enums import MessageRole, ProviderName
from dobby.domain.exceptions import ValidationError


# ═══════════════════════════════════════════════════════════════
#  CanonicalMessage
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class CanonicalMessage:
    """A role-tagged text turn, independent of any provider wire format."""

    role: MessageRole
    content: str

    def __post_init__(self) -> None:
        if not isinstance(self.role, MessageRole):
            try:
                object.__setattr__(self, "role", MessageRole(str(self.role).lower()))
            except ValueError as exc:
                raise ValidationError(f"Invalid message role: {self.role!r}") from exc
        if not isinstance(self.content, str):
            raise ValidationError("Message content must be text")

    @classmethod
    def system(cls, content: str) -> CanonicalMessage:
        return cls(MessageRole.SYSTEM, content)

    @classmethod
    def user(cls, content: str) -> CanonicalMessage:
        return cls(MessageRole.USER, content)

    @classmethod
    def assistant(cls, content: str) -> CanonicalMessage:
        return cls(MessageRole.ASSISTANT, content)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> CanonicalMessage:
        try:
            return cls(raw["role"], raw["content"])
        except KeyError as exc:
            raise ValidationError(f"Message is missing field {exc.args[0]!r}") from exc

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


def normalize_messages(
    messages: Iterable[CanonicalMessage | Mapping[str, Any]],
) -> tuple[CanonicalMessage, ...]:
    """Coerce and validate a message sequence.

    Rules: non-empty, at most one system message.  A system message found
    later in the sequence is moved to the front; all other turns keep order.
    """
    coerced = [
        m if isinstance(m, CanonicalMessage) else CanonicalMessage.from_dict(m)
        for m in messages
    ]
    if not coerced:
        raise ValidationError("messages must not be empty")

    systems = [m for m in coerced if m.role is MessageRole.SYSTEM]
    if len(systems) > 1:
        raise ValidationError("At most one system message is allowed")

    turns = [m for m in coerced if m.role is not MessageRole.SYSTEM]
    return tuple(systems + turns)


# ═══════════════════════════════════════════════════════════════
#  RequestOptions
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class RequestOptions:
    """Per-call options for ``ChatGateway.chat``.

    Attributes:
        provider:    Explicit provider.  Must be configured, else the call
                     fails fast with ``ProviderUnavailable``.
        model:       Model override; defaults to the provider's model.
        max_tokens:  Response budget, > 0.
        temperature: Sampling temperature in [0, 2].
        max_retries: Attempts on the resolved provider, >= 1.
        timeout_s:   Bound on each suspension (slot wait, provider call).
                     ``None`` uses the gateway default.
        deadline_s:  Optional budget for the whole ``chat`` call.
    """

    provider: ProviderName | str | None = None
    model: str | None = None
    max_tokens: int = 500
    temperature: float = 0.8
    max_retries: int = 3
    timeout_s: float | None = None
    deadline_s: float | None = None

    def __post_init__(self) -> None:
        if self.max_tokens <= 0:
            raise ValidationError("max_tokens must be positive")
        if not 0.0 <= self.temperature <= 2.0:
            raise ValidationError("temperature must be within [0, 2]")
        if self.max_retries < 1:
            raise ValidationError("max_retries must be at least 1")
        if self.timeout_s is not None and self.timeout_s <= 0:
            raise ValidationError("timeout_s must be positive")
        if self.deadline_s is not None and self.deadline_s <= 0:
            raise ValidationError("deadline_s must be positive")


# ═══════════════════════════════════════════════════════════════
#  ChatResult
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class TokenUsage:
    prompt_tokens: int = 0
    response_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.response_tokens


@dataclass(frozen=True, slots=True)
class ChatResult:
    """Normalised provider response.  Transient; never persisted by the core."""

    content: str
    provider_name: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
