"""Outbound ports — interfaces that infrastructure adapters must implement.

These are the *driven* ports in hexagonal architecture.  The gateway and
application layers depend only on these abstractions, never on concrete
HTTP clients or storage drivers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass

from dobby.domain.enums import ProviderName
from dobby.domain.value_objects import CanonicalMessage, ChatResult, RequestOptions
from dobby.shared.providers.types import ProviderClient


# ═══════════════════════════════════════════════════════════════
#  LLM provider port
# ═══════════════════════════════════════════════════════════════
class ProviderAdapter(ABC):
    """Translates canonical messages into one provider's wire call.

    Implementations raise the ``ProviderCallError`` family so the gateway can
    classify the failure:

        401 / 403              → AuthError
        429                    → RateLimitError
        timeout, 408, 5xx      → TransientError
        other 4xx, bad payload → FatalError
    """

    provider: ProviderName

    @abstractmethod
    async def call(
        self,
        client: ProviderClient,
        messages: Sequence[CanonicalMessage],
        options: RequestOptions,
    ) -> ChatResult: ...


# ═══════════════════════════════════════════════════════════════
#  Conversation history port
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class ConversationTurn:
    """One stored exchange: what the user said and what the bot replied."""

    user_message: str
    ai_response: str


class ConversationHistoryPort(ABC):
    """Read-only source of prior turns, oldest first."""

    @abstractmethod
    async def get_history(self, user_id: str, limit: int = 5) -> list[ConversationTurn]: ...


class ConversationHistoryWriterPort(ConversationHistoryPort):
    """History source that also records new turns."""

    @abstractmethod
    async def append(self, user_id: str, turn: ConversationTurn) -> None: ...
