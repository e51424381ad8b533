"""Chat Service.

Builds the canonical message sequence for a user turn — system prompt,
recent history, the new message — and hands it to the ``ChatGateway``.
Persisting the reply is left to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from dobby.domain.enums import ProviderName
from dobby.domain.exceptions import ValidationError
from dobby.domain.value_objects import CanonicalMessage, ChatResult, RequestOptions
from dobby.ports.outbound import ConversationHistoryPort, ConversationTurn
from dobby.shared.providers.gateway import ChatGateway

logger = structlog.get_logger(__name__)


DEFAULT_SYSTEM_PROMPT = "You are DobbyAI, a nerdy AI companion."


@dataclass
class ChatReply:
    """Gateway result plus what the caller needs to persist the exchange."""

    user_id: str | None
    user_message: str
    result: ChatResult
    history_turns: int = 0

    def as_turn(self) -> ConversationTurn:
        return ConversationTurn(user_message=self.user_message, ai_response=self.result.content)


class ChatService:
    """Prepends history to a user message and asks the gateway for a reply."""

    def __init__(
        self,
        gateway: ChatGateway,
        history: ConversationHistoryPort | None = None,
        *,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        max_history: int = 5,
        max_tokens: int = 500,
        temperature: float = 0.8,
        max_retries: int = 3,
        timeout_s: float | None = None,
    ) -> None:
        self._gateway = gateway
        self._history = history
        self._system_prompt = system_prompt
        self._max_history = max_history
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._max_retries = max_retries
        self._timeout_s = timeout_s

    async def build_messages(
        self,
        user_message: str,
        *,
        user_id: str | None = None,
        include_history: bool = True,
        system_prompt: str | None = None,
    ) -> tuple[list[CanonicalMessage], int]:
        """Return (messages, number of history turns included)."""
        messages = [CanonicalMessage.system(system_prompt or self._system_prompt)]

        turns: list[ConversationTurn] = []
        if include_history and user_id and self._history is not None:
            turns = await self._history.get_history(user_id, self._max_history)
        for turn in turns:
            messages.append(CanonicalMessage.user(turn.user_message))
            messages.append(CanonicalMessage.assistant(turn.ai_response))

        messages.append(CanonicalMessage.user(user_message))
        return messages, len(turns)

    async def reply(
        self,
        user_message: str,
        *,
        user_id: str | None = None,
        include_history: bool = True,
        system_prompt: str | None = None,
        provider: ProviderName | str | None = None,
    ) -> ChatReply:
        if not user_message or not user_message.strip():
            raise ValidationError("Message is required")

        messages, history_turns = await self.build_messages(
            user_message,
            user_id=user_id,
            include_history=include_history,
            system_prompt=system_prompt,
        )
        options = RequestOptions(
            provider=provider,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            max_retries=self._max_retries,
            timeout_s=self._timeout_s,
        )
        result = await self._gateway.chat(messages, options)

        logger.info(
            "chat_reply_generated",
            user_id=user_id or "anonymous",
            provider=result.provider_name,
            model=result.model,
            history_turns=history_turns,
            tokens=result.usage.total_tokens,
        )
        return ChatReply(
            user_id=user_id,
            user_message=user_message,
            result=result,
            history_turns=history_turns,
        )
