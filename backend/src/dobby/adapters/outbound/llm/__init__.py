"""LLM provider adapters — one wire translation per provider.

Each adapter is a thin, retry-free HTTP call.  The ``ChatGateway`` handles
key rotation, rate limiting, backoff and failover; adapters only translate
canonical messages into the provider's payload and map the provider's
status signal onto the call-error taxonomy.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import httpx
import structlog

from dobby.domain.enums import MessageRole, ProviderName
from dobby.domain.exceptions import FatalError, TransientError, classify_status
from dobby.domain.value_objects import CanonicalMessage, ChatResult, RequestOptions, TokenUsage
from dobby.ports.outbound import ProviderAdapter
from dobby.shared.providers.types import ProviderClient, ProviderConfig, parse_keys

logger = structlog.get_logger(__name__)

SENTIENT_BASE_URL = "https://api.fireworks.ai/inference/v1"
OPENAI_BASE_URL = "https://api.openai.com/v1"
ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1"

SENTIENT_MODEL = "accounts/sentientfoundation-serverless/models/dobby-mini-unhinged-plus-llama-3-1-8b"
OPENAI_MODEL = "gpt-4-turbo-preview"
ANTHROPIC_MODEL = "claude-3-5-sonnet-20241022"

ANTHROPIC_API_VERSION = "2023-06-01"
# Stands in when a conversation would otherwise open without a user turn
OPENING_USER_TURN = "Hello."


def build_provider_configs(
    *,
    sentient_api_keys: str = "",
    openai_api_keys: str = "",
    anthropic_api_keys: str = "",
    sentient_base_url: str = SENTIENT_BASE_URL,
    openai_base_url: str = OPENAI_BASE_URL,
    anthropic_base_url: str = ANTHROPIC_BASE_URL,
    sentient_model: str = SENTIENT_MODEL,
    openai_model: str = OPENAI_MODEL,
    anthropic_model: str = ANTHROPIC_MODEL,
    timeout_s: float = 30.0,
    priority_order: str = "sentient,openai,anthropic",
) -> list[ProviderConfig]:
    """Build ProviderConfig list from settings values."""

    priority_map: dict[str, int] = {}
    for idx, name in enumerate(priority_order.split(",")):
        if name.strip():
            priority_map.setdefault(name.strip().lower(), idx + 1)

    def _config(name: ProviderName, keys: str, base_url: str, model: str) -> ProviderConfig:
        return ProviderConfig(
            name=name,
            api_keys=parse_keys(keys),
            base_url=base_url,
            default_model=model,
            priority=priority_map.get(name.value, 10),
            timeout_s=timeout_s,
        )

    return [
        _config(ProviderName.SENTIENT, sentient_api_keys, sentient_base_url, sentient_model),
        _config(ProviderName.OPENAI, openai_api_keys, openai_base_url, openai_model),
        _config(ProviderName.ANTHROPIC, anthropic_api_keys, anthropic_base_url, anthropic_model),
    ]


# ═══════════════════════════════════════════════════════════════
#  Shared HTTP plumbing
# ═══════════════════════════════════════════════════════════════
class HTTPProviderAdapter(ProviderAdapter):
    """POSTs JSON and maps transport/status failures onto the taxonomy."""

    async def _post(
        self,
        client: ProviderClient,
        path: str,
        *,
        headers: dict[str, str],
        body: dict[str, Any],
    ) -> dict[str, Any]:
        name = self.provider.value
        logger.debug(
            "provider_http_request",
            provider=name,
            path=path,
            model=body.get("model"),
            key_idx=client.key_index,
        )
        try:
            response = await client.http.post(path, headers=headers, json=body)
        except httpx.TimeoutException as exc:
            raise TransientError(name, f"Request timed out ({type(exc).__name__})") from exc
        except httpx.TransportError as exc:
            raise TransientError(name, f"Network error ({type(exc).__name__})") from exc

        if response.status_code >= 400:
            raise classify_status(name, response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as exc:
            raise FatalError(name, "Malformed response: body is not JSON") from exc
        if not isinstance(data, dict):
            raise FatalError(name, "Malformed response: expected a JSON object")
        return data

    @staticmethod
    def _int(value: Any) -> int:
        try:
            return int(value or 0)
        except (TypeError, ValueError):
            return 0


# ═══════════════════════════════════════════════════════════════
#  OpenAI-compatible chat completions
# ═══════════════════════════════════════════════════════════════
class OpenAIAdapter(HTTPProviderAdapter):
    """OpenAI Chat Completions.  System turns stay inside ``messages``."""

    provider = ProviderName.OPENAI
    presence_penalty = 0.6
    frequency_penalty = 0.3

    def build_payload(
        self,
        client: ProviderClient,
        messages: Sequence[CanonicalMessage],
        options: RequestOptions,
    ) -> dict[str, Any]:
        return {
            "model": options.model or client.default_model,
            "messages": [m.to_dict() for m in messages],
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
            "presence_penalty": self.presence_penalty,
            "frequency_penalty": self.frequency_penalty,
        }

    async def call(
        self,
        client: ProviderClient,
        messages: Sequence[CanonicalMessage],
        options: RequestOptions,
    ) -> ChatResult:
        body = self.build_payload(client, messages, options)
        data = await self._post(
            client,
            "/chat/completions",
            headers={
                "Authorization": f"Bearer {client.api_key}",
                "Content-Type": "application/json",
            },
            body=body,
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise FatalError(self.provider.value, "Malformed response: no choices") from exc
        if not isinstance(content, str):
            raise FatalError(self.provider.value, "Malformed response: empty message content")

        usage = data.get("usage") or {}
        return ChatResult(
            content=content,
            provider_name=self.provider.value,
            model=data.get("model") or body["model"],
            usage=TokenUsage(
                prompt_tokens=self._int(usage.get("prompt_tokens")),
                response_tokens=self._int(usage.get("completion_tokens")),
            ),
        )


class SentientAdapter(OpenAIAdapter):
    """Sentient's Dobby models, served through Fireworks' OpenAI-compatible API."""

    provider = ProviderName.SENTIENT


# ═══════════════════════════════════════════════════════════════
#  Anthropic messages
# ═══════════════════════════════════════════════════════════════
class AnthropicAdapter(HTTPProviderAdapter):
    """Anthropic Messages API.

    The system prompt travels in the dedicated ``system`` field; ``messages``
    carries only user/assistant turns, with consecutive same-role turns
    merged because the API requires alternation.
    """

    provider = ProviderName.ANTHROPIC

    @staticmethod
    def split_messages(
        messages: Sequence[CanonicalMessage],
    ) -> tuple[str, list[dict[str, str]]]:
        system = ""
        turns: list[dict[str, str]] = []
        for msg in messages:
            if msg.role is MessageRole.SYSTEM:
                system = msg.content
                continue
            role = "assistant" if msg.role is MessageRole.ASSISTANT else "user"
            if turns and turns[-1]["role"] == role:
                turns[-1]["content"] = f"{turns[-1]['content']}\n\n{msg.content}"
            else:
                turns.append({"role": role, "content": msg.content})
        # The API requires a leading user turn
        if not turns or turns[0]["role"] == "assistant":
            turns.insert(0, {"role": "user", "content": OPENING_USER_TURN})
        return system, turns

    def build_payload(
        self,
        client: ProviderClient,
        messages: Sequence[CanonicalMessage],
        options: RequestOptions,
    ) -> dict[str, Any]:
        system, turns = self.split_messages(messages)
        body: dict[str, Any] = {
            "model": options.model or client.default_model,
            "max_tokens": options.max_tokens,
            "messages": turns,
            # Anthropic accepts [0, 1]
            "temperature": min(options.temperature, 1.0),
        }
        if system:
            body["system"] = system
        return body

    async def call(
        self,
        client: ProviderClient,
        messages: Sequence[CanonicalMessage],
        options: RequestOptions,
    ) -> ChatResult:
        body = self.build_payload(client, messages, options)
        data = await self._post(
            client,
            "/messages",
            headers={
                "x-api-key": client.api_key,
                "anthropic-version": ANTHROPIC_API_VERSION,
                "content-type": "application/json",
            },
            body=body,
        )
        blocks = data.get("content")
        if not isinstance(blocks, list):
            raise FatalError(self.provider.value, "Malformed response: no content blocks")
        texts = [
            b.get("text", "") for b in blocks
            if isinstance(b, dict) and b.get("type") == "text"
        ]
        if not texts:
            raise FatalError(self.provider.value, "Malformed response: no text content")

        usage = data.get("usage") or {}
        return ChatResult(
            content="".join(texts),
            provider_name=self.provider.value,
            model=data.get("model") or body["model"],
            usage=TokenUsage(
                prompt_tokens=self._int(usage.get("input_tokens")),
                response_tokens=self._int(usage.get("output_tokens")),
            ),
        )


def build_adapters() -> dict[ProviderName, ProviderAdapter]:
    """One adapter instance per provider, keyed by provider name."""
    adapters: list[ProviderAdapter] = [SentientAdapter(), OpenAIAdapter(), AnthropicAdapter()]
    return {a.provider: a for a in adapters}
