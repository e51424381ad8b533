"""Dobby AI Gateway — Application Configuration."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dobby.domain.enums import ProviderName


class Environment(str, enum.Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Centralised, validated configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    app_name: str = "dobby-ai-gateway"
    app_env: Environment = Environment.DEVELOPMENT
    app_debug: bool = False
    log_level: str = "INFO"

    # ── Provider credentials (comma-separated for rotation) ──
    sentient_api_keys: str = ""
    openai_api_keys: str = ""
    anthropic_api_keys: str = ""

    # ── Provider endpoints & models ──────────────────────────
    sentient_base_url: str = "https://api.fireworks.ai/inference/v1"
    openai_base_url: str = "https://api.openai.com/v1"
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    sentient_model: str = (
        "accounts/sentientfoundation-serverless/models/dobby-mini-unhinged-plus-llama-3-1-8b"
    )
    ai_model: str = "gpt-4-turbo-preview"
    anthropic_model: str = "claude-3-5-sonnet-20241022"

    # ── Routing ──────────────────────────────────────────────
    default_ai_provider: str = ProviderName.SENTIENT.value
    ai_provider_priority: str = "sentient,openai,anthropic"
    enable_key_rotation: bool = True
    enable_provider_fallback: bool = True

    # ── Rate limiting (shared by all providers) ──────────────
    ai_max_concurrent: int = 5
    ai_min_time_ms: int = 200

    # ── Retry / timeouts ─────────────────────────────────────
    ai_max_retries: int = 3
    ai_retry_initial_delay: float = 1.0
    ai_retry_max_delay: float = 10.0
    ai_timeout_seconds: float = 30.0

    # ── Response shaping ─────────────────────────────────────
    max_response_length: int = 500
    ai_temperature: float = 0.8
    max_conversation_history: int = 5

    # ── Derived helpers ──────────────────────────────────────
    @property
    def is_production(self) -> bool:
        return self.app_env == Environment.PRODUCTION

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        # Tolerate trailing comments such as "INFO  # verbose in dev"
        return v.split()[0].upper() if v.strip() else "INFO"

    @field_validator("default_ai_provider")
    @classmethod
    def _known_provider(cls, v: str) -> str:
        if ProviderName.parse(v) is None:
            names = ", ".join(p.value for p in ProviderName)
            raise ValueError(f"default_ai_provider must be one of: {names}")
        return v.strip().lower()

    @model_validator(mode="after")
    def _check_limits(self) -> Settings:
        if self.ai_max_concurrent < 1:
            raise ValueError("ai_max_concurrent must be at least 1")
        if self.ai_min_time_ms < 0:
            raise ValueError("ai_min_time_ms must not be negative")
        if self.ai_max_retries < 1:
            raise ValueError("ai_max_retries must be at least 1")
        if self.ai_retry_max_delay < self.ai_retry_initial_delay:
            raise ValueError("ai_retry_max_delay must be >= ai_retry_initial_delay")
        if not 0.0 <= self.ai_temperature <= 2.0:
            raise ValueError("ai_temperature must be within [0, 2]")
        return self


def get_settings(**overrides: Any) -> Settings:
    """Factory that allows test-time overrides."""
    return Settings(**overrides)
