"""Tests for Settings and context wiring."""

from __future__ import annotations

import pydantic
import pytest

from dobby.config import Environment, get_settings
from dobby.dependencies import build_context
from dobby.domain.enums import ProviderName
from dobby.domain.exceptions import ConfigurationError


def settings(**overrides):
    base = {
        "_env_file": None,
        "sentient_api_keys": "",
        "openai_api_keys": "",
        "anthropic_api_keys": "",
    }
    base.update(overrides)
    return get_settings(**base)


class TestSettings:
    def test_defaults(self) -> None:
        s = settings()
        assert s.app_env is Environment.DEVELOPMENT
        assert s.default_ai_provider == "sentient"
        assert s.ai_max_concurrent == 5
        assert s.ai_min_time_ms == 200
        assert s.ai_max_retries == 3
        assert s.max_conversation_history == 5
        assert not s.is_production

    def test_log_level_normalised(self) -> None:
        assert settings(log_level="debug  # noisy").log_level == "DEBUG"

    def test_default_provider_validated(self) -> None:
        assert settings(default_ai_provider=" OpenAI ").default_ai_provider == "openai"
        with pytest.raises(pydantic.ValidationError):
            settings(default_ai_provider="gemini")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"ai_max_concurrent": 0},
            {"ai_max_retries": 0},
            {"ai_min_time_ms": -5},
            {"ai_retry_initial_delay": 5.0, "ai_retry_max_delay": 1.0},
        ],
    )
    def test_limits_validated(self, overrides: dict) -> None:
        with pytest.raises(pydantic.ValidationError):
            settings(**overrides)

    def test_reads_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("OPENAI_API_KEYS", "o1,o2")
        monkeypatch.setenv("AI_MAX_CONCURRENT", "2")
        s = get_settings(_env_file=None)
        assert s.openai_api_keys == "o1,o2"
        assert s.ai_max_concurrent == 2


class TestBuildContext:
    def test_no_keys_fails_fast(self) -> None:
        with pytest.raises(ConfigurationError):
            build_context(settings())

    def test_wires_settings_through(self) -> None:
        ctx = build_context(settings(
            openai_api_keys="o1, o2",
            default_ai_provider="openai",
            ai_max_concurrent=3,
            ai_min_time_ms=50,
            ai_retry_initial_delay=0.5,
            ai_retry_max_delay=4.0,
        ))
        assert ctx.registry.key_count(ProviderName.OPENAI) == 2
        assert ctx.registry.default_provider() is ProviderName.OPENAI
        assert ctx.gateway.get_available_providers() == {
            "openai": True, "sentient": False, "anthropic": False,
        }
        assert ctx.limiter.max_concurrent == 3
        assert ctx.limiter.min_interval_s == 0.05
        assert ctx.retry_policy.delay(10) == 4.0
