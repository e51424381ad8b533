"""Tests for ProviderRegistry key pools and rotation."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest

from dobby.domain.enums import ProviderName
from dobby.domain.exceptions import ConfigurationError
from dobby.shared.providers.registry import ProviderRegistry
from dobby.shared.providers.types import ProviderConfig, mask_key, parse_keys

S, O, A = ProviderName.SENTIENT, ProviderName.OPENAI, ProviderName.ANTHROPIC


def _offline(cfg: ProviderConfig) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=cfg.base_url,
        transport=httpx.MockTransport(lambda request: httpx.Response(599)),
    )


def make_registry(configs, **kwargs) -> ProviderRegistry:
    return ProviderRegistry(configs, http_factory=_offline, **kwargs)


class TestParseKeys:
    def test_splits_and_strips(self) -> None:
        assert parse_keys(" k1, k2 ,k3 ") == ("k1", "k2", "k3")

    def test_drops_empty_and_duplicates(self) -> None:
        assert parse_keys("k1,,k2,k1, ") == ("k1", "k2")

    def test_empty(self) -> None:
        assert parse_keys("") == ()
        assert parse_keys(None) == ()

    def test_mask_key(self) -> None:
        assert mask_key("sk-1234567890abcd") == "sk-1...abcd"
        assert mask_key("short") == "***"


class TestRegistryConstruction:
    def test_requires_one_configured_provider(self) -> None:
        with pytest.raises(ConfigurationError):
            make_registry([ProviderConfig(name=S), ProviderConfig(name=O)])

    def test_priority_order(self, provider_configs) -> None:
        reg = make_registry(list(reversed(provider_configs)))
        assert reg.priority_order == [S, O, A]

    def test_default_provider_moves_first(self, provider_configs) -> None:
        reg = make_registry(provider_configs, default_provider="anthropic")
        assert reg.priority_order == [A, S, O]
        assert reg.default_provider() is A

    def test_default_skips_unconfigured(self) -> None:
        reg = make_registry([
            ProviderConfig(name=S, priority=1),
            ProviderConfig(name=O, api_keys=("o1",), priority=2),
        ], default_provider="sentient")
        assert reg.default_provider() is O

    def test_availability(self) -> None:
        reg = make_registry([
            ProviderConfig(name=S, api_keys=("s1",), priority=1),
            ProviderConfig(name=O, priority=2),
        ])
        assert reg.available_providers() == {"sentient": True, "openai": False}
        assert reg.is_available("sentient")
        assert not reg.is_available(O)
        assert not reg.is_available("gemini")
        assert reg.get_current_client(O) is None

    def test_fallback_chain_excludes_primary_and_unconfigured(self) -> None:
        reg = make_registry([
            ProviderConfig(name=S, api_keys=("s1",), priority=1),
            ProviderConfig(name=O, priority=2),
            ProviderConfig(name=A, api_keys=("a1",), priority=3),
        ])
        assert reg.fallback_chain(exclude=S) == [A]
        assert reg.fallback_chain() == [S, A]

    def test_one_client_per_key(self, provider_configs) -> None:
        reg = make_registry(provider_configs)
        client = reg.get_current_client(S)
        assert client is not None
        assert client.api_key == "s-key-1"
        assert client.key_index == 0
        assert client.default_model == "dobby-mini"
        assert reg.key_count(S) == 2

    def test_client_repr_masks_key(self) -> None:
        reg = make_registry([ProviderConfig(name=O, api_keys=("sk-secret-value-1234",))])
        client = reg.get_current_client(O)
        assert "sk-secret-value-1234" not in repr(client)


class TestRotation:
    def test_cycles_through_keys(self) -> None:
        reg = make_registry([ProviderConfig(name=S, api_keys=("k1", "k2", "k3"))])
        seen = []
        for _ in range(4):
            seen.append(reg.get_current_client(S).api_key)  # type: ignore[union-attr]
            reg.rotate(S)
        assert seen == ["k1", "k2", "k3", "k1"]

    def test_single_key_is_noop(self) -> None:
        reg = make_registry([ProviderConfig(name=S, api_keys=("only",))])
        assert reg.rotate(S) == 0
        assert reg.get_current_client(S).api_key == "only"  # type: ignore[union-attr]

    def test_unconfigured_is_noop(self, provider_configs) -> None:
        reg = make_registry(provider_configs)
        assert reg.rotate("gemini") == 0

    def test_rotation_is_per_provider(self, provider_configs) -> None:
        reg = make_registry(provider_configs)
        reg.rotate(S)
        assert reg.current_key_index(S) == 1
        assert reg.current_key_index(O) == 0

    def test_concurrent_rotation_stays_in_bounds(self) -> None:
        reg = make_registry([ProviderConfig(name=S, api_keys=("k1", "k2", "k3"))])

        def spin() -> None:
            for _ in range(1000):
                reg.rotate(S)
                assert reg.get_current_client(S) is not None

        with ThreadPoolExecutor(max_workers=8) as pool:
            for f in [pool.submit(spin) for _ in range(8)]:
                f.result()

        assert reg.current_key_index(S) == 8000 % 3
