"""Provider registry — credential pools, client handles, and key rotation.

Each configured provider owns an ordered tuple of API keys and one client
handle per key.  The only mutation after construction is advancing a
provider's ``current_key_index`` cyclically.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence

import httpx
import structlog

from dobby.domain.enums import ProviderName
from dobby.domain.exceptions import ConfigurationError
from dobby.shared.providers.types import ProviderClient, ProviderConfig

logger = structlog.get_logger(__name__)

HttpClientFactory = Callable[[ProviderConfig], httpx.AsyncClient]


def default_http_factory(cfg: ProviderConfig) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=cfg.base_url, timeout=cfg.timeout_s)


class ProviderRegistry:
    """Holds per-provider key pools and exposes current-client lookup.

    Raises:
        ConfigurationError: if no provider has at least one key.
    """

    def __init__(
        self,
        providers: Sequence[ProviderConfig],
        *,
        default_provider: ProviderName | str | None = None,
        http_factory: HttpClientFactory = default_http_factory,
    ) -> None:
        ordered = sorted(providers, key=lambda p: p.priority)
        self._configs: dict[ProviderName, ProviderConfig] = {p.name: p for p in ordered}
        if not any(p.has_keys for p in self._configs.values()):
            raise ConfigurationError(
                "At least one AI provider (sentient, openai or anthropic) must be configured"
            )

        # Fixed priority order, configured default first
        self._order: list[ProviderName] = list(self._configs)
        preferred = ProviderName.parse(default_provider) if default_provider else None
        if preferred in self._configs:
            self._order.remove(preferred)
            self._order.insert(0, preferred)

        self._indices: dict[ProviderName, int] = {name: 0 for name in self._configs}
        self._lock = threading.Lock()

        self._http: dict[ProviderName, httpx.AsyncClient] = {}
        self._clients: dict[ProviderName, tuple[ProviderClient, ...]] = {}
        for name, cfg in self._configs.items():
            if not cfg.has_keys:
                self._clients[name] = ()
                continue
            http = http_factory(cfg)
            self._http[name] = http
            self._clients[name] = tuple(
                ProviderClient(
                    provider=name,
                    api_key=key,
                    key_index=idx,
                    base_url=cfg.base_url,
                    default_model=cfg.default_model,
                    http=http,
                )
                for idx, key in enumerate(cfg.api_keys)
            )

        logger.info(
            "provider_registry_initialized",
            order=[p.value for p in self._order],
            key_counts={p.value: len(self._clients[p]) for p in self._order},
        )

    # ── Lookup ───────────────────────────────────────────────
    @property
    def priority_order(self) -> list[ProviderName]:
        return list(self._order)

    def config(self, provider: ProviderName | str) -> ProviderConfig | None:
        name = ProviderName.parse(provider)
        return self._configs.get(name) if name else None

    def is_available(self, provider: ProviderName | str) -> bool:
        name = ProviderName.parse(provider)
        return bool(name and self._clients.get(name))

    def key_count(self, provider: ProviderName | str) -> int:
        name = ProviderName.parse(provider)
        return len(self._clients.get(name, ())) if name else 0

    def current_key_index(self, provider: ProviderName | str) -> int:
        name = ProviderName.parse(provider)
        if name is None:
            return 0
        with self._lock:
            return self._indices.get(name, 0)

    def get_current_client(self, provider: ProviderName | str) -> ProviderClient | None:
        """Client bound to the provider's current key, or None if unavailable."""
        name = ProviderName.parse(provider)
        if name is None:
            return None
        clients = self._clients.get(name, ())
        if not clients:
            return None
        with self._lock:
            return clients[self._indices[name] % len(clients)]

    def default_provider(self) -> ProviderName:
        """First provider in priority order with at least one key."""
        for name in self._order:
            if self._clients[name]:
                return name
        raise ConfigurationError("No AI provider has a configured API key")

    def fallback_chain(self, exclude: ProviderName | None = None) -> list[ProviderName]:
        """Available providers in priority order, minus ``exclude``."""
        return [n for n in self._order if n is not exclude and self._clients[n]]

    def available_providers(self) -> dict[str, bool]:
        return {name.value: bool(self._clients[name]) for name in self._order}

    # ── Rotation ─────────────────────────────────────────────
    def rotate(self, provider: ProviderName | str) -> int:
        """Advance to the next key; no-op with one key or fewer.

        Returns the new current index.
        """
        name = ProviderName.parse(provider)
        if name is None:
            return 0
        count = len(self._clients.get(name, ()))
        with self._lock:
            if count <= 1:
                return self._indices.get(name, 0)
            previous = self._indices[name]
            self._indices[name] = (previous + 1) % count
            current = self._indices[name]
        logger.debug(
            "provider_key_rotated",
            provider=name.value,
            from_index=previous,
            to_index=current,
            key_count=count,
        )
        return current

    # ── Lifecycle ────────────────────────────────────────────
    async def aclose(self) -> None:
        for http in self._http.values():
            await http.aclose()
