from __future__ import annotations

import logging
from typing import Callable, Optional

from shipping_hub.errors import ConfigurationError
from shipping_hub.models import Provider
from shipping_hub.providers.base import ShippingProvider, TokenStore

ProviderFactory = Callable[[], ShippingProvider]

logger = logging.getLogger("shipping_hub.providers.registry")


class ProviderRegistry:
    """Maps a provider code to a zero-argument adapter factory.

    Registration is explicit (done once at startup by whoever wires the
    application) so adding a carrier never touches the orchestrator.
    """

    def __init__(self) -> None:
        self._factories: dict[str, ProviderFactory] = {}

    def register(self, code: str, factory: ProviderFactory, *, replace: bool = False) -> None:
        key = code.strip().lower()
        if key in self._factories and not replace:
            raise ConfigurationError(f"Provider factory already registered for '{key}'")
        self._factories[key] = factory
        logger.debug("Registered shipping provider factory: %s", key)

    def unregister(self, code: str) -> None:
        self._factories.pop(code.strip().lower(), None)

    def has(self, code: str) -> bool:
        return code.strip().lower() in self._factories

    def codes(self) -> tuple[str, ...]:
        return tuple(sorted(self._factories))

    def create(self, provider: Provider, token_store: Optional[TokenStore] = None) -> ShippingProvider:
        factory = self._factories.get(provider.code.strip().lower())
        if factory is None:
            raise ConfigurationError(
                f"No adapter registered for provider code '{provider.code}' (id={provider.id})")
        return factory().initialize(provider, token_store)


def default_registry() -> ProviderRegistry:
    """Registry with the adapters shipped in this package."""
    from shipping_hub.providers.replay import ReplayProvider
    from shipping_hub.providers.shiprocket import ShiprocketProvider

    registry = ProviderRegistry()
    registry.register(ShiprocketProvider.code, ShiprocketProvider)
    registry.register(ReplayProvider.code, ReplayProvider)
    return registry
