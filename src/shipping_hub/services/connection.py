from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from shipping_hub.errors import ConfigurationError
from shipping_hub.models import ConnectionResult, Provider
from shipping_hub.providers.registry import ProviderRegistry
from shipping_hub.repository.providers import _BaseProviderRepository


class ProviderConnectionService:
    """Admin flows that change a provider row: connect, disconnect, enable/disable.

    The orchestrator only reads provider rows; everything that writes
    connection state goes through here.
    """

    def __init__(
        self,
        repository: _BaseProviderRepository,
        registry: ProviderRegistry,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.logger = logger or logging.getLogger("shipping_hub.services.connection")

    def _get(self, provider_id: str) -> Provider:
        provider = self.repository.get_by_id(provider_id)
        if provider is None:
            raise ConfigurationError(f"Unknown shipping provider id: {provider_id}")
        return provider

    def connect(self, provider_id: str, credentials: Mapping[str, Any]) -> ConnectionResult:
        """
        Log in to the carrier and store the resulting token.

        Credentials are merged into the provider config so adapters can
        re-authenticate when the token lapses. A rejected login is recorded on
        the row as `auth_error` and returned, not raised.
        """
        provider = self._get(provider_id)
        adapter = self.registry.create(provider, self.repository)
        result = adapter.connect(credentials)

        if not result.success:
            self.logger.warning("Connect failed for provider %s (%s): %s", provider.id, provider.code, result.error)
            self.repository.record_auth_error(provider.id, result.error or "connection failed")
            return result

        self.repository.mark_connected(
            provider.id,
            token=result.token,
            expires_at=result.token_expires_at,
            config={**dict(provider.config), **dict(credentials)},
        )
        self.logger.info("Connected provider %s (%s)", provider.id, provider.code)
        return result

    def disconnect(self, provider_id: str) -> Provider:
        self._get(provider_id)
        self.logger.info("Disconnecting provider %s", provider_id)
        return self.repository.mark_disconnected(provider_id)

    def toggle(self, provider_id: str, enabled: Optional[bool] = None) -> Provider:
        """Flip (or set) is_enabled. Enabling a provider that is not connected is refused."""
        provider = self._get(provider_id)
        target = (not provider.is_enabled) if enabled is None else bool(enabled)
        if target and not provider.is_connected:
            raise ConfigurationError(f"Provider {provider_id} must be connected before it can be enabled")
        self.logger.info("Provider %s %s", provider_id, "enabled" if target else "disabled")
        return self.repository.set_enabled(provider_id, target)
