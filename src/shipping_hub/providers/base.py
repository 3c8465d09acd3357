from __future__ import annotations

import datetime as dt
import logging
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Protocol

from shipping_hub.errors import ConfigurationError
from shipping_hub.models import (
    ConnectionResult,
    Provider,
    RateRequest,
    ServiceabilityResult,
    ShipmentRequest,
    ShipmentResult,
    ShippingRate,
    TrackingInfo,
    WebhookEvent,
)


class TokenStore(Protocol):
    """Where an adapter saves a token it had to refresh mid-call."""

    def update_auth_token(self, provider_id: str, token: str, expires_at: Optional[dt.datetime]) -> Any:
        ...


class ShippingProvider(ABC):
    """Capability interface every carrier integration implements.

    Adapters are built fresh per orchestrator call by the registry, then bound
    to the stored provider row with `initialize()`.

    Error contract:
      - expected "provider says no" outcomes are values (ConnectionResult with
        success=False, [] rates for an uncovered route, serviceable=False)
      - calls that cannot be completed raise ProviderTransportError or
        ProviderAuthError
    """

    code: str = ""
    display_name: str = ""

    def __init__(self) -> None:
        self._provider: Optional[Provider] = None
        self._token_store: Optional[TokenStore] = None
        self.logger = logging.getLogger(f"shipping_hub.providers.{self.code or 'base'}")

    # -- lifecycle ----------------------------------------------------------

    def initialize(self, provider: Provider, token_store: Optional[TokenStore] = None) -> "ShippingProvider":
        self._provider = provider
        self._token_store = token_store
        return self

    @property
    def provider(self) -> Provider:
        if self._provider is None:
            raise ConfigurationError(f"{type(self).__name__} used before initialize()")
        return self._provider

    @property
    def provider_id(self) -> str:
        return self.provider.id

    @property
    def config(self) -> Mapping[str, Any]:
        return self.provider.config

    # -- capabilities -------------------------------------------------------

    @abstractmethod
    def connect(self, credentials: Mapping[str, Any]) -> ConnectionResult:
        ...

    @abstractmethod
    def get_rates(self, request: RateRequest) -> list[ShippingRate]:
        ...

    @abstractmethod
    def check_serviceability(self, pincode: str) -> ServiceabilityResult:
        ...

    @abstractmethod
    def create_shipment(self, request: ShipmentRequest) -> ShipmentResult:
        ...

    @abstractmethod
    def track(self, tracking_number: str) -> TrackingInfo:
        ...

    @abstractmethod
    def parse_webhook(self, payload: Mapping[str, Any]) -> WebhookEvent:
        ...

    def cancel_shipment(self, tracking_number: str) -> bool:
        raise NotImplementedError(f"{self.code} does not support cancellation")

    def verify_webhook(self, payload: Mapping[str, Any], headers: Mapping[str, str]) -> bool:
        return True
