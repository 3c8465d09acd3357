from __future__ import annotations

from typing import Iterable, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from shipping_hub.models import ShipmentAttempt


class ShippingError(RuntimeError):
    """Base class for every error raised by shipping_hub."""


class ConfigurationError(ShippingError):
    """No usable provider configured, or no adapter registered for a provider code."""


class ValidationError(ShippingError):
    """Request rejected before it is dispatched to any provider."""


class ProviderError(ShippingError):
    """A provider call could not be completed."""

    def __init__(self, message: str, *, provider_code: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.provider_code = provider_code
        self.status_code = status_code


class ProviderTransportError(ProviderError):
    """Network failure, non-2xx response or malformed body."""


class ProviderAuthError(ProviderError):
    """Provider rejected our credentials or token."""


class ProviderTimeoutError(ProviderError):
    """Provider call exceeded its time budget."""


class ShipmentCreationError(ShippingError):
    """Every eligible provider failed to create the shipment.

    `attempts` keeps one ShipmentAttempt per provider tried, in the order
    they were tried, so callers can show support exactly what happened.
    """

    def __init__(self, attempts: Sequence["ShipmentAttempt"]) -> None:
        self.attempts = tuple(attempts)
        super().__init__(self._format(self.attempts))

    @staticmethod
    def _format(attempts: Iterable["ShipmentAttempt"]) -> str:
        parts = [f"{a.provider_code} ({a.provider_id}): {a.error}" for a in attempts]
        if not parts:
            return "Shipment could not be created: no provider attempted"
        return "Shipment could not be created; attempts: " + "; ".join(parts)


__all__ = [
    "ShippingError",
    "ConfigurationError",
    "ValidationError",
    "ProviderError",
    "ProviderTransportError",
    "ProviderAuthError",
    "ProviderTimeoutError",
    "ShipmentCreationError",
]
