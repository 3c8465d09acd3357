# src/shipping_hub/__init__.py
from .errors import (
    ConfigurationError,
    ProviderError,
    ShipmentCreationError,
    ShippingError,
    ValidationError,
)
from .providers.registry import ProviderRegistry, default_registry
from .repository.providers import InMemoryProviderRepository, JsonProviderRepository
from .services.orchestrator import ShippingOrchestrator

__all__ = [
    "ConfigurationError",
    "ProviderError",
    "ShipmentCreationError",
    "ShippingError",
    "ValidationError",
    "ProviderRegistry",
    "default_registry",
    "InMemoryProviderRepository",
    "JsonProviderRepository",
    "ShippingOrchestrator",
]
