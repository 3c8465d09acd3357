from .base import ShippingProvider, TokenStore
from .registry import ProviderFactory, ProviderRegistry, default_registry

__all__ = [
    "ShippingProvider",
    "TokenStore",
    "ProviderFactory",
    "ProviderRegistry",
    "default_registry",
]
