from .connection import ProviderConnectionService
from .orchestrator import DEFAULT_PROVIDER_TIMEOUT_SECONDS, ShippingOrchestrator
from .rate_cache import DEFAULT_TTL_SECONDS, RateCache
from .selector import (
    BALANCED,
    CHEAPEST,
    FASTEST,
    PRIORITY,
    SPECIFIC,
    STRATEGIES,
    RateSelector,
    best_rates_by_delivery_days,
    recommend_strategy,
)

__all__ = [
    "ProviderConnectionService",
    "DEFAULT_PROVIDER_TIMEOUT_SECONDS",
    "ShippingOrchestrator",
    "DEFAULT_TTL_SECONDS",
    "RateCache",
    "BALANCED",
    "CHEAPEST",
    "FASTEST",
    "PRIORITY",
    "SPECIFIC",
    "STRATEGIES",
    "RateSelector",
    "best_rates_by_delivery_days",
    "recommend_strategy",
]
