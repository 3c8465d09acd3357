from __future__ import annotations
from dataclasses import dataclass


@dataclass(frozen=True)
class EnvCfg:
    """Settings resolved by get_app_env()."""
    SHIPPING_PROVIDERS_FILE: str = ""
    SHIPPING_WAREHOUSE_PINCODE: str = ""
    SHIPPING_PROVIDER_TIMEOUT: float = 8.0
    SHIPPING_RATE_CACHE_TTL: float = 300.0
    SHIPPING_DEFAULT_STRATEGY: str = "balanced"
    SHIPPING_EVENTS_FILE: str = ""
