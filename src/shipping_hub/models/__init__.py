from .env_cfg import EnvCfg
from .events import ShippingEvent
from .status import PaymentMode, ShipmentStatus
from .provider import Provider, ProviderSummary
from .rates import (
    RateCharges,
    RateConstraints,
    RateFeatures,
    RatePerformance,
    RateRequest,
    SelectionResult,
    ShippingRate,
)
from .shipment import (
    Address,
    ConnectionResult,
    PackageDimensions,
    ServiceabilityResult,
    ServiceabilitySummary,
    ShipmentAttempt,
    ShipmentItem,
    ShipmentRequest,
    ShipmentResult,
    TrackingInfo,
    TrackingStatus,
    WebhookEvent,
)

__all__ = [
    "EnvCfg",
    "ShippingEvent",
    "PaymentMode",
    "ShipmentStatus",
    "Provider",
    "ProviderSummary",
    "RateCharges",
    "RateConstraints",
    "RateFeatures",
    "RatePerformance",
    "RateRequest",
    "SelectionResult",
    "ShippingRate",
    "Address",
    "ConnectionResult",
    "PackageDimensions",
    "ServiceabilityResult",
    "ServiceabilitySummary",
    "ShipmentAttempt",
    "ShipmentItem",
    "ShipmentRequest",
    "ShipmentResult",
    "TrackingInfo",
    "TrackingStatus",
    "WebhookEvent",
]
