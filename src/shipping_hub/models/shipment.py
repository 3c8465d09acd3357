from __future__ import annotations

import datetime as dt
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Mapping, Optional

from shipping_hub.models.provider import ProviderSummary
from shipping_hub.models.status import PaymentMode, ShipmentStatus


def _iso(value: Optional[dt.datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class Address:
    name: str
    phone: str
    line1: str
    city: str
    state: str
    pincode: str
    line2: str = ""
    email: str = ""
    country: str = "India"


@dataclass(frozen=True)
class ShipmentItem:
    name: str
    sku: str
    units: int
    selling_price: float
    weight: Optional[float] = None


@dataclass(frozen=True)
class PackageDimensions:
    length: float = 10.0
    breadth: float = 10.0
    height: float = 10.0


@dataclass(frozen=True)
class ShipmentRequest:
    order_id: str
    pickup_pincode: str
    delivery_address: Address
    items: tuple[ShipmentItem, ...]
    weight: float
    sub_total: float
    payment_mode: PaymentMode = PaymentMode.PREPAID
    cod_amount: Optional[float] = None
    dimensions: PackageDimensions = field(default_factory=PackageDimensions)
    order_date: Optional[dt.datetime] = None
    # caller's preference; the orchestrator falls back when it fails
    provider_id: Optional[str] = None
    courier_code: Optional[str] = None
    pickup_location: str = "Primary"

    def for_courier(self, courier_code: Optional[str]) -> "ShipmentRequest":
        return replace(self, courier_code=courier_code)


@dataclass(frozen=True)
class ShipmentAttempt:
    """One failed try at creating a shipment with one provider."""

    provider_id: str
    provider_code: str
    error: str
    error_type: str = "ProviderError"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ShipmentResult:
    provider_id: str
    provider_code: str
    tracking_number: str
    courier_name: str
    tracking_url: str = ""
    courier_code: Optional[str] = None
    provider_shipment_id: Optional[str] = None
    labels: Mapping[str, str] = field(default_factory=dict)
    estimated_delivery: Optional[dt.datetime] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    failed_attempts: tuple[ShipmentAttempt, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "providerId": self.provider_id,
            "providerCode": self.provider_code,
            "trackingNumber": self.tracking_number,
            "courierName": self.courier_name,
            "courierCode": self.courier_code,
            "trackingUrl": self.tracking_url,
            "providerShipmentId": self.provider_shipment_id,
            "labels": dict(self.labels),
            "estimatedDelivery": _iso(self.estimated_delivery),
            "metadata": dict(self.metadata),
            "failedAttempts": [a.to_dict() for a in self.failed_attempts],
        }


@dataclass(frozen=True)
class TrackingStatus:
    status: ShipmentStatus
    provider_status: str
    timestamp: Optional[dt.datetime]  # None when the carrier sent no event time
    location: str = ""
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "providerStatus": self.provider_status,
            "timestamp": _iso(self.timestamp),
            "location": self.location,
            "description": self.description,
        }


@dataclass(frozen=True)
class TrackingInfo:
    tracking_number: str
    courier_name: str
    current_status: TrackingStatus
    history: tuple[TrackingStatus, ...] = ()
    estimated_delivery: Optional[dt.datetime] = None
    delivered_at: Optional[dt.datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "trackingNumber": self.tracking_number,
            "courierName": self.courier_name,
            "currentStatus": self.current_status.to_dict(),
            "history": [h.to_dict() for h in self.history],
            "estimatedDelivery": _iso(self.estimated_delivery),
            "deliveredAt": _iso(self.delivered_at),
        }


@dataclass(frozen=True)
class WebhookEvent:
    provider_id: str
    provider_code: str
    tracking_number: str
    status: TrackingStatus
    raw_payload: Mapping[str, Any] = field(default_factory=dict)
    order_id: Optional[str] = None

    def fingerprint(self) -> tuple[str, str, str]:
        """Key callers can store to apply each delivery at most once.

        Built only from what the payload carries, so a redelivered callback
        yields the same key.
        """
        return (self.tracking_number, self.status.status.value, _iso(self.status.timestamp) or "")

    def to_dict(self) -> dict[str, Any]:
        return {
            "providerId": self.provider_id,
            "providerCode": self.provider_code,
            "trackingNumber": self.tracking_number,
            "orderId": self.order_id,
            "status": self.status.to_dict(),
        }


@dataclass(frozen=True)
class ConnectionResult:
    success: bool
    token: Optional[str] = None
    token_expires_at: Optional[dt.datetime] = None
    account_info: Mapping[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass(frozen=True)
class ServiceabilityResult:
    serviceable: bool
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ServiceabilitySummary:
    pincode: str
    serviceable: bool
    providers: tuple[ProviderSummary, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "pincode": self.pincode,
            "serviceable": self.serviceable,
            "providers": [p.to_dict() for p in self.providers],
        }
