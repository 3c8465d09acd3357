from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

# event_type values
RATE_FETCH = "rate_fetch"
SERVICEABILITY = "serviceability"
SHIPMENT_CREATE = "shipment_create"
TRACK = "track"
CANCEL = "cancel"
WEBHOOK = "webhook"

# status values
SUCCESS = "success"
FAILED = "failed"
PENDING = "pending"


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass(frozen=True)
class ShippingEvent:
    """One provider interaction, kept for audit and failure-rate reporting."""

    event_type: str
    status: str
    provider_id: Optional[str] = None
    provider_code: Optional[str] = None
    order_id: Optional[str] = None
    tracking_number: Optional[str] = None
    error: Optional[str] = None
    details: Mapping[str, Any] = field(default_factory=dict)
    created_at: dt.datetime = field(default_factory=_utcnow)

    @property
    def failed(self) -> bool:
        return self.status == FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "eventType": self.event_type,
            "status": self.status,
            "providerId": self.provider_id,
            "providerCode": self.provider_code,
            "orderId": self.order_id,
            "trackingNumber": self.tracking_number,
            "error": self.error,
            "details": dict(self.details),
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ShippingEvent":
        created = dt.datetime.fromisoformat(str(data["createdAt"]))
        if created.tzinfo is None:
            created = created.replace(tzinfo=dt.timezone.utc)
        return cls(
            event_type=str(data["eventType"]),
            status=str(data["status"]),
            provider_id=data.get("providerId"),
            provider_code=data.get("providerCode"),
            order_id=data.get("orderId"),
            tracking_number=data.get("trackingNumber"),
            error=data.get("error"),
            details=dict(data.get("details") or {}),
            created_at=created,
        )
