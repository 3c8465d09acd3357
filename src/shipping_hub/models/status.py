from __future__ import annotations

from enum import Enum


class ShipmentStatus(str, Enum):
    """Shared status vocabulary every provider status is normalized onto."""

    PENDING = "pending"
    CREATED = "created"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETURNED = "returned"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value


class PaymentMode(str, Enum):
    PREPAID = "prepaid"
    COD = "cod"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: object) -> "PaymentMode":
        """Accepts the enum, 'prepaid'/'cod' in any case, or a bool meaning COD."""
        if isinstance(value, PaymentMode):
            return value
        if isinstance(value, bool):
            return cls.COD if value else cls.PREPAID
        if value is None:
            return cls.PREPAID
        return cls(str(value).strip().lower())
