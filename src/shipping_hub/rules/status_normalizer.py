# src/shipping_hub/rules/status_normalizer.py
from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional

from shipping_hub.models.status import ShipmentStatus

logger = logging.getLogger("shipping_hub.rules.status_normalizer")

S = ShipmentStatus

# -------- Per-provider exact tables (raw status is case-sensitive) --------
_STATUS_MAPPINGS: dict[str, dict[str, ShipmentStatus]] = {
    "shiprocket": {
        "pending": S.PENDING,
        "awaiting_pickup": S.CREATED,
        "pickup_scheduled": S.CREATED,
        "pickup_complete": S.PICKED_UP,
        "in_transit": S.IN_TRANSIT,
        "out_for_delivery": S.OUT_FOR_DELIVERY,
        "delivered": S.DELIVERED,
        "cancelled": S.CANCELLED,
        "rto": S.RETURNED,
        "lost": S.FAILED,
        "damaged": S.FAILED,
        # uppercase labels used in webhook bodies
        "NEW": S.PENDING,
        "PICKUP SCHEDULED": S.CREATED,
        "PICKED UP": S.PICKED_UP,
        "IN TRANSIT": S.IN_TRANSIT,
        "OUT FOR DELIVERY": S.OUT_FOR_DELIVERY,
        "DELIVERED": S.DELIVERED,
        "CANCELED": S.CANCELLED,
        "RTO INITIATED": S.RETURNED,
        "RTO DELIVERED": S.RETURNED,
        "UNDELIVERED": S.FAILED,
    },
    "delhivery": {
        "Pending": S.PENDING,
        "Pickup Scheduled": S.CREATED,
        "Manifested": S.CREATED,
        "Dispatched": S.PICKED_UP,
        "In Transit": S.IN_TRANSIT,
        "Out For Delivery": S.OUT_FOR_DELIVERY,
        "Delivered": S.DELIVERED,
        "Cancelled": S.CANCELLED,
        "RTO": S.RETURNED,
        "Lost": S.FAILED,
    },
    "bluedart": {
        "Booked": S.CREATED,
        "Picked Up": S.PICKED_UP,
        "In Transit": S.IN_TRANSIT,
        "Out for Delivery": S.OUT_FOR_DELIVERY,
        "Delivered": S.DELIVERED,
        "Returned": S.RETURNED,
        "Cancelled": S.CANCELLED,
    },
}

# -------- Keyword fallback (lowercased, first match wins) --------
# Order matters: an unmapped "Out For Delivery" resolves to DELIVERED, so
# carriers using that label must list it in their exact table.
_KEYWORD_RULES: tuple[tuple[tuple[str, ...], ShipmentStatus], ...] = (
    (("deliver",), S.DELIVERED),
    (("out for",), S.OUT_FOR_DELIVERY),
    (("transit",), S.IN_TRANSIT),
    (("pick",), S.PICKED_UP),
    (("cancel",), S.CANCELLED),
    (("return", "rto"), S.RETURNED),
    (("fail", "lost"), S.FAILED),
    (("pending", "await"), S.PENDING),
)

_TERMINAL = frozenset({S.DELIVERED, S.FAILED, S.RETURNED, S.CANCELLED})
_FAILURE = frozenset({S.FAILED, S.CANCELLED})

_LABELS: dict[ShipmentStatus, str] = {
    S.PENDING: "Pending",
    S.CREATED: "Label Created",
    S.PICKED_UP: "Picked Up",
    S.IN_TRANSIT: "In Transit",
    S.OUT_FOR_DELIVERY: "Out for Delivery",
    S.DELIVERED: "Delivered",
    S.FAILED: "Delivery Failed",
    S.RETURNED: "Returned to Sender",
    S.CANCELLED: "Cancelled",
}


def _any_in(text: str, phrases: Iterable[str]) -> bool:
    return any(p in text for p in phrases)


def infer_from_keywords(raw_status: object) -> ShipmentStatus:
    """Case-insensitive substring inference; PENDING when nothing matches."""
    text = str(raw_status or "").casefold()
    for phrases, status in _KEYWORD_RULES:
        if _any_in(text, phrases):
            return status
    return S.PENDING


def normalize(provider_code: Optional[str], raw_status: object) -> ShipmentStatus:
    """
    Map a provider's raw status onto ShipmentStatus.

    1) exact lookup in the provider's table (provider code is case-insensitive)
    2) keyword inference on a miss or for providers without a table

    Never raises. Gaps are logged so the tables can be extended.
    """
    code = (provider_code or "").strip().lower()
    raw = "" if raw_status is None else str(raw_status)
    table = _STATUS_MAPPINGS.get(code)

    if table is None:
        logger.warning(
            "No status mapping for provider '%s'; inferring from '%s'", provider_code, raw)
        return infer_from_keywords(raw)

    hit = table.get(raw)
    if hit is not None:
        return hit

    inferred = infer_from_keywords(raw)
    logger.warning(
        "Unknown status '%s' for provider '%s'; inferred %s", raw, code, inferred.value)
    return inferred


def register_mapping(provider_code: str, table: Mapping[str, ShipmentStatus | str]) -> None:
    """Add or extend a provider's table (values may be enum members or their values)."""
    code = provider_code.strip().lower()
    current = _STATUS_MAPPINGS.setdefault(code, {})
    for raw, status in table.items():
        current[str(raw)] = ShipmentStatus(status)


def mapping_for(provider_code: str) -> dict[str, ShipmentStatus]:
    """Copy of a provider's table (empty when none is registered)."""
    return dict(_STATUS_MAPPINGS.get(provider_code.strip().lower(), {}))


def known_providers() -> tuple[str, ...]:
    return tuple(sorted(_STATUS_MAPPINGS))


def is_terminal(status: ShipmentStatus | str) -> bool:
    return ShipmentStatus(status) in _TERMINAL


def is_success(status: ShipmentStatus | str) -> bool:
    return ShipmentStatus(status) is S.DELIVERED


def is_failure(status: ShipmentStatus | str) -> bool:
    # RETURNED is terminal but not a failure
    return ShipmentStatus(status) in _FAILURE


def get_status_label(status: ShipmentStatus | str) -> str:
    s = ShipmentStatus(status)
    return _LABELS.get(s, s.value)


__all__ = [
    "normalize",
    "infer_from_keywords",
    "register_mapping",
    "mapping_for",
    "known_providers",
    "is_terminal",
    "is_success",
    "is_failure",
    "get_status_label",
]
