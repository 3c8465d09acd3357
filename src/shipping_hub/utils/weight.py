from __future__ import annotations

import math
from typing import Any, Iterable, Mapping, Optional, Tuple

from shipping_hub.errors import ValidationError

# Fallback for line items whose product has no weight on record.
DEFAULT_ITEM_WEIGHT_KG = 0.5
# A quote is never requested for less than this.
MIN_PACKAGE_WEIGHT_KG = 0.5

# Volumetric divisor used by Indian couriers (cm^3 per kg).
VOLUMETRIC_DIVISOR = 5000
MAX_SINGLE_DIMENSION_CM = 150
MAX_GIRTH_CM = 300


def _field(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def _as_positive_float(value: Any) -> Optional[float]:
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(f) or f <= 0:
        return None
    return f


def _as_quantity(value: Any) -> int:
    if value is None:
        return 1
    try:
        f = float(value)
    except (TypeError, ValueError) as ex:
        raise ValidationError(f"item quantity must be a whole number, got {value!r}") from ex
    if not f.is_integer():
        raise ValidationError(f"item quantity must be a whole number, got {value!r}")
    return int(f)


def calculate_package_weight(items: Iterable[Any]) -> float:
    """
    Sum weight * quantity over cart/order line items (mappings or objects).

    Missing, zero or unparsable item weights use DEFAULT_ITEM_WEIGHT_KG.
    Missing quantity counts as 1; non-positive quantities are skipped.
    A quantity that is not a whole number raises ValidationError.
    The total is rounded to 2 decimals and never below MIN_PACKAGE_WEIGHT_KG.
    """
    total = 0.0
    for item in items or ():
        qty = _as_quantity(_field(item, "quantity"))
        if qty <= 0:
            continue
        weight = _as_positive_float(_field(item, "weight")) or DEFAULT_ITEM_WEIGHT_KG
        total += weight * qty

    return max(round(total, 2), MIN_PACKAGE_WEIGHT_KG)


def calculate_volumetric_weight(length: float, width: float, height: float) -> float:
    return round((length * width * height) / VOLUMETRIC_DIVISOR, 2)


def get_chargeable_weight(actual_weight: float, dimensions: Optional[Tuple[float, float, float]] = None) -> float:
    """Higher of actual and volumetric weight."""
    if not dimensions:
        return actual_weight
    return max(actual_weight, calculate_volumetric_weight(*dimensions))


def round_weight_up(weight: float, increment: float = 0.5) -> float:
    """Round up to the courier billing slab (0.5 kg by default)."""
    return math.ceil(round(weight / increment, 9)) * increment


def validate_dimensions(length: float, width: float, height: float) -> Tuple[bool, Optional[str]]:
    if length <= 0 or width <= 0 or height <= 0:
        return False, "All dimensions must be greater than 0"

    if max(length, width, height) > MAX_SINGLE_DIMENSION_CM:
        return False, f"No single dimension should exceed {MAX_SINGLE_DIMENSION_CM}cm"

    girth = length + 2 * (width + height)
    if girth > MAX_GIRTH_CM:
        return False, f"Total girth (length + 2*(width + height)) should not exceed {MAX_GIRTH_CM}cm"

    return True, None


__all__ = [
    "DEFAULT_ITEM_WEIGHT_KG",
    "MIN_PACKAGE_WEIGHT_KG",
    "calculate_package_weight",
    "calculate_volumetric_weight",
    "get_chargeable_weight",
    "round_weight_up",
    "validate_dimensions",
]
