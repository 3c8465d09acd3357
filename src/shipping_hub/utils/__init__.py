from .pincode import (
    estimate_distance_category,
    get_pincode_region,
    is_valid_pincode,
    normalize_pincode,
)
from .weight import (
    DEFAULT_ITEM_WEIGHT_KG,
    MIN_PACKAGE_WEIGHT_KG,
    calculate_package_weight,
    calculate_volumetric_weight,
    get_chargeable_weight,
    round_weight_up,
    validate_dimensions,
)

__all__ = [
    "estimate_distance_category",
    "get_pincode_region",
    "is_valid_pincode",
    "normalize_pincode",
    "DEFAULT_ITEM_WEIGHT_KG",
    "MIN_PACKAGE_WEIGHT_KG",
    "calculate_package_weight",
    "calculate_volumetric_weight",
    "get_chargeable_weight",
    "round_weight_up",
    "validate_dimensions",
]
