from __future__ import annotations

import re
from typing import Optional

_WHITESPACE = re.compile(r"\s+")
_PINCODE = re.compile(r"^[0-9]{6}$")

# First digit of an Indian PIN code identifies the postal region.
_REGIONS: dict[str, str] = {
    "1": "Delhi, Haryana, Punjab, Himachal Pradesh, Jammu & Kashmir",
    "2": "Uttar Pradesh, Uttarakhand",
    "3": "Rajasthan, Gujarat, Dadra & Nagar Haveli, Daman & Diu",
    "4": "Maharashtra, Goa, Madhya Pradesh, Chhattisgarh",
    "5": "Andhra Pradesh, Telangana, Karnataka",
    "6": "Tamil Nadu, Kerala, Puducherry, Lakshadweep",
    "7": "West Bengal, Odisha, Assam, Northeast States",
    "8": "Bihar, Jharkhand",
    "9": "Army Postal Service",
}


def normalize_pincode(pincode: object) -> str:
    """Strip all whitespace. Does not validate."""
    return _WHITESPACE.sub("", str(pincode or ""))


def is_valid_pincode(pincode: object) -> bool:
    """True for exactly six digits once whitespace is removed ("400 001" is valid)."""
    if pincode is None:
        return False
    return bool(_PINCODE.match(normalize_pincode(pincode)))


def get_pincode_region(pincode: object) -> Optional[str]:
    if not is_valid_pincode(pincode):
        return None
    return _REGIONS.get(normalize_pincode(pincode)[0], "Unknown")


def estimate_distance_category(from_pincode: object, to_pincode: object) -> str:
    """
    Rough, offline distance bucket between two PIN codes:
      - "local"    when the first two digits match
      - "regional" when only the first digit matches
      - "national" otherwise, or when either code is malformed
    """
    if not is_valid_pincode(from_pincode) or not is_valid_pincode(to_pincode):
        return "national"

    a = normalize_pincode(from_pincode)
    b = normalize_pincode(to_pincode)
    if a[:2] == b[:2]:
        return "local"
    if a[0] == b[0]:
        return "regional"
    return "national"


__all__ = [
    "normalize_pincode",
    "is_valid_pincode",
    "get_pincode_region",
    "estimate_distance_category",
]
