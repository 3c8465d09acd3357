from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any, Mapping, Optional

from shipping_hub.errors import ValidationError
from shipping_hub.models.status import PaymentMode
from shipping_hub.utils.pincode import is_valid_pincode, normalize_pincode

MIN_RATE_WEIGHT_KG = 0.1
MAX_RATE_WEIGHT_KG = 100.0


def _as_float(label: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as ex:
        raise ValidationError(f"{label} must be a number, got {value!r}") from ex


@dataclass(frozen=True)
class RateRequest:
    from_pincode: str
    to_pincode: str
    weight: float
    declared_value: float = 0.0
    payment_mode: PaymentMode = PaymentMode.PREPAID
    cod_amount: Optional[float] = None

    @property
    def is_cod(self) -> bool:
        return self.payment_mode is PaymentMode.COD

    def validate(self) -> "RateRequest":
        """
        Return a normalized copy, or raise ValidationError.

        Pincodes are whitespace-stripped and must be 6 digits; weight must lie in
        [MIN_RATE_WEIGHT_KG, MAX_RATE_WEIGHT_KG]; a COD amount only makes sense
        for COD requests.
        """
        for label, pin in (("from_pincode", self.from_pincode), ("to_pincode", self.to_pincode)):
            if not is_valid_pincode(pin):
                raise ValidationError(f"{label} must be a 6-digit pincode, got {pin!r}")

        try:
            weight = float(self.weight)
        except (TypeError, ValueError) as ex:
            raise ValidationError(f"weight must be a number, got {self.weight!r}") from ex
        if not (MIN_RATE_WEIGHT_KG <= weight <= MAX_RATE_WEIGHT_KG):
            raise ValidationError(
                f"weight must be between {MIN_RATE_WEIGHT_KG} and {MAX_RATE_WEIGHT_KG} kg, got {weight}")

        declared = _as_float("declared_value", self.declared_value or 0.0)
        if declared < 0:
            raise ValidationError("declared_value must not be negative")

        try:
            mode = PaymentMode.parse(self.payment_mode)
        except ValueError as ex:
            raise ValidationError(f"payment_mode must be prepaid or cod, got {self.payment_mode!r}") from ex

        cod_amount = self.cod_amount
        if cod_amount is not None:
            if mode is not PaymentMode.COD:
                raise ValidationError("cod_amount given for a prepaid request")
            cod_amount = _as_float("cod_amount", cod_amount)
            if cod_amount < 0:
                raise ValidationError("cod_amount must not be negative")

        return replace(
            self,
            from_pincode=normalize_pincode(self.from_pincode),
            to_pincode=normalize_pincode(self.to_pincode),
            weight=weight,
            declared_value=declared,
            payment_mode=mode,
            cod_amount=cod_amount,
        )

    def cache_key(self) -> tuple[str, str, float, str]:
        return (
            normalize_pincode(self.from_pincode),
            normalize_pincode(self.to_pincode),
            round(float(self.weight), 3),
            str(PaymentMode.parse(self.payment_mode)),
        )


@dataclass(frozen=True)
class RateFeatures:
    cod: bool = False
    tracking: bool = True
    insurance: bool = False
    hyperlocal: bool = False


@dataclass(frozen=True)
class RatePerformance:
    rating: Optional[float] = None
    delivery_performance: Optional[float] = None
    pickup_performance: Optional[float] = None


@dataclass(frozen=True)
class RateConstraints:
    min_weight: Optional[float] = None
    max_weight: Optional[float] = None
    charge_weight: Optional[float] = None


@dataclass(frozen=True)
class RateCharges:
    freight: Optional[float] = None
    cod: Optional[float] = None
    coverage: Optional[float] = None
    rto: Optional[float] = None


@dataclass(frozen=True)
class ShippingRate:
    """One quote from one provider + courier combination."""

    provider_id: str
    provider_code: str
    provider_name: str
    courier_name: str
    rate: float
    estimated_days: int
    available: bool = True
    mode: str = "surface"
    courier_code: Optional[str] = None
    etd: Optional[str] = None
    # stamped by the orchestrator from the provider row; used for tie-breaks
    provider_priority: int = 100
    features: Optional[RateFeatures] = None
    performance: Optional[RatePerformance] = None
    constraints: Optional[RateConstraints] = None
    charges: Optional[RateCharges] = None
    # passthrough, never interpreted by the orchestrator
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.rate < 0:
            raise ValueError(f"rate must be non-negative, got {self.rate}")
        if self.estimated_days < 0:
            raise ValueError(f"estimated_days must be non-negative, got {self.estimated_days}")

    def with_priority(self, priority: int) -> "ShippingRate":
        return replace(self, provider_priority=int(priority))

    def to_dict(self) -> dict[str, Any]:
        """JSON shape used by the checkout and admin APIs (camelCase keys)."""
        return {
            "providerId": self.provider_id,
            "providerCode": self.provider_code,
            "providerName": self.provider_name,
            "courierName": self.courier_name,
            "courierCode": self.courier_code,
            "rate": self.rate,
            "estimatedDays": self.estimated_days,
            "etd": self.etd,
            "available": self.available,
            "mode": self.mode,
            "providerPriority": self.provider_priority,
            "features": _camel_dict(self.features),
            "performance": _camel_dict(self.performance),
            "constraints": _camel_dict(self.constraints),
            "charges": _camel_dict(self.charges),
            "metadata": dict(self.metadata),
        }


def _camel_dict(part: Any) -> Optional[dict[str, Any]]:
    if part is None:
        return None
    out = {}
    for key, value in asdict(part).items():
        head, *rest = key.split("_")
        out[head + "".join(w.title() for w in rest)] = value
    return out


@dataclass(frozen=True)
class SelectionResult:
    selected_rate: ShippingRate
    reason: str
    strategy: str
    alternative_rates: tuple[ShippingRate, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "selectedRate": self.selected_rate.to_dict(),
            "reason": self.reason,
            "strategy": self.strategy,
            "alternativeRates": [r.to_dict() for r in self.alternative_rates],
            "metadata": dict(self.metadata),
        }
