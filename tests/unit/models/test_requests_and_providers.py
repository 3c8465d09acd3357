import datetime as dt

import pytest

from shipping_hub.errors import ShipmentCreationError, ValidationError
from shipping_hub.models import (
    PaymentMode,
    Provider,
    RateRequest,
    ShipmentAttempt,
    ShippingRate,
)


def _req(**kw):
    base = dict(from_pincode="110001", to_pincode="560001", weight=1.0)
    base.update(kw)
    return RateRequest(**base)


def test_validate_normalizes_pincodes_and_mode():
    req = _req(from_pincode=" 110 001", payment_mode="COD", cod_amount="499").validate()
    assert req.from_pincode == "110001"
    assert req.payment_mode is PaymentMode.COD
    assert req.cod_amount == 499.0
    assert req.is_cod


@pytest.mark.parametrize("kw", [
    {"to_pincode": "5600"},
    {"from_pincode": "ABCDEF"},
    {"weight": 0.05},
    {"weight": 100.5},
    {"weight": "heavy"},
    {"declared_value": -1},
    {"declared_value": "lots"},
    {"payment_mode": "barter"},
    {"cod_amount": 100},  # prepaid request
    {"payment_mode": "cod", "cod_amount": -5},
])
def test_validate_rejects(kw):
    with pytest.raises(ValidationError):
        _req(**kw).validate()


def test_weight_bounds_are_inclusive():
    assert _req(weight=0.1).validate().weight == 0.1
    assert _req(weight=100).validate().weight == 100.0


def test_cache_key_changes_with_every_component():
    base = _req().cache_key()
    assert _req(from_pincode=" 110001 ").cache_key() == base
    assert _req(to_pincode="560002").cache_key() != base
    assert _req(weight=1.001).cache_key() != base
    assert _req(payment_mode=PaymentMode.COD).cache_key() != base


def test_payment_mode_parse():
    assert PaymentMode.parse(True) is PaymentMode.COD
    assert PaymentMode.parse(None) is PaymentMode.PREPAID
    assert PaymentMode.parse(" Prepaid ") is PaymentMode.PREPAID
    assert str(PaymentMode.COD) == "cod"


def test_shipping_rate_rejects_negative_values():
    with pytest.raises(ValueError):
        ShippingRate("p", "p", "P", "C", rate=-1.0, estimated_days=2)
    with pytest.raises(ValueError):
        ShippingRate("p", "p", "P", "C", rate=1.0, estimated_days=-2)


def test_provider_dispatchable_requires_enabled_connected_live_token():
    now = dt.datetime(2025, 1, 1, tzinfo=dt.timezone.utc)
    later = now + dt.timedelta(hours=1)
    p = Provider(id="1", code="shiprocket", name="Shiprocket", is_enabled=True, is_connected=True,
                 auth_token="t", token_expires_at=later)
    assert p.is_dispatchable(now)
    assert not p.with_changes(is_enabled=False).is_dispatchable(now)
    assert not p.with_changes(is_connected=False).is_dispatchable(now)
    assert not p.with_changes(auth_token=None).is_dispatchable(now)
    assert not p.is_dispatchable(later)
    assert p.with_changes(token_expires_at=None).is_dispatchable(now)


def test_provider_from_dict_accepts_camel_case_and_round_trips():
    row = {
        "id": "sr-1",
        "code": "shiprocket",
        "isEnabled": True,
        "priority": 2,
        "supportedModes": ["PREPAID"],
        "serviceablePincodes": ["560 001"],
        "tokenExpiresAt": "2030-01-01T00:00:00Z",
        "timeoutSeconds": 5,
    }
    p = Provider.from_dict(row)
    assert p.name == "shiprocket"
    assert p.supports_mode(PaymentMode.PREPAID) and not p.supports_mode("cod")
    assert p.can_service("560001") and not p.can_service("110001")
    assert p.token_expires_at.tzinfo is not None
    assert p.timeout_seconds == 5.0
    assert Provider.from_dict(p.to_dict()) == p


def test_shipment_creation_error_lists_attempts():
    err = ShipmentCreationError([
        ShipmentAttempt("a", "shiprocket", "401 unauthorized"),
        ShipmentAttempt("b", "replay", "timed out"),
    ])
    assert len(err.attempts) == 2
    assert "shiprocket (a): 401 unauthorized" in str(err)
    assert "replay (b): timed out" in str(err)
