import datetime as dt
import logging
import time
from typing import Any, Callable, Mapping, Optional

import pytest

from shipping_hub.errors import ProviderTransportError
from shipping_hub.models import (
    Address,
    ConnectionResult,
    Provider,
    RateRequest,
    ServiceabilityResult,
    ShipmentItem,
    ShipmentRequest,
    ShipmentResult,
    ShippingRate,
    TrackingInfo,
    TrackingStatus,
    WebhookEvent,
)
from shipping_hub.providers.base import ShippingProvider
from shipping_hub.providers.registry import ProviderRegistry
from shipping_hub.rules.status_normalizer import normalize

FUTURE = dt.datetime(2099, 1, 1, tzinfo=dt.timezone.utc)


def make_provider(pid: str, code: Optional[str] = None, *, priority: int = 10, **kw: Any) -> Provider:
    defaults = dict(
        id=pid,
        code=code or pid,
        name=(code or pid).title(),
        is_enabled=True,
        is_connected=True,
        priority=priority,
        auth_token="tok",
        token_expires_at=FUTURE,
    )
    defaults.update(kw)
    return Provider(**defaults)


def make_rate(provider_id: str, courier: str, rate: float, days: int, **kw: Any) -> ShippingRate:
    return ShippingRate(
        provider_id=provider_id,
        provider_code=kw.pop("provider_code", provider_id),
        provider_name=kw.pop("provider_name", provider_id.title()),
        courier_name=courier,
        rate=rate,
        estimated_days=days,
        **kw,
    )


def make_shipment_request(order_id: str = "ORD-1", **kw: Any) -> ShipmentRequest:
    defaults = dict(
        order_id=order_id,
        pickup_pincode="110001",
        delivery_address=Address(
            name="Asha Rao", phone="9876543210", line1="12 MG Road",
            city="Bengaluru", state="Karnataka", pincode="560001",
        ),
        items=(ShipmentItem(name="Mug", sku="MUG-1", units=2, selling_price=250.0),),
        weight=1.0,
        sub_total=500.0,
    )
    defaults.update(kw)
    return ShipmentRequest(**defaults)


class FakeAdapter(ShippingProvider):
    """Scriptable adapter: behaviour is set per provider id through `script`."""

    code = "fake"
    display_name = "Fake"

    def __init__(self, script: Mapping[str, Mapping[str, Any]], calls: list) -> None:
        super().__init__()
        self._script = script
        self._calls = calls

    def _step(self, op: str, *args: Any) -> Any:
        self._calls.append((self.provider_id, op))
        spec = self._script.get(self.provider_id, {})
        delay = spec.get("delay", 0)
        if delay:
            time.sleep(delay)
        err = spec.get(f"{op}_error")
        if err is not None:
            raise err
        value = spec.get(op)
        return value(*args) if callable(value) else value

    def connect(self, credentials):
        ok = self._step("connect", credentials)
        if ok is None:
            return ConnectionResult(success=True, token="new-token", token_expires_at=FUTURE)
        return ok

    def get_rates(self, request: RateRequest):
        value = self._step("get_rates", request)
        if value is None:
            return [make_rate(self.provider_id, f"{self.provider_id} courier", 50.0, 3)]
        return value

    def check_serviceability(self, pincode):
        value = self._step("check_serviceability", pincode)
        return value if value is not None else ServiceabilityResult(serviceable=True)

    def create_shipment(self, request):
        value = self._step("create_shipment", request)
        if value is not None:
            return value
        return ShipmentResult(
            provider_id=self.provider_id,
            provider_code=self.provider.code,
            tracking_number=f"{self.provider_id.upper()}-{request.order_id}",
            courier_name="Fake Courier",
        )

    def track(self, tracking_number):
        value = self._step("track", tracking_number)
        if value is not None:
            return value
        status = TrackingStatus(
            status=normalize("delhivery", "In Transit"),
            provider_status="In Transit",
            timestamp=dt.datetime(2025, 1, 10, 8, 0, tzinfo=dt.timezone.utc),
        )
        return TrackingInfo(tracking_number=tracking_number, courier_name="Fake Courier", current_status=status)

    def parse_webhook(self, payload):
        self._step("parse_webhook", payload)
        tn = payload.get("awb")
        if not tn:
            raise ProviderTransportError("no awb", provider_code=self.code)
        status = TrackingStatus(
            status=normalize("shiprocket", payload.get("current_status")),
            provider_status=str(payload.get("current_status")),
            timestamp=dt.datetime(2025, 1, 10, tzinfo=dt.timezone.utc),
        )
        return WebhookEvent(provider_id=self.provider_id, provider_code=self.provider.code,
                            tracking_number=tn, status=status, raw_payload=dict(payload))

    def verify_webhook(self, payload, headers):
        value = self._script.get(self.provider_id, {}).get("verify_webhook")
        return True if value is None else value

    def cancel_shipment(self, tracking_number):
        value = self._step("cancel_shipment", tracking_number)
        return True if value is None else value


@pytest.fixture
def calls() -> list:
    return []


@pytest.fixture
def script() -> dict:
    return {}


@pytest.fixture
def fake_registry(script, calls) -> ProviderRegistry:
    registry = ProviderRegistry()
    factory: Callable[[], ShippingProvider] = lambda: FakeAdapter(script, calls)
    registry.register("fake", factory)
    return registry


@pytest.fixture(autouse=True)
def _reset_package_logger():
    # the CLI configures "shipping_hub" with propagate=False, which would hide records from caplog
    yield
    lg = logging.getLogger("shipping_hub")
    for h in list(lg.handlers):
        lg.removeHandler(h)
        h.close()
    lg.propagate = True
    lg.setLevel(logging.NOTSET)
