import datetime as dt

import pytest
import requests

from conftest import make_provider, make_shipment_request
from shipping_hub.errors import (
    ConfigurationError,
    ProviderAuthError,
    ProviderTransportError,
    ValidationError,
)
from shipping_hub.models import RateRequest, ShipmentStatus as S
from shipping_hub.providers.shiprocket import (
    IST,
    SHIPROCKET_BASE_URL,
    ShiprocketProvider,
    map_status_code,
    parse_timestamp,
)
from shipping_hub.repository.providers import InMemoryProviderRepository


class FakeResponse:
    def __init__(self, status_code=200, body=None, reason=""):
        self.status_code = status_code
        self._body = body
        self.reason = reason

    @property
    def text(self):
        return "" if self._body is None else str(self._body)

    def json(self):
        if isinstance(self._body, (dict, list)):
            return self._body
        raise ValueError("not json")


class FakeTransport:
    """Replays queued responses in order and records every request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def _next(self, method, url, **kw):
        self.requests.append((method, url, kw))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, *, headers=None, params=None, timeout=None):
        return self._next("GET", url, headers=headers, params=params)

    def post(self, url, *, headers=None, data=None, json=None, params=None, timeout=None):
        return self._next("POST", url, headers=headers, json=json, params=params)


COURIERS = {
    "status": 200,
    "data": {"available_courier_companies": [
        {"courier_name": "Delhivery Surface", "courier_company_id": 12, "rate": "72.5",
         "estimated_delivery_days": "4", "rating": 4.4, "cod": 1, "blocked": 0, "is_surface": True},
        {"courier_name": "Bluedart Air", "courier_company_id": 7, "rate": 180,
         "estimated_delivery_days": 2, "rating": 4.8, "cod": 0, "blocked": 1, "mode": "AIR"},
        {"courier_name": "Budget Express", "courier_company_id": 99, "rate": 40,
         "estimated_delivery_days": 6, "rating": 3.1, "blocked": 0},
    ]},
}


def _adapter(transport, repo=None, **kw):
    provider = make_provider("sr-1", "shiprocket", priority=1, name="Shiprocket", **kw)
    return ShiprocketProvider(transport=transport).initialize(provider, repo)


def _rate_request(**kw):
    base = dict(from_pincode="110001", to_pincode="560001", weight=1.0)
    base.update(kw)
    return RateRequest(**base).validate()


def test_get_rates_maps_couriers_and_drops_low_ratings():
    transport = FakeTransport(FakeResponse(200, COURIERS))
    rates = _adapter(transport).get_rates(_rate_request())

    assert [r.courier_name for r in rates] == ["Delhivery Surface", "Bluedart Air"]
    surface, air = rates
    assert surface.rate == 72.5 and surface.estimated_days == 4
    assert surface.courier_code == "12"
    assert surface.mode == "surface" and surface.features.cod
    assert air.available is False and air.mode == "air"
    assert surface.provider_id == "sr-1" and surface.provider_code == "shiprocket"

    method, url, kw = transport.requests[0]
    assert (method, url) == ("GET", SHIPROCKET_BASE_URL + "/courier/serviceability/")
    assert kw["headers"]["Authorization"] == "Bearer tok"
    assert kw["params"] == {"pickup_postcode": "110001", "delivery_postcode": "560001", "weight": 1.0, "cod": 0}


def test_min_rating_is_configurable():
    transport = FakeTransport(FakeResponse(200, COURIERS))
    rates = _adapter(transport, config={"min_rating": 3}).get_rates(_rate_request())
    assert len(rates) == 3


def test_uncovered_route_is_an_empty_list():
    assert _adapter(FakeTransport(FakeResponse(404, {"message": "no couriers"}))).get_rates(_rate_request()) == []
    assert _adapter(FakeTransport(FakeResponse(200, {"status": 404}))).get_rates(_rate_request()) == []


def test_expired_token_is_refreshed_and_persisted():
    past = dt.datetime(2000, 1, 1, tzinfo=dt.timezone.utc)
    provider = make_provider("sr-1", "shiprocket", token_expires_at=past,
                             config={"email": "ops@example.in", "password": "pw"})
    repo = InMemoryProviderRepository([provider])
    transport = FakeTransport(FakeResponse(200, {"token": "fresh"}), FakeResponse(200, COURIERS))

    ShiprocketProvider(transport=transport).initialize(provider, repo).get_rates(_rate_request())

    login, rates_call = transport.requests
    assert login[1].endswith("/auth/login")
    assert login[2]["json"] == {"email": "ops@example.in", "password": "pw"}
    assert "Authorization" not in login[2]["headers"]
    assert rates_call[2]["headers"]["Authorization"] == "Bearer fresh"

    stored = repo.get_by_id("sr-1")
    assert stored.auth_token == "fresh"
    assert stored.token_expires_at > dt.datetime.now(dt.timezone.utc)


def test_expired_token_without_credentials_fails_before_any_request():
    past = dt.datetime(2000, 1, 1, tzinfo=dt.timezone.utc)
    transport = FakeTransport()
    with pytest.raises(ProviderAuthError):
        _adapter(transport, token_expires_at=past).get_rates(_rate_request())
    assert transport.requests == []


def test_unauthorized_response_is_auth_error():
    with pytest.raises(ProviderAuthError) as e:
        _adapter(FakeTransport(FakeResponse(401, {"message": "Token expired"}))).get_rates(_rate_request())
    assert e.value.status_code == 401
    assert "Token expired" in str(e.value)


def test_server_error_and_network_failure_are_transport_errors():
    with pytest.raises(ProviderTransportError) as e:
        _adapter(FakeTransport(FakeResponse(502, "Bad Gateway"))).get_rates(_rate_request())
    assert e.value.status_code == 502

    with pytest.raises(ProviderTransportError):
        _adapter(FakeTransport(requests.ConnectionError("refused"))).get_rates(_rate_request())

    with pytest.raises(ProviderTransportError):
        _adapter(FakeTransport(FakeResponse(200, "<html>"))).get_rates(_rate_request())


def test_connect_validates_credentials_shape_and_login():
    adapter = _adapter(FakeTransport())
    assert adapter.connect({"type": "api_key", "key": "x"}).success is False

    ok = _adapter(FakeTransport(FakeResponse(200, {"token": "t1", "id": 5, "email": "ops@example.in"})))
    result = ok.connect({"email": "ops@example.in", "password": "pw"})
    assert result.success and result.token == "t1"
    assert result.account_info["email"] == "ops@example.in"

    refused = _adapter(FakeTransport(FakeResponse(400, {"message": "Invalid credentials"})))
    result = refused.connect({"email": "ops@example.in", "password": "bad"})
    assert result.success is False
    assert "Invalid credentials" in result.error


def test_serviceability_counts_open_couriers():
    adapter = _adapter(FakeTransport(FakeResponse(200, COURIERS)), config={"warehouse_pincode": "110001"})
    result = adapter.check_serviceability("560001")
    assert result.serviceable
    assert result.details == {"courierCount": 2}


def test_serviceability_requires_warehouse_pincode():
    with pytest.raises(ConfigurationError):
        _adapter(FakeTransport()).check_serviceability("560001")


def test_create_shipment_creates_order_then_assigns_awb():
    transport = FakeTransport(
        FakeResponse(200, {"order_id": 501, "shipment_id": 9001}),
        FakeResponse(200, {"awb_assign_status": 1, "response": {"data": {
            "awb_code": "SR123456", "courier_name": "Delhivery Surface",
            "courier_company_id": 12, "shipment_id": 9001}}}),
    )
    result = _adapter(transport).create_shipment(make_shipment_request(courier_code="12"))

    assert result.tracking_number == "SR123456"
    assert result.courier_code == "12"
    assert result.tracking_url.endswith("/SR123456")
    assert result.metadata["orderId"] == "ORD-1"

    order, assign = transport.requests
    assert order[2]["json"]["billing_customer_name"] == "Asha"
    assert order[2]["json"]["billing_last_name"] == "Rao"
    assert order[2]["json"]["payment_method"] == "Prepaid"
    assert assign[2]["json"] == {"shipment_id": 9001, "courier_id": "12"}


def test_create_shipment_without_awb_is_transport_error():
    transport = FakeTransport(
        FakeResponse(200, {"shipment_id": 9001}),
        FakeResponse(200, {"awb_assign_status": 0, "message": "No courier available"}),
    )
    with pytest.raises(ProviderTransportError, match="No courier available"):
        _adapter(transport).create_shipment(make_shipment_request())


def test_track_uses_newest_activity_as_current():
    body = {"tracking_data": {
        "shipment_track": [{"courier_name": "Delhivery"}],
        "shipment_track_activities": [
            {"date": "2025-01-11 10:00:00", "sr-status": "5", "sr-status-label": "DELIVERED",
             "location": "Bengaluru", "activity": "Delivered to consignee"},
            {"date": "2025-01-10 08:00:00", "sr-status": "3", "sr-status-label": "IN TRANSIT"},
        ],
    }}
    info = _adapter(FakeTransport(FakeResponse(200, body))).track("SR123456")

    assert info.courier_name == "Delhivery"
    assert info.current_status.status is S.DELIVERED
    assert info.current_status.location == "Bengaluru"
    assert [h.status for h in info.history] == [S.DELIVERED, S.IN_TRANSIT]
    assert info.delivered_at == info.current_status.timestamp


def test_track_without_event_times_leaves_timestamps_empty():
    body = {"tracking_data": {
        "shipment_status": 3,
        "shipment_track": [{"current_status": "IN TRANSIT"}],
    }}
    info = _adapter(FakeTransport(FakeResponse(200, body))).track("SR123456")

    assert info.current_status.status is S.IN_TRANSIT
    assert info.current_status.timestamp is None
    assert info.to_dict()["currentStatus"]["timestamp"] is None


def test_map_status_code():
    assert map_status_code(7) is S.RETURNED
    assert map_status_code("5") is S.DELIVERED
    assert map_status_code(999) is S.PENDING
    assert map_status_code(True) is S.PENDING
    assert map_status_code("RTO DELIVERED") is S.RETURNED


def test_parse_timestamp_treats_naive_values_as_ist():
    ts = parse_timestamp("2025-01-10 14:30:00")
    assert ts.utcoffset() == IST.utcoffset(None)
    assert ts.astimezone(dt.timezone.utc).hour == 9
    assert parse_timestamp("") is None
    assert parse_timestamp("yesterday") is None


def test_parse_webhook_normalizes_label_or_status_id():
    adapter = _adapter(FakeTransport())
    event = adapter.parse_webhook({
        "awb": " SR123456 ",
        "order_id": 501,
        "current_status": "OUT FOR DELIVERY",
        "current_timestamp": "2025-01-10 09:15:00",
        "scans": [{"date": "2025-01-10 09:15:00", "location": "Bengaluru Hub", "activity": "Out for delivery"}],
    })
    assert event.tracking_number == "SR123456"
    assert event.order_id == "501"
    assert event.status.status is S.OUT_FOR_DELIVERY
    assert event.status.location == "Bengaluru Hub"

    by_id = adapter.parse_webhook({"awb": "SR1", "current_status_id": 5})
    assert by_id.status.status is S.DELIVERED

    with pytest.raises(ValidationError):
        adapter.parse_webhook({"current_status": "DELIVERED"})


def test_webhook_without_timestamp_keeps_a_stable_fingerprint():
    adapter = _adapter(FakeTransport())
    payload = {"awb": "AWB1", "current_status": "IN TRANSIT"}

    first, second = adapter.parse_webhook(payload), adapter.parse_webhook(payload)

    assert first.status.timestamp is None
    assert first.fingerprint() == second.fingerprint()
    assert first.to_dict()["status"]["timestamp"] is None


def test_verify_webhook_checks_api_key_header():
    assert _adapter(FakeTransport()).verify_webhook({}, {}) is True

    secured = _adapter(FakeTransport(), config={"webhook_token": "s3cret"})
    assert secured.verify_webhook({}, {"X-Api-Key": "s3cret"}) is True
    assert secured.verify_webhook({}, {"x-api-key": "wrong"}) is False
    assert secured.verify_webhook({}, {}) is False
    assert secured.verify_webhook({}, {"X-Api-Key": "s3crét"}) is False


def test_cancel_shipment_posts_awbs():
    transport = FakeTransport(FakeResponse(200, {"message": "cancelled"}))
    assert _adapter(transport).cancel_shipment("SR123456") is True
    assert transport.requests[0][2]["json"] == {"awbs": ["SR123456"]}
