import json

import pytest

from conftest import make_provider, make_shipment_request
from shipping_hub.errors import ConfigurationError, ProviderTransportError, ValidationError
from shipping_hub.models import PaymentMode, RateRequest, ShipmentStatus as S
from shipping_hub.providers import ProviderRegistry, default_registry
from shipping_hub.providers.replay import ReplayProvider
from shipping_hub.providers.shiprocket import ShiprocketProvider

FIXTURE = {
    "rates": [
        {"courier_name": "Delhivery Surface", "rate": 62.0, "estimated_days": 4},
        {"courier_name": "Bluedart Air", "rate": 150.0, "estimated_days": 2,
         "to_pincodes": ["560001"], "cod": False},
    ],
    "tracking": {
        "RPL1001": {"courier_name": "Delhivery", "events": [
            {"status": "In Transit", "timestamp": "2025-01-10T08:00:00Z"},
            {"status": "Delivered", "timestamp": "2025-01-12T11:30:00Z", "location": "Bengaluru"},
            {"status": "Manifested", "timestamp": "2025-01-09T18:00:00Z"},
        ]},
    },
    "shipment": {"tracking_prefix": "RPL", "courier_name": "Delhivery"},
}


@pytest.fixture
def replay_file(tmp_path):
    def _write(data=None):
        path = tmp_path / "replay.json"
        path.write_text(json.dumps(FIXTURE if data is None else data), encoding="utf-8")
        return path
    return _write


def _replay(path, **config):
    config.setdefault("status_vocabulary", "delhivery")
    provider = make_provider("rp-1", "replay", config={"replay_file": str(path), **config})
    return ReplayProvider().initialize(provider)


def _req(to="560001", mode=PaymentMode.PREPAID, cod_amount=None):
    return RateRequest(from_pincode="110001", to_pincode=to, weight=1.0,
                       payment_mode=mode, cod_amount=cod_amount).validate()


def test_rates_respect_destination_and_cod(replay_file):
    adapter = _replay(replay_file())
    assert [r.courier_name for r in adapter.get_rates(_req())] == ["Delhivery Surface", "Bluedart Air"]
    assert [r.courier_name for r in adapter.get_rates(_req(to="400001"))] == ["Delhivery Surface"]
    assert [r.courier_name for r in adapter.get_rates(_req(mode=PaymentMode.COD, cod_amount=500))] == [
        "Delhivery Surface"]


def test_serviceability_from_rate_coverage_or_explicit_list(replay_file):
    assert _replay(replay_file()).check_serviceability("400001").serviceable

    listed = _replay(replay_file({**FIXTURE, "serviceable_pincodes": ["560001"]}))
    assert listed.check_serviceability("560 001").serviceable
    assert not listed.check_serviceability("400001").serviceable


def test_track_orders_history_newest_first(replay_file):
    info = _replay(replay_file()).track("RPL1001")
    assert info.current_status.status is S.DELIVERED
    assert info.current_status.location == "Bengaluru"
    assert [h.status for h in info.history] == [S.DELIVERED, S.IN_TRANSIT, S.CREATED]
    assert info.delivered_at == info.current_status.timestamp


def test_unknown_tracking_number_is_404(replay_file):
    with pytest.raises(ProviderTransportError) as e:
        _replay(replay_file()).track("NOPE")
    assert e.value.status_code == 404


def test_create_shipment_uses_prefix(replay_file):
    result = _replay(replay_file()).create_shipment(make_shipment_request("ORD-9"))
    assert result.tracking_number == "RPLORD-9"
    assert result.courier_name == "Delhivery"
    assert result.provider_id == "rp-1"


def test_fail_list_raises_transport_error(replay_file):
    adapter = _replay(replay_file({**FIXTURE, "fail": ["create_shipment", "get_rates"]}))
    with pytest.raises(ProviderTransportError):
        adapter.create_shipment(make_shipment_request())
    with pytest.raises(ProviderTransportError):
        adapter.get_rates(_req())
    assert adapter.track("RPL1001").tracking_number == "RPL1001"


def test_connect_checks_optional_password(replay_file):
    adapter = _replay(replay_file(), password="letmein")
    assert adapter.connect({"password": "nope"}).success is False
    ok = adapter.connect({"password": "letmein"})
    assert ok.success and ok.token == "replay-rp-1"


def test_webhook_requires_tracking_number(replay_file):
    adapter = _replay(replay_file())
    event = adapter.parse_webhook({"tracking_number": "RPL1001", "status": "Delivered"})
    assert event.status.status is S.DELIVERED
    with pytest.raises(ValidationError):
        adapter.parse_webhook({"status": "Delivered"})


def test_webhook_without_event_time_parses_identically(replay_file):
    adapter = _replay(replay_file())
    payload = {"tracking_number": "RPL1001", "status": "In Transit"}
    first, second = adapter.parse_webhook(payload), adapter.parse_webhook(payload)
    assert first.status.timestamp is None
    assert first.fingerprint() == second.fingerprint() == ("RPL1001", "in_transit", "")


def test_missing_or_invalid_replay_file_is_configuration_error(tmp_path, replay_file):
    with pytest.raises(ConfigurationError):
        ReplayProvider().initialize(make_provider("rp-1", "replay"))
    with pytest.raises(ConfigurationError):
        _replay(tmp_path / "missing.json")
    with pytest.raises(ConfigurationError):
        _replay(replay_file(["not", "an", "object"]))
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="not valid JSON"):
        _replay(broken)


def test_adapter_used_before_initialize():
    with pytest.raises(ConfigurationError):
        ReplayProvider().provider_id


# --- registry ---------------------------------------------------------------

def test_registry_creates_initialized_adapter_by_code(replay_file):
    registry = ProviderRegistry()
    registry.register("Replay", ReplayProvider)
    provider = make_provider("rp-1", "REPLAY", config={"replay_file": str(replay_file())})

    adapter = registry.create(provider)
    assert isinstance(adapter, ReplayProvider)
    assert adapter.provider_id == "rp-1"
    assert registry.has(" replay ")


def test_registry_builds_a_fresh_adapter_per_call(replay_file):
    registry = ProviderRegistry()
    registry.register("replay", ReplayProvider)
    provider = make_provider("rp-1", "replay", config={"replay_file": str(replay_file())})
    assert registry.create(provider) is not registry.create(provider)


def test_registry_rejects_duplicates_unless_replaced():
    registry = ProviderRegistry()
    registry.register("replay", ReplayProvider)
    with pytest.raises(ConfigurationError):
        registry.register("REPLAY", ReplayProvider)
    registry.register("replay", ReplayProvider, replace=True)
    registry.unregister("replay")
    assert registry.codes() == ()


def test_registry_unknown_code_is_configuration_error():
    with pytest.raises(ConfigurationError, match="No adapter registered"):
        ProviderRegistry().create(make_provider("x-1", "ecom"))


def test_default_registry_ships_builtin_adapters():
    registry = default_registry()
    assert registry.codes() == (ReplayProvider.code, ShiprocketProvider.code)
