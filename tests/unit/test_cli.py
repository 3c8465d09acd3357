import json
from pathlib import Path

import pytest

from shipping_hub import cli

ENV_KEYS = (
    "SHIPPING_PROVIDERS_FILE",
    "SHIPPING_WAREHOUSE_PINCODE",
    "SHIPPING_PROVIDER_TIMEOUT",
    "SHIPPING_RATE_CACHE_TTL",
    "SHIPPING_DEFAULT_STRATEGY",
    "SHIPPING_EVENTS_FILE",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for k in ENV_KEYS:
        monkeypatch.delenv(k, raising=False)


@pytest.fixture
def providers_file(tmp_path) -> Path:
    replay = tmp_path / "replay.json"
    replay.write_text(json.dumps({
        "rates": [
            {"courier_name": "Delhivery Surface", "rate": 62.0, "estimated_days": 4},
            {"courier_name": "Bluedart Air", "rate": 150.0, "estimated_days": 2},
        ],
        "tracking": {"RPL1001": {"events": [{"status": "Delivered", "timestamp": "2025-01-12T11:30:00Z"}]}},
    }), encoding="utf-8")
    path = tmp_path / "providers.json"
    path.write_text(json.dumps([{
        "id": "rp-1", "code": "replay", "name": "Replay", "is_enabled": True, "is_connected": True,
        "auth_token": "t", "priority": 1,
        "config": {"replay_file": str(replay), "status_vocabulary": "delhivery"},
    }]), encoding="utf-8")
    return path


def _run(capsys, *argv):
    rc = cli.main(["--no-console", *argv])
    return rc, capsys.readouterr().out


def test_parser_requires_a_command():
    with pytest.raises(SystemExit) as e:
        cli.build_parser().parse_args([])
    assert e.value.code == 2


def test_parser_rejects_unknown_strategy():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["best-rate", "--to", "560001", "--weight", "1", "--strategy", "random"])


def test_missing_providers_file_exits_2(capsys):
    rc, out = _run(capsys, "serviceability", "560001")
    assert rc == 2 and out == ""


def test_strict_env_without_settings_exits_2(capsys):
    rc, _ = _run(capsys, "--strict-env", "serviceability", "560001")
    assert rc == 2


def test_rates_prints_sorted_json(capsys, providers_file):
    rc, out = _run(capsys, "--providers-file", str(providers_file),
                   "rates", "--from", "110001", "--to", "560001", "--weight", "1.0")
    assert rc == 0
    rates = json.loads(out)
    assert [r["courierName"] for r in rates] == ["Delhivery Surface", "Bluedart Air"]
    assert rates[0]["providerPriority"] == 1


def test_rates_without_origin_is_validation_error(capsys, providers_file):
    rc, out = _run(capsys, "--providers-file", str(providers_file), "rates", "--to", "560001", "--weight", "1")
    assert rc == 2 and out == ""


def test_best_rate_uses_env_default_strategy(capsys, providers_file, monkeypatch):
    monkeypatch.setenv("SHIPPING_WAREHOUSE_PINCODE", "110001")
    monkeypatch.setenv("SHIPPING_DEFAULT_STRATEGY", "fastest")
    rc, out = _run(capsys, "--providers-file", str(providers_file), "best-rate", "--to", "560001", "--weight", "1")
    assert rc == 0
    body = json.loads(out)
    assert body["strategy"] == "fastest"
    assert body["selectedRate"]["courierName"] == "Bluedart Air"


def test_best_rate_with_no_match_prints_null(capsys, providers_file):
    rc, out = _run(capsys, "--providers-file", str(providers_file), "best-rate", "--from", "110001",
                   "--to", "560001", "--weight", "1", "--strategy", "cheapest", "--max-cost", "10")
    assert rc == 0
    assert json.loads(out) is None


def test_serviceability_and_bad_pincode(capsys, providers_file):
    rc, out = _run(capsys, "--providers-file", str(providers_file), "serviceability", "560001")
    assert rc == 0
    assert json.loads(out)["providers"][0]["id"] == "rp-1"

    rc, _ = _run(capsys, "--providers-file", str(providers_file), "serviceability", "56")
    assert rc == 2


def test_track(capsys, providers_file):
    rc, out = _run(capsys, "--providers-file", str(providers_file), "track", "RPL1001", "--provider-id", "rp-1")
    assert rc == 0
    assert json.loads(out)["currentStatus"]["status"] == "delivered"

    rc, _ = _run(capsys, "--providers-file", str(providers_file), "track", "RPL1001", "--provider-id", "ghost")
    assert rc == 2

    rc, _ = _run(capsys, "--providers-file", str(providers_file), "track", "NOPE", "--provider-id", "rp-1")
    assert rc == 1


def test_refresh_input_errors_exit_2(capsys, tmp_path, providers_file):
    rc, _ = _run(capsys, "--providers-file", str(providers_file), "refresh", str(tmp_path / "missing.xlsx"))
    assert rc == 2

    csv = tmp_path / "shipments.csv"
    csv.write_text("Tracking Number\nAWB1\n")
    rc, _ = _run(capsys, "--providers-file", str(providers_file), "refresh", str(csv))
    assert rc == 2


def test_log_file_receives_errors(capsys, tmp_path, providers_file):
    log_file = tmp_path / "cli.log"
    rc, _ = _run(capsys, "--providers-file", str(providers_file), "--log-file", str(log_file),
                 "track", "X", "--provider-id", "ghost")
    assert rc == 2
    assert "Unknown shipping provider id: ghost" in log_file.read_text(encoding="utf-8")


def test_events_file_records_calls_and_reports_stats(capsys, tmp_path, providers_file):
    events_file = tmp_path / "events.json"
    common = ("--providers-file", str(providers_file), "--events-file", str(events_file))

    assert _run(capsys, *common, "rates", "--from", "110001", "--to", "560001", "--weight", "1")[0] == 0
    assert _run(capsys, *common, "track", "NOPE", "--provider-id", "rp-1")[0] == 1

    rc, out = _run(capsys, *common, "events", "--provider-id", "rp-1")
    assert rc == 0
    body = json.loads(out)
    assert body["total"] == 2
    assert body["stats"]["failed"] == 1 and body["stats"]["failureRate"] == 50.0

    rc, out = _run(capsys, *common, "events", "--failed")
    assert [e["eventType"] for e in json.loads(out)["events"]] == ["track"]


def test_events_without_events_file_exits_2(capsys, providers_file):
    rc, out = _run(capsys, "--providers-file", str(providers_file), "events")
    assert rc == 2 and out == ""
