from __future__ import annotations

import datetime as dt
import json
from pathlib import Path
from typing import Any, Mapping, Optional

from shipping_hub.errors import ConfigurationError, ProviderTransportError, ValidationError
from shipping_hub.models import (
    ConnectionResult,
    RateRequest,
    ServiceabilityResult,
    ShipmentRequest,
    ShipmentResult,
    ShippingRate,
    TrackingInfo,
    TrackingStatus,
    WebhookEvent,
)
from shipping_hub.providers.base import ShippingProvider
from shipping_hub.rules.status_normalizer import normalize
from shipping_hub.utils.pincode import normalize_pincode


_UNDATED = dt.datetime.min.replace(tzinfo=dt.timezone.utc)


def _ts(value: Any) -> Optional[dt.datetime]:
    if not value:
        return None
    out = dt.datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return out if out.tzinfo else out.replace(tzinfo=dt.timezone.utc)


class ReplayProvider(ShippingProvider):
    """Provider backed by a single JSON fixture file instead of a carrier API.

    The file named by the provider's `replay_file` config key looks like:

        {
          "rates": [{"courier_name": "Delhivery Surface", "rate": 62.0,
                     "estimated_days": 4, "to_pincodes": ["560001"]}],
          "serviceable_pincodes": ["560001"],
          "tracking": {"RPL1001": {"courier_name": "Delhivery",
                       "events": [{"status": "In Transit",
                                   "timestamp": "2025-01-10T08:00:00Z"}]}},
          "shipment": {"tracking_prefix": "RPL", "courier_name": "Delhivery"},
          "fail": ["create_shipment"]
        }

    Rates without `to_pincodes` cover every destination. Operations listed in
    `fail` raise ProviderTransportError, which lets demos and tests exercise
    fallback paths. Raw statuses are normalized with the vocabulary named by
    the `status_vocabulary` config key (defaults to this provider's code).
    """

    code = "replay"
    display_name = "Replay"

    def __init__(self) -> None:
        super().__init__()
        self._fixture: dict[str, Any] = {}

    def initialize(self, provider, token_store=None):
        super().initialize(provider, token_store)
        raw_path = self.config.get("replay_file")
        if not raw_path:
            raise ConfigurationError(f"Replay provider {provider.id} has no replay_file configured")
        path = Path(str(raw_path))
        if not path.is_file():
            raise ConfigurationError(f"Replay file does not exist: {path}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as ex:
            raise ConfigurationError(f"Replay file is not valid JSON: {path}: {ex}") from ex
        if not isinstance(data, dict):
            raise ConfigurationError(f"Replay file must contain a JSON object: {path}")
        self._fixture = data
        return self

    def _maybe_fail(self, operation: str) -> None:
        if operation in (self._fixture.get("fail") or ()):
            raise ProviderTransportError(
                f"replay provider {self.provider_id} configured to fail {operation}", provider_code=self.code)

    def _vocabulary(self) -> str:
        return str(self.config.get("status_vocabulary") or self.code)

    def connect(self, credentials: Mapping[str, Any]) -> ConnectionResult:
        self._maybe_fail("connect")
        expected = self.config.get("password")
        if expected and credentials.get("password") != expected:
            return ConnectionResult(success=False, error="invalid replay credentials")
        return ConnectionResult(
            success=True,
            token=f"replay-{self.provider_id}",
            token_expires_at=dt.datetime.now(dt.timezone.utc) + dt.timedelta(days=1),
            account_info={"mode": "replay"},
        )

    def get_rates(self, request: RateRequest) -> list[ShippingRate]:
        self._maybe_fail("get_rates")
        to_pin = normalize_pincode(request.to_pincode)
        out: list[ShippingRate] = []
        for row in self._fixture.get("rates") or []:
            pins = row.get("to_pincodes")
            if pins and to_pin not in {normalize_pincode(p) for p in pins}:
                continue
            if request.is_cod and row.get("cod") is False:
                continue
            out.append(ShippingRate(
                provider_id=self.provider_id,
                provider_code=self.code,
                provider_name=self.provider.name,
                courier_name=str(row["courier_name"]),
                courier_code=str(row.get("courier_code") or row["courier_name"]),
                rate=float(row["rate"]),
                estimated_days=int(row["estimated_days"]),
                available=bool(row.get("available", True)),
                mode=str(row.get("mode") or "surface"),
                metadata={"source": "replay"},
            ))
        return out

    def check_serviceability(self, pincode: str) -> ServiceabilityResult:
        self._maybe_fail("check_serviceability")
        pin = normalize_pincode(pincode)
        listed = self._fixture.get("serviceable_pincodes")
        if listed is not None:
            ok = pin in {normalize_pincode(p) for p in listed}
        else:
            ok = any(
                not r.get("to_pincodes") or pin in {normalize_pincode(p) for p in r["to_pincodes"]}
                for r in self._fixture.get("rates") or []
            )
        return ServiceabilityResult(serviceable=ok, details={"source": "replay"})

    def create_shipment(self, request: ShipmentRequest) -> ShipmentResult:
        self._maybe_fail("create_shipment")
        spec = self._fixture.get("shipment") or {}
        tn = f"{spec.get('tracking_prefix', 'RPL')}{request.order_id}"
        return ShipmentResult(
            provider_id=self.provider_id,
            provider_code=self.code,
            tracking_number=tn,
            courier_name=str(spec.get("courier_name") or request.courier_code or "Replay Courier"),
            courier_code=request.courier_code,
            tracking_url=f"https://tracking.invalid/{tn}",
            metadata={"orderId": request.order_id, "source": "replay"},
        )

    def _status(self, event: Mapping[str, Any]) -> TrackingStatus:
        raw = str(event.get("status") or "")
        return TrackingStatus(
            status=normalize(self._vocabulary(), raw),
            provider_status=raw,
            timestamp=_ts(event.get("timestamp")),
            location=str(event.get("location") or ""),
            description=str(event.get("description") or ""),
        )

    def track(self, tracking_number: str) -> TrackingInfo:
        self._maybe_fail("track")
        entry = (self._fixture.get("tracking") or {}).get(str(tracking_number))
        if not entry:
            raise ProviderTransportError(
                f"tracking number {tracking_number} not found in replay file", provider_code=self.code, status_code=404)

        history = tuple(sorted(
            (self._status(e) for e in entry.get("events") or []),
            key=lambda s: s.timestamp or _UNDATED,
            reverse=True,
        ))
        if not history:
            raise ProviderTransportError(
                f"tracking number {tracking_number} has no events", provider_code=self.code)
        current = history[0]
        return TrackingInfo(
            tracking_number=str(tracking_number),
            courier_name=str(entry.get("courier_name") or "Replay Courier"),
            current_status=current,
            history=history,
            delivered_at=current.timestamp if current.status.value == "delivered" else None,
        )

    def parse_webhook(self, payload: Mapping[str, Any]) -> WebhookEvent:
        tn = str(payload.get("tracking_number") or payload.get("awb") or "").strip()
        if not tn:
            raise ValidationError("replay webhook payload has no tracking_number")
        return WebhookEvent(
            provider_id=self.provider_id,
            provider_code=self.code,
            tracking_number=tn,
            order_id=payload.get("order_id"),
            status=self._status(payload),
            raw_payload=dict(payload),
        )

    def cancel_shipment(self, tracking_number: str) -> bool:
        self._maybe_fail("cancel_shipment")
        return True
