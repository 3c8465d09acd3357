from __future__ import annotations

import datetime as dt
import hmac
import json
from typing import Any, Dict, Mapping, Optional

import requests

from shipping_hub.api.transport import RequestsTransport
from shipping_hub.errors import (
    ConfigurationError,
    ProviderAuthError,
    ProviderTransportError,
    ValidationError,
)
from shipping_hub.models import (
    ConnectionResult,
    PaymentMode,
    RateCharges,
    RateConstraints,
    RateFeatures,
    RatePerformance,
    RateRequest,
    ServiceabilityResult,
    ShipmentRequest,
    ShipmentResult,
    ShipmentStatus,
    ShippingRate,
    TrackingInfo,
    TrackingStatus,
    WebhookEvent,
)
from shipping_hub.providers.base import ShippingProvider
from shipping_hub.rules.status_normalizer import normalize

SHIPROCKET_BASE_URL = "https://apiv2.shiprocket.in/v1/external"
TOKEN_TTL_HOURS = 240  # 10 days
DEFAULT_MIN_RATING = 4.0
SERVICEABILITY_PROBE_WEIGHT_KG = 0.5

ENDPOINTS = {
    "auth": "/auth/login",
    "serviceability": "/courier/serviceability/",
    "create_order": "/orders/create/adhoc",
    "assign_awb": "/courier/assign/awb",
    "track": "/courier/track/awb/{awb}",
    "cancel": "/orders/cancel/shipment/awbs",
}

# Shiprocket timestamps carry no zone; they are Indian Standard Time.
IST = dt.timezone(dt.timedelta(hours=5, minutes=30))

S = ShipmentStatus

# Numeric shipment_status ids used by the tracking API and webhooks.
SHIPROCKET_STATUS_CODES: dict[int, ShipmentStatus] = {
    1: S.PENDING,            # NEW
    2: S.PICKED_UP,
    3: S.IN_TRANSIT,
    4: S.OUT_FOR_DELIVERY,
    5: S.DELIVERED,
    6: S.CANCELLED,
    7: S.RETURNED,           # RTO initiated
    8: S.RETURNED,           # RTO in transit
    9: S.RETURNED,           # RTO delivered
    10: S.FAILED,            # lost
    11: S.FAILED,            # damaged
    12: S.PENDING,           # pickup pending
    13: S.CREATED,           # pickup scheduled
    14: S.CREATED,           # manifested
    15: S.FAILED,            # not picked up
    16: S.FAILED,            # pickup exception
    17: S.FAILED,            # undelivered
    18: S.IN_TRANSIT,        # delayed
    19: S.DELIVERED,         # partially delivered
    20: S.FAILED,            # destroyed
    21: S.FAILED,            # contact customer care
    22: S.CREATED,           # out for pickup
    23: S.CREATED,           # shipment booked
}


def _clip(text: Optional[str], limit: int = 2000) -> Optional[str]:
    if text and len(text) > limit:
        return text[:limit] + "..."
    return text


def _to_float(value: Any, default: Optional[float] = None) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def parse_timestamp(value: Any) -> Optional[dt.datetime]:
    """Parse Shiprocket's 'YYYY-MM-DD HH:MM:SS' (or ISO) strings; naive values are IST."""
    if value in (None, ""):
        return None
    try:
        out = dt.datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        try:
            out = dt.datetime.strptime(str(value).strip(), "%d %m %Y %H:%M:%S")
        except ValueError:
            return None
    if out.tzinfo is None:
        out = out.replace(tzinfo=IST)
    return out


def map_status_code(value: Any) -> ShipmentStatus:
    """Numeric ids go through SHIPROCKET_STATUS_CODES, labels through the normalizer."""
    if isinstance(value, bool):
        return S.PENDING
    if isinstance(value, int) or (isinstance(value, str) and value.strip().isdigit()):
        return SHIPROCKET_STATUS_CODES.get(int(value), S.PENDING)
    return normalize("shiprocket", value)


# --- Mappers ----------------------------------------------------------------

def map_courier_to_rate(courier: Mapping[str, Any], provider_id: str, provider_name: str = "Shiprocket") -> ShippingRate:
    return ShippingRate(
        provider_id=provider_id,
        provider_code=ShiprocketProvider.code,
        provider_name=provider_name,
        courier_name=str(courier.get("courier_name") or "").strip(),
        courier_code=str(courier.get("courier_company_id") or courier.get("id") or "") or None,
        rate=max(_to_float(courier.get("rate"), 0.0) or 0.0, 0.0),
        estimated_days=max(_to_int(courier.get("estimated_delivery_days")), 0),
        etd=courier.get("etd") or None,
        available=_to_int(courier.get("blocked")) == 0,
        mode=str(courier.get("mode") or ("surface" if courier.get("is_surface") else "air")).lower(),
        features=RateFeatures(
            cod=_to_int(courier.get("cod")) == 1,
            tracking=True,
            insurance=False,
            hyperlocal=bool(courier.get("is_hyperlocal")),
        ),
        performance=RatePerformance(
            rating=_to_float(courier.get("rating")),
            delivery_performance=_to_float(courier.get("delivery_performance")),
            pickup_performance=_to_float(courier.get("pickup_performance")),
        ),
        constraints=RateConstraints(
            min_weight=_to_float(courier.get("min_weight")),
            charge_weight=_to_float(courier.get("charge_weight")),
        ),
        charges=RateCharges(
            freight=_to_float(courier.get("freight_charge")),
            cod=_to_float(courier.get("cod_charges")),
            coverage=_to_float(courier.get("coverage_charges")),
            rto=_to_float(courier.get("rto_charges")),
        ),
        metadata={
            "courierId": courier.get("id"),
            "courierCompanyId": courier.get("courier_company_id"),
            "isSurface": courier.get("is_surface"),
            "zone": courier.get("zone"),
            "cutoffTime": courier.get("cutoff_time"),
        },
    )


def map_awb_to_shipment(body: Mapping[str, Any], provider_id: str, order_id: str) -> ShipmentResult:
    data = ((body.get("response") or {}).get("data") or {})
    awb = str(data.get("awb_code") or "").strip()
    return ShipmentResult(
        provider_id=provider_id,
        provider_code=ShiprocketProvider.code,
        tracking_number=awb,
        courier_name=str(data.get("courier_name") or ""),
        courier_code=str(data.get("courier_company_id") or "") or None,
        tracking_url=f"https://shiprocket.co/tracking/{awb}" if awb else "",
        provider_shipment_id=str(data.get("shipment_id") or "") or None,
        estimated_delivery=parse_timestamp(data.get("pickup_scheduled_date")),
        metadata={
            "shipmentId": data.get("shipment_id"),
            "appliedWeight": data.get("applied_weight"),
            "routingCode": data.get("routing_code"),
            "rtoRoutingCode": data.get("rto_routing_code"),
            "invoiceNo": data.get("invoice_no"),
            "orderId": order_id,
        },
    )


def _activity_to_status(activity: Mapping[str, Any]) -> TrackingStatus:
    raw = activity.get("sr-status") or activity.get("sr_status") or activity.get("status") or ""
    label = activity.get("sr-status-label") or activity.get("sr_status_label") or activity.get("status") or str(raw)
    return TrackingStatus(
        status=map_status_code(raw) if raw != "" else normalize("shiprocket", label),
        provider_status=str(label),
        timestamp=parse_timestamp(activity.get("date")),
        location=str(activity.get("location") or ""),
        description=str(activity.get("activity") or ""),
    )


def map_tracking(body: Mapping[str, Any], tracking_number: str) -> TrackingInfo:
    data = body.get("tracking_data") or {}
    activities = data.get("shipment_track_activities") or []
    history = tuple(_activity_to_status(a) for a in activities if isinstance(a, Mapping))

    if history:
        # Shiprocket lists activities newest first
        current = history[0]
    else:
        track = (data.get("shipment_track") or [{}])[0] or {}
        raw = data.get("shipment_status", track.get("current_status", ""))
        current = TrackingStatus(
            status=map_status_code(raw),
            provider_status=str(track.get("current_status") or raw),
            timestamp=parse_timestamp(track.get("updated_time")),
        )

    track = (data.get("shipment_track") or [{}])[0] or {}
    delivered_at = parse_timestamp(track.get("delivered_date"))
    if delivered_at is None and current.status is S.DELIVERED:
        delivered_at = current.timestamp

    return TrackingInfo(
        tracking_number=tracking_number,
        courier_name=str(track.get("courier_name") or "Shiprocket"),
        current_status=current,
        history=history,
        estimated_delivery=parse_timestamp(data.get("etd")),
        delivered_at=delivered_at,
    )


# --- Adapter ----------------------------------------------------------------

class ShiprocketProvider(ShippingProvider):
    """Shiprocket aggregator adapter.

    Config keys read from the provider row:
      base_url, email, password, warehouse_pincode, min_rating,
      webhook_token, channel_id
    """

    code = "shiprocket"
    display_name = "Shiprocket"

    def __init__(self, transport: Optional[RequestsTransport] = None) -> None:
        super().__init__()
        self.transport = transport
        self._token: Optional[str] = None
        self._token_expires_at: Optional[dt.datetime] = None

    def initialize(self, provider, token_store=None):
        super().initialize(provider, token_store)
        if self.transport is None:
            self.transport = RequestsTransport(timeout=provider.timeout_seconds or 30)
        self._token = provider.auth_token
        self._token_expires_at = provider.token_expires_at
        return self

    @property
    def base_url(self) -> str:
        return str(self.config.get("base_url") or SHIPROCKET_BASE_URL).rstrip("/")

    # -- auth -----------------------------------------------------------------

    def _token_fresh(self) -> bool:
        if not self._token:
            return False
        if self._token_expires_at is None:
            return True
        return dt.datetime.now(dt.timezone.utc) < self._token_expires_at

    def _login(self, email: str, password: str) -> Dict[str, Any]:
        self.logger.debug("Requesting Shiprocket token from %s", self.base_url + ENDPOINTS["auth"])
        body = self._send("POST", ENDPOINTS["auth"], json={"email": email, "password": password}, auth=False)
        if not body.get("token"):
            raise ProviderAuthError("Shiprocket login returned no token", provider_code=self.code)
        return body

    def _ensure_token(self) -> str:
        if self._token_fresh():
            return self._token  # type: ignore[return-value]

        email = self.config.get("email")
        password = self.config.get("password")
        if not email or not password:
            raise ProviderAuthError(
                "Shiprocket token expired and no stored credentials; reconnect the account",
                provider_code=self.code,
            )

        body = self._login(str(email), str(password))
        self._token = str(body["token"])
        self._token_expires_at = dt.datetime.now(dt.timezone.utc) + dt.timedelta(hours=TOKEN_TTL_HOURS)
        if self._token_store is not None:
            self._token_store.update_auth_token(self.provider_id, self._token, self._token_expires_at)
        self.logger.info("Refreshed Shiprocket token for provider %s", self.provider_id)
        return self._token

    # -- HTTP -----------------------------------------------------------------

    def _send(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        auth: bool = True,
    ) -> Dict[str, Any]:
        url = self.base_url + path
        headers = {"Content-Type": "application/json"}
        if auth:
            headers["Authorization"] = f"Bearer {self._ensure_token()}"

        try:
            if method == "GET":
                resp = self.transport.get(url, headers=headers, params=params)
            else:
                resp = self.transport.post(url, headers=headers, json=json, params=params)
        except requests.RequestException as ex:
            self.logger.warning("Shiprocket %s %s failed: %s", method, path, ex)
            raise ProviderTransportError(f"Shiprocket unreachable: {ex}", provider_code=self.code) from ex

        status = resp.status_code
        text = getattr(resp, "text", None)

        if status in (401, 403):
            self.logger.warning("Shiprocket %s %s rejected credentials status=%s", method, path, status)
            raise ProviderAuthError(self._error_message(resp, status), provider_code=self.code, status_code=status)

        if status >= 400:
            self.logger.warning(
                "Shiprocket %s %s returned error status=%s response_body=%s", method, path, status, _clip(text))
            raise ProviderTransportError(self._error_message(resp, status), provider_code=self.code, status_code=status)

        try:
            body = resp.json()
        except ValueError as ex:
            raise ProviderTransportError(
                f"Shiprocket returned a non-JSON body (status={status})", provider_code=self.code, status_code=status
            ) from ex

        self.logger.debug("Shiprocket %s %s status=%s response_body=%s", method, path, status, _clip(text, 4000))
        return body if isinstance(body, dict) else {"data": body}

    @staticmethod
    def _error_message(resp, status: int) -> str:
        try:
            payload = resp.json()
            message = payload.get("message") if isinstance(payload, dict) else None
        except ValueError:
            message = None
        return f"Shiprocket error {status}: {message or getattr(resp, 'reason', '') or 'request failed'}"

    # -- capabilities ----------------------------------------------------------

    def connect(self, credentials: Mapping[str, Any]) -> ConnectionResult:
        kind = credentials.get("type", "email_password")
        email = credentials.get("email")
        password = credentials.get("password")
        if kind != "email_password" or not email or not password:
            return ConnectionResult(
                success=False, error=f"Shiprocket requires email_password credentials, got {kind}")

        try:
            body = self._login(str(email), str(password))
        except ProviderAuthError as ex:
            return ConnectionResult(success=False, error=str(ex))
        except ProviderTransportError as ex:
            # 4xx on login means Shiprocket refused the credentials
            if ex.status_code is not None and 400 <= ex.status_code < 500:
                return ConnectionResult(success=False, error=str(ex))
            raise

        return ConnectionResult(
            success=True,
            token=str(body["token"]),
            token_expires_at=dt.datetime.now(dt.timezone.utc) + dt.timedelta(hours=TOKEN_TTL_HOURS),
            account_info={
                "id": body.get("id"),
                "firstName": body.get("first_name"),
                "lastName": body.get("last_name"),
                "email": body.get("email"),
                "companyId": body.get("company_id"),
            },
        )

    def _couriers(self, params: Dict[str, Any]) -> list[Mapping[str, Any]]:
        try:
            body = self._send("GET", ENDPOINTS["serviceability"], params=params)
        except ProviderTransportError as ex:
            if ex.status_code == 404:
                return []
            raise
        if body.get("status") == 404:
            return []
        data = body.get("data") or {}
        couriers = data.get("available_courier_companies") if isinstance(data, dict) else None
        return [c for c in (couriers or []) if isinstance(c, Mapping)]

    def get_rates(self, request: RateRequest) -> list[ShippingRate]:
        params = {
            "pickup_postcode": request.from_pincode,
            "delivery_postcode": request.to_pincode,
            "weight": request.weight,
            "cod": 1 if request.is_cod else 0,
        }
        if request.declared_value:
            params["declared_value"] = request.declared_value

        couriers = self._couriers(params)
        min_rating = float(self.config.get("min_rating", DEFAULT_MIN_RATING))
        rated = [c for c in couriers if (_to_float(c.get("rating"), 0.0) or 0.0) >= min_rating]
        if not rated:
            self.logger.info(
                "No Shiprocket couriers rated >= %s for %s -> %s", min_rating, request.from_pincode, request.to_pincode)
            return []

        return [map_courier_to_rate(c, self.provider_id, self.provider.name) for c in rated]

    def check_serviceability(self, pincode: str) -> ServiceabilityResult:
        origin = self.config.get("warehouse_pincode")
        if not origin:
            raise ConfigurationError(f"Shiprocket provider {self.provider_id} has no warehouse_pincode configured")

        couriers = self._couriers({
            "pickup_postcode": origin,
            "delivery_postcode": pincode,
            "weight": SERVICEABILITY_PROBE_WEIGHT_KG,
            "cod": 0,
        })
        open_couriers = [c for c in couriers if _to_int(c.get("blocked")) == 0]
        return ServiceabilityResult(
            serviceable=bool(open_couriers),
            details={"courierCount": len(open_couriers)},
        )

    def _order_body(self, request: ShipmentRequest) -> Dict[str, Any]:
        addr = request.delivery_address
        first, _, last = addr.name.partition(" ")
        order_date = request.order_date or dt.datetime.now(IST)
        body: Dict[str, Any] = {
            "order_id": request.order_id,
            "order_date": order_date.strftime("%Y-%m-%d %H:%M"),
            "pickup_location": request.pickup_location,
            "billing_customer_name": first,
            "billing_last_name": last,
            "billing_address": addr.line1,
            "billing_address_2": addr.line2,
            "billing_city": addr.city,
            "billing_pincode": addr.pincode,
            "billing_state": addr.state,
            "billing_country": addr.country,
            "billing_email": addr.email,
            "billing_phone": addr.phone,
            "shipping_is_billing": True,
            "order_items": [
                {"name": i.name, "sku": i.sku, "units": i.units, "selling_price": i.selling_price}
                for i in request.items
            ],
            "payment_method": "COD" if request.payment_mode is PaymentMode.COD else "Prepaid",
            "sub_total": request.sub_total,
            "length": request.dimensions.length,
            "breadth": request.dimensions.breadth,
            "height": request.dimensions.height,
            "weight": request.weight,
        }
        if self.config.get("channel_id"):
            body["channel_id"] = self.config["channel_id"]
        return body

    def create_shipment(self, request: ShipmentRequest) -> ShipmentResult:
        order = self._send("POST", ENDPOINTS["create_order"], json=self._order_body(request))
        shipment_id = order.get("shipment_id")
        if not shipment_id:
            raise ProviderTransportError(
                f"Shiprocket did not return a shipment_id for order {request.order_id}", provider_code=self.code)

        awb_body: Dict[str, Any] = {"shipment_id": shipment_id}
        if request.courier_code:
            awb_body["courier_id"] = request.courier_code
        assigned = self._send("POST", ENDPOINTS["assign_awb"], json=awb_body)
        if _to_int(assigned.get("awb_assign_status")) != 1:
            raise ProviderTransportError(
                f"Shiprocket could not assign an AWB for shipment {shipment_id}: "
                f"{assigned.get('message') or json.dumps(assigned)[:300]}",
                provider_code=self.code,
            )

        result = map_awb_to_shipment(assigned, self.provider_id, request.order_id)
        self.logger.info("Shiprocket shipment %s created with AWB %s", shipment_id, result.tracking_number)
        return result

    def track(self, tracking_number: str) -> TrackingInfo:
        body = self._send("GET", ENDPOINTS["track"].format(awb=tracking_number))
        return map_tracking(body, tracking_number)

    def cancel_shipment(self, tracking_number: str) -> bool:
        self._send("POST", ENDPOINTS["cancel"], json={"awbs": [tracking_number]})
        return True

    def parse_webhook(self, payload: Mapping[str, Any]) -> WebhookEvent:
        awb = str(payload.get("awb") or "").strip()
        if not awb:
            raise ValidationError("Shiprocket webhook payload has no awb")

        raw = payload.get("current_status") or payload.get("shipment_status")
        if raw:
            status = normalize(self.code, raw)
            provider_status = str(raw)
        else:
            code = payload.get("current_status_id", payload.get("shipment_status_id"))
            status = map_status_code(code)
            provider_status = str(code)

        scans = [s for s in (payload.get("scans") or []) if isinstance(s, Mapping)]
        latest_scan = scans[-1] if scans else {}
        timestamp = (
            parse_timestamp(payload.get("current_timestamp"))
            or parse_timestamp(latest_scan.get("date"))
        )

        return WebhookEvent(
            provider_id=self.provider_id,
            provider_code=self.code,
            tracking_number=awb,
            order_id=str(payload.get("order_id")) if payload.get("order_id") else None,
            status=TrackingStatus(
                status=status,
                provider_status=provider_status,
                timestamp=timestamp,
                location=str(latest_scan.get("location") or ""),
                description=str(latest_scan.get("activity") or ""),
            ),
            raw_payload=dict(payload),
        )

    def verify_webhook(self, payload: Mapping[str, Any], headers: Mapping[str, str]) -> bool:
        expected = self.config.get("webhook_token")
        if not expected:
            return True
        lowered = {str(k).lower(): v for k, v in (headers or {}).items()}
        given = lowered.get("x-api-key") or ""
        return hmac.compare_digest(str(given).encode("utf-8"), str(expected).encode("utf-8"))
