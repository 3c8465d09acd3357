from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Callable, Mapping, Optional

from shipping_hub.errors import (
    ConfigurationError,
    ProviderError,
    ShipmentCreationError,
    ShippingError,
    ValidationError,
)
from shipping_hub.models import PaymentMode, RateRequest, ShipmentRequest, WebhookEvent
from shipping_hub.services.orchestrator import ShippingOrchestrator
from shipping_hub.services.selector import BALANCED, recommend_strategy
from shipping_hub.utils.pincode import is_valid_pincode, normalize_pincode
from shipping_hub.utils.weight import calculate_package_weight

# (http_status, json_body)
Response = tuple[int, dict[str, Any]]
OrderLookup = Callable[[str], Optional[ShipmentRequest]]
EventSink = Callable[[WebhookEvent], Any]

logger = logging.getLogger("shipping_hub.api.handlers")


def _error(status: int, message: str, **extra: Any) -> Response:
    return status, {"success": False, "error": message, **extra}


def _rate_request(payload: Mapping[str, Any], warehouse_pincode: str) -> RateRequest:
    """Checkout payload -> validated RateRequest. Raises ValidationError."""
    if "weight" in payload and payload["weight"] is not None:
        weight = payload["weight"]
    elif payload.get("cartItems"):
        if not isinstance(payload["cartItems"], (list, tuple)):
            raise ValidationError("cartItems must be a list")
        weight = calculate_package_weight(payload["cartItems"])
    else:
        raise ValidationError("either weight or cartItems is required")

    try:
        mode = PaymentMode.parse(payload.get("mode"))
    except ValueError as ex:
        raise ValidationError(f"mode must be prepaid or cod, got {payload.get('mode')!r}") from ex

    return RateRequest(
        from_pincode=str(payload.get("fromPincode") or warehouse_pincode),
        to_pincode=str(payload.get("pincode") or payload.get("toPincode") or ""),
        weight=weight,
        declared_value=payload.get("declaredValue") or 0.0,
        payment_mode=mode,
        cod_amount=payload.get("codAmount"),
    ).validate()


def quote_rates(
    orchestrator: ShippingOrchestrator,
    payload: Mapping[str, Any],
    warehouse_pincode: str,
    *,
    strategy: str = BALANCED,
    use_cache: bool = True,
) -> Response:
    """
    Checkout quote: one rate per delivery-day bucket plus a default pick.

    Body: {rates, defaultRate, metadata}. 400 before any provider is called
    when the payload is invalid; 404 when no provider can quote.
    """
    try:
        request = _rate_request(payload, warehouse_pincode)
    except ValidationError as ex:
        return _error(400, "Validation error", details=str(ex))

    all_rates = orchestrator.get_rates_from_all_providers(request, use_cache=use_cache)
    if not all_rates:
        return _error(404, "No shipping options available for this location")

    selection = orchestrator.selector.select(all_rates, strategy)
    buckets = orchestrator.best_rates_by_delivery_days(all_rates)

    return 200, {
        "success": True,
        "rates": [r.to_dict() for r in buckets],
        "defaultRate": selection.selected_rate.to_dict() if selection else None,
        "metadata": {
            "fromPincode": request.from_pincode,
            "toPincode": request.to_pincode,
            "weight": request.weight,
            "mode": request.payment_mode.value,
            "totalRates": len(all_rates),
            "strategy": strategy,
            "selectionReason": selection.reason if selection else None,
            "recommendedStrategy": recommend_strategy(all_rates),
        },
    }


def check_pincode(orchestrator: ShippingOrchestrator, pincode: Any) -> Response:
    if not is_valid_pincode(pincode):
        return _error(400, "Invalid pincode. Must be 6 digits.")
    pin = normalize_pincode(pincode)
    summary = orchestrator.check_serviceability(pin)
    body = summary.to_dict()
    body["success"] = True
    body["message"] = (f"Delivery available to {pin}" if summary.serviceable
                       else f"Delivery not available to {pin}")
    return 200, body


def create_order_shipment(
    orchestrator: ShippingOrchestrator,
    order_lookup: OrderLookup,
    payload: Mapping[str, Any],
) -> Response:
    """Admin shipment creation. The caller persists the tracking fields from a 201."""
    order_id = str(payload.get("orderId") or "").strip()
    if not order_id:
        return _error(400, "orderId is required")

    request = order_lookup(order_id)
    if request is None:
        return _error(404, f"Order not found: {order_id}")

    provider_id = payload.get("providerId") or request.provider_id
    courier_code = payload.get("courierCode") or request.courier_code
    request = replace(request, provider_id=provider_id, courier_code=courier_code)

    try:
        result = orchestrator.create_shipment_with_fallback(request)
    except ShipmentCreationError as ex:
        logger.error("Shipment creation failed for order %s: %s", order_id, ex)
        return _error(502, "All shipping providers failed", attempts=[a.to_dict() for a in ex.attempts])
    except ConfigurationError as ex:
        logger.error("Shipment creation unavailable for order %s: %s", order_id, ex)
        return _error(503, str(ex))

    body = result.to_dict()
    body["success"] = True
    body["orderId"] = order_id
    return 201, body


def track(orchestrator: ShippingOrchestrator, tracking_number: str, provider_id: Optional[str]) -> Response:
    try:
        info = orchestrator.track_shipment(tracking_number, provider_id)
    except ValidationError as ex:
        return _error(400, str(ex))
    except ConfigurationError as ex:
        return _error(404, str(ex))
    except ProviderError as ex:
        logger.warning("Tracking failed for %s via %s: %s", tracking_number, provider_id, ex)
        return _error(502, str(ex))
    return 200, {"success": True, "tracking": info.to_dict()}


def receive_webhook(
    orchestrator: ShippingOrchestrator,
    provider_id: str,
    payload: Mapping[str, Any],
    headers: Optional[Mapping[str, str]] = None,
    on_event: Optional[EventSink] = None,
) -> Response:
    """
    Carrier callback. Always answers 200 so the carrier does not retry.

    Verification, parsing and the caller's `on_event` persistence hook all
    run inside; any failure is logged for manual follow-up and reported in the
    body only.
    """
    try:
        event = orchestrator.handle_webhook(provider_id, payload, headers or {})
        if on_event is not None:
            on_event(event)
    except ShippingError as ex:
        logger.error("Webhook from provider %s rejected: %s; payload=%r", provider_id, ex, payload)
        return _error(200, "Webhook processing failed")
    except Exception:  # malformed payload or on_event failure
        logger.exception("Webhook processing error for provider %s; payload=%r", provider_id, payload)
        return _error(200, "Webhook processing failed")

    return 200, {
        "success": True,
        "trackingNumber": event.tracking_number,
        "status": event.status.status.value,
    }
