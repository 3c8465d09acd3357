from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import replace
from typing import Any, Callable, Hashable, Mapping, Optional, Sequence, TypeVar

from shipping_hub.errors import (
    ConfigurationError,
    ProviderError,
    ProviderTimeoutError,
    ShipmentCreationError,
    ValidationError,
)
from shipping_hub.models import (
    Provider,
    ProviderSummary,
    RateRequest,
    SelectionResult,
    ServiceabilitySummary,
    ShipmentAttempt,
    ShipmentRequest,
    ShipmentResult,
    ShippingEvent,
    ShippingRate,
    TrackingInfo,
    WebhookEvent,
)
from shipping_hub.models import events as ev
from shipping_hub.providers.base import ShippingProvider
from shipping_hub.providers.registry import ProviderRegistry
from shipping_hub.repository.events import EventRepository
from shipping_hub.repository.providers import ProviderRepository
from shipping_hub.services.rate_cache import RateCache
from shipping_hub.services.selector import BALANCED, RateSelector, best_rates_by_delivery_days, sort_rates
from shipping_hub.utils.pincode import is_valid_pincode, normalize_pincode

T = TypeVar("T")

DEFAULT_PROVIDER_TIMEOUT_SECONDS = 8.0


class ShippingOrchestrator:
    """Coordinates every configured carrier behind one interface.

    Holds no provider state of its own: each call re-reads the repository,
    builds fresh adapters through the registry and fans out on a short-lived
    thread pool. A provider that raises, times out or has no registered
    adapter is logged and left out of aggregate answers; only shipment
    creation escalates, and only after every eligible provider has failed.
    When an event repository is given, every provider interaction is
    recorded there as a ShippingEvent.
    """

    def __init__(
        self,
        repository: ProviderRepository,
        registry: ProviderRegistry,
        *,
        cache: Optional[RateCache] = None,
        selector: Optional[RateSelector] = None,
        events: Optional[EventRepository] = None,
        default_timeout: float = DEFAULT_PROVIDER_TIMEOUT_SECONDS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.cache = cache
        self.selector = selector or RateSelector()
        self.events = events
        self.default_timeout = float(default_timeout)
        self.logger = logger or logging.getLogger("shipping_hub.services.orchestrator")

    # -- plumbing -------------------------------------------------------------

    def _timeout_for(self, provider: Provider) -> float:
        return float(provider.timeout_seconds or self.default_timeout)

    def _adapter(self, provider: Provider) -> ShippingProvider:
        return self.registry.create(provider, self.repository)

    def _run_bounded(
        self,
        calls: Mapping[Hashable, tuple[Callable[[], T], float]],
    ) -> dict[Hashable, tuple[Optional[T], Optional[BaseException]]]:
        """
        Run each call on its own worker thread and wait at most its own timeout.

        Every call starts at once, so deadlines fixed at submit time hold and
        one slow provider never eats another's budget. Returns
        key -> (value, None) or (None, error); a call past its deadline yields
        ProviderTimeoutError and is abandoned.
        """
        if not calls:
            return {}

        results: dict[Hashable, tuple[Optional[T], Optional[BaseException]]] = {}
        executor = ThreadPoolExecutor(max_workers=len(calls), thread_name_prefix="shipping-hub")
        try:
            started = time.monotonic()
            pending: list[tuple[Hashable, Future, float]] = [
                (key, executor.submit(fn), started + timeout) for key, (fn, timeout) in calls.items()
            ]
            for key, future, deadline in pending:
                try:
                    results[key] = (future.result(timeout=max(0.0, deadline - time.monotonic())), None)
                except FutureTimeout:
                    future.cancel()
                    results[key] = (None, ProviderTimeoutError(f"timed out after {calls[key][1]:.1f}s"))
                except Exception as ex:  # adapter failures are reported per provider
                    results[key] = (None, ex)
        finally:
            # stragglers keep their thread but nobody waits on them
            executor.shutdown(wait=False, cancel_futures=True)
        return results

    def _call_one(self, provider: Provider, fn: Callable[[], T]) -> T:
        value, error = self._run_bounded({provider.id: (fn, self._timeout_for(provider))})[provider.id]
        if error is not None:
            raise error
        return value  # type: ignore[return-value]

    def _record(
        self,
        event_type: str,
        provider: Provider,
        error: Optional[BaseException] = None,
        **fields: Any,
    ) -> None:
        if self.events is None:
            return
        if error is not None:
            details = dict(fields.pop("details", None) or {}, errorType=type(error).__name__)
            fields["details"] = details
        event = ShippingEvent(
            event_type=event_type,
            status=ev.FAILED if error is not None else ev.SUCCESS,
            provider_id=provider.id,
            provider_code=provider.code,
            error=str(error) if error is not None else None,
            **fields,
        )
        try:
            self.events.record(event)
        except Exception as ex:  # the event log never fails the operation it describes
            self.logger.warning("Could not record %s event for provider %s: %s", event_type, provider.id, ex)

    def _require_provider(self, provider_id: Optional[str]) -> Provider:
        if not provider_id:
            raise ValidationError("provider_id is required")
        provider = self.repository.get_by_id(provider_id)
        if provider is None:
            raise ConfigurationError(f"Unknown shipping provider id: {provider_id}")
        return provider

    # -- rates ----------------------------------------------------------------

    def get_rates_from_all_providers(self, request: RateRequest, use_cache: bool = False) -> list[ShippingRate]:
        """
        Quote every enabled provider that can take this request, concurrently.

        Providers are filtered on payment mode and (where they carry an
        allow-list) destination pincode before dispatch. Each adapter is built
        on its worker, so a provider whose setup fails is excluded like one
        whose call fails. Per-provider failures and timeouts are logged and
        excluded; when nothing succeeds the answer is [] rather than an error.
        Returned rates carry their provider's priority and are in
        deterministic order.
        """
        req = request.validate()

        if use_cache and self.cache is not None:
            cached = self.cache.get(req.cache_key())
            if cached is not None:
                self.logger.debug("Rate cache hit for %s", req.cache_key())
                return cached

        candidates = [
            p for p in self.repository.get_enabled_providers()
            if p.supports_mode(req.payment_mode) and p.can_service(req.to_pincode)
        ]
        if not candidates:
            self.logger.info("No enabled shipping provider can quote %s -> %s (%s)",
                             req.from_pincode, req.to_pincode, req.payment_mode)
            return []

        outcomes = self._run_bounded({
            p.id: ((lambda p=p: self._adapter(p).get_rates(req)), self._timeout_for(p)) for p in candidates
        })

        collected: list[ShippingRate] = []
        for p in candidates:
            rates, error = outcomes[p.id]
            if error is not None:
                self.logger.warning("Rate fetch failed for provider %s (%s): %s", p.id, p.code, error)
                self._record(ev.RATE_FETCH, p, error)
                continue
            rates = list(rates or ())
            self._record(ev.RATE_FETCH, p, details={"rates": len(rates), "toPincode": req.to_pincode})
            collected.extend(r.with_priority(p.priority) for r in rates)

        if not collected:
            self.logger.info("No rates returned for %s -> %s", req.from_pincode, req.to_pincode)
            return []

        out = sort_rates(collected)
        if use_cache and self.cache is not None:
            self.cache.set(req.cache_key(), out)
        return out

    def get_best_rate(
        self,
        request: RateRequest,
        strategy: str = BALANCED,
        *,
        use_cache: bool = False,
        **criteria: Any,
    ) -> Optional[SelectionResult]:
        """Collect rates and pick one; criteria go to RateSelector.select()."""
        rates = self.get_rates_from_all_providers(request, use_cache=use_cache)
        if not rates:
            return None
        result = self.selector.select(rates, strategy, **criteria)
        if result is not None:
            self.logger.info("Best rate (%s): %s via %s at %.2f", result.strategy,
                             result.selected_rate.courier_name, result.selected_rate.provider_code,
                             result.selected_rate.rate)
        return result

    @staticmethod
    def best_rates_by_delivery_days(rates: Sequence[ShippingRate]) -> list[ShippingRate]:
        return best_rates_by_delivery_days(rates)

    # -- serviceability -------------------------------------------------------

    def check_serviceability(self, pincode: str) -> ServiceabilitySummary:
        if not is_valid_pincode(pincode):
            raise ValidationError(f"pincode must be 6 digits, got {pincode!r}")
        pin = normalize_pincode(pincode)

        candidates = [p for p in self.repository.get_enabled_providers() if p.can_service(pin)]
        outcomes = self._run_bounded({
            p.id: ((lambda p=p: self._adapter(p).check_serviceability(pin)), self._timeout_for(p))
            for p in candidates
        })

        serving: list[ProviderSummary] = []
        for p in candidates:
            result, error = outcomes[p.id]
            if error is not None:
                self.logger.warning("Serviceability check failed for provider %s (%s): %s", p.id, p.code, error)
                self._record(ev.SERVICEABILITY, p, error, details={"pincode": pin})
                continue
            ok = result is not None and result.serviceable
            self._record(ev.SERVICEABILITY, p, details={"pincode": pin, "serviceable": ok})
            if ok:
                serving.append(ProviderSummary.of(p))

        return ServiceabilitySummary(pincode=pin, serviceable=bool(serving), providers=tuple(serving))

    # -- shipments ------------------------------------------------------------

    def _fallback_order(self, request: ShipmentRequest) -> list[Provider]:
        eligible = [p for p in self.repository.get_enabled_providers() if p.is_dispatchable()]
        if request.provider_id:
            preferred = [p for p in eligible if p.id == request.provider_id]
            if not preferred:
                self.logger.info("Preferred provider %s is not dispatchable; using priority order",
                                 request.provider_id)
            return preferred + [p for p in eligible if p.id != request.provider_id]
        return eligible

    def create_shipment_with_fallback(self, request: ShipmentRequest) -> ShipmentResult:
        """
        Create the shipment with the preferred provider, falling back in priority order.

        Each dispatchable provider is tried at most once. The first success is
        returned with the earlier failures in `failed_attempts`; if all fail,
        ShipmentCreationError carries every attempt. A provider that times out
        counts as failed even though its carrier may still have committed the
        shipment.
        """
        order = self._fallback_order(request)
        if not order:
            raise ConfigurationError("No enabled, connected shipping provider with a valid token")

        attempts: list[ShipmentAttempt] = []
        for provider in order:
            # courier codes belong to the preferred provider's catalogue
            req = request if provider.id == request.provider_id else request.for_courier(None)
            try:
                result = self._call_one(provider, lambda: self._adapter(provider).create_shipment(req))
                if not result.tracking_number:
                    raise ProviderError("provider returned no tracking number", provider_code=provider.code)
            except Exception as ex:  # recorded as an attempt; next provider is tried
                self.logger.warning("Shipment creation failed for order %s with provider %s (%s): %s",
                                    request.order_id, provider.id, provider.code, ex)
                attempts.append(ShipmentAttempt(provider_id=provider.id, provider_code=provider.code,
                                                error=str(ex), error_type=type(ex).__name__))
                self._record(ev.SHIPMENT_CREATE, provider, ex, order_id=request.order_id,
                             details={"attempt": len(attempts)})
                continue

            self.logger.info("Shipment created for order %s with provider %s: %s",
                             request.order_id, provider.code, result.tracking_number)
            self._record(ev.SHIPMENT_CREATE, provider, order_id=request.order_id,
                         tracking_number=result.tracking_number,
                         details={"attempt": len(attempts) + 1, "courierName": result.courier_name})
            return replace(result, failed_attempts=tuple(attempts))

        self.logger.error("All providers failed to create shipment for order %s", request.order_id)
        raise ShipmentCreationError(attempts)

    def track_shipment(self, tracking_number: str, provider_id: Optional[str]) -> TrackingInfo:
        if not str(tracking_number or "").strip():
            raise ValidationError("tracking_number is required")
        provider = self._require_provider(provider_id)
        tn = str(tracking_number).strip()
        try:
            info = self._call_one(provider, lambda: self._adapter(provider).track(tn))
        except Exception as ex:
            self._record(ev.TRACK, provider, ex, tracking_number=tn)
            raise
        self._record(ev.TRACK, provider, tracking_number=tn,
                     details={"status": info.current_status.status.value})
        return info

    def cancel_shipment(self, tracking_number: str, provider_id: Optional[str]) -> bool:
        if not str(tracking_number or "").strip():
            raise ValidationError("tracking_number is required")
        provider = self._require_provider(provider_id)
        tn = str(tracking_number).strip()
        try:
            ok = bool(self._call_one(provider, lambda: self._adapter(provider).cancel_shipment(tn)))
        except Exception as ex:
            self._record(ev.CANCEL, provider, ex, tracking_number=tn)
            raise
        self.logger.info("Cancel %s via %s: %s", tn, provider.code, "ok" if ok else "rejected")
        self._record(ev.CANCEL, provider, tracking_number=tn, details={"cancelled": ok})
        return ok

    # -- webhooks -------------------------------------------------------------

    def handle_webhook(
        self,
        provider_id: str,
        payload: Mapping[str, Any],
        headers: Optional[Mapping[str, str]] = None,
    ) -> WebhookEvent:
        """Verify and parse a carrier callback into a normalized event. Nothing but the event log is written."""
        provider = self._require_provider(provider_id)
        try:
            adapter = self._adapter(provider)
            if not adapter.verify_webhook(payload, headers or {}):
                raise ValidationError(f"Webhook verification failed for provider {provider_id}")
            event = adapter.parse_webhook(payload)
        except Exception as ex:
            self._record(ev.WEBHOOK, provider, ex)
            raise
        self.logger.info("Webhook from %s: %s -> %s", provider.code, event.tracking_number,
                         event.status.status.value)
        self._record(ev.WEBHOOK, provider, order_id=event.order_id, tracking_number=event.tracking_number,
                     details={"status": event.status.status.value})
        return event

    # -- discovery ------------------------------------------------------------

    def get_available_providers(self) -> list[ProviderSummary]:
        return [ProviderSummary.of(p) for p in self.repository.get_enabled_providers()]
