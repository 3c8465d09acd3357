# src/shipping_hub/cli.py
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

from .config.env import get_app_env
from .config.logging_config import get_logger
from .errors import ConfigurationError, ShippingError, ValidationError
from .io.paths import derive_output_paths
from .models import EnvCfg, PaymentMode, RateRequest
from .models.events import FAILED
from .providers.registry import default_registry
from .repository.events import JsonEventRepository
from .repository.providers import JsonProviderRepository
from .services.orchestrator import ShippingOrchestrator
from .services.rate_cache import RateCache
from .services.selector import STRATEGIES


def _add_rate_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--to", dest="to_pincode", required=True, help="Destination pincode.")
    p.add_argument("--from", dest="from_pincode", default=None,
                   help="Pickup pincode. Default: SHIPPING_WAREHOUSE_PINCODE.")
    p.add_argument("--weight", type=float, required=True, help="Package weight in kg.")
    p.add_argument("--cod", action="store_true", help="Quote cash-on-delivery.")
    p.add_argument("--declared-value", type=float, default=0.0, help="Declared order value (INR).")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="shipping-hub",
        description="Quote, compare and track shipments across the configured carriers.",
    )
    p.add_argument(
        "--providers-file",
        type=Path,
        default=None,
        help="JSON array of provider rows. Default: SHIPPING_PROVIDERS_FILE.",
    )
    p.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR). Default: INFO",
    )
    p.add_argument("--log-file", type=Path, default=None, help="Also log to this file (rotating).")
    p.add_argument(
        "--events-file",
        type=Path,
        default=None,
        help="Record provider interactions in this JSON file. Default: SHIPPING_EVENTS_FILE.",
    )
    p.add_argument(
        "--no-console",
        action="store_true",
        help="Disable console logging (file logging remains).",
    )
    p.add_argument(
        "--strict-env",
        action="store_true",
        help="Require SHIPPING_PROVIDERS_FILE to be set; otherwise exit 2.",
    )

    sub = p.add_subparsers(dest="command", required=True)

    rates = sub.add_parser("rates", help="List every rate from every enabled provider.")
    _add_rate_args(rates)
    rates.add_argument("--by-days", action="store_true",
                       help="Only the cheapest rate per delivery-day bucket.")

    best = sub.add_parser("best-rate", help="Pick one rate with a selection strategy.")
    _add_rate_args(best)
    best.add_argument("--strategy", choices=STRATEGIES, default=None,
                      help="Default: SHIPPING_DEFAULT_STRATEGY (balanced).")
    best.add_argument("--max-cost", type=float, default=None)
    best.add_argument("--max-days", type=int, default=None)
    best.add_argument("--provider-id", default=None, help="Provider for --strategy specific.")

    svc = sub.add_parser("serviceability", help="Which providers deliver to a pincode.")
    svc.add_argument("pincode")

    track = sub.add_parser("track", help="Track a shipment with the provider that created it.")
    track.add_argument("tracking_number")
    track.add_argument("--provider-id", required=True)

    refresh = sub.add_parser("refresh", help="Re-track open shipments in a workbook; writes *_processed.xlsx.")
    refresh.add_argument("input", type=Path, help="Path to input .xlsx file.")

    events = sub.add_parser("events", help="Show recorded provider events and failure stats.")
    events.add_argument("--provider-id", default=None, help="Only this provider; also prints its stats.")
    events.add_argument("--failed", action="store_true", help="Only failed events.")
    events.add_argument("--limit", type=int, default=50)

    return p


def _emit(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _rate_request(args: argparse.Namespace, env_cfg: EnvCfg) -> RateRequest:
    return RateRequest(
        from_pincode=args.from_pincode or env_cfg.SHIPPING_WAREHOUSE_PINCODE,
        to_pincode=args.to_pincode,
        weight=args.weight,
        declared_value=args.declared_value,
        payment_mode=PaymentMode.COD if args.cod else PaymentMode.PREPAID,
    )


def build_orchestrator(
    providers_file: Path,
    env_cfg: EnvCfg,
    events_file: Optional[Path] = None,
) -> ShippingOrchestrator:
    return ShippingOrchestrator(
        JsonProviderRepository(providers_file),
        default_registry(),
        cache=RateCache(env_cfg.SHIPPING_RATE_CACHE_TTL),
        events=JsonEventRepository(events_file) if events_file else None,
        default_timeout=env_cfg.SHIPPING_PROVIDER_TIMEOUT,
    )


def _run(args: argparse.Namespace, orchestrator: ShippingOrchestrator, env_cfg: EnvCfg, logger) -> int:
    if args.command == "rates":
        rates = orchestrator.get_rates_from_all_providers(_rate_request(args, env_cfg))
        if args.by_days:
            rates = orchestrator.best_rates_by_delivery_days(rates)
        _emit([r.to_dict() for r in rates])
        return 0

    if args.command == "best-rate":
        result = orchestrator.get_best_rate(
            _rate_request(args, env_cfg),
            args.strategy or env_cfg.SHIPPING_DEFAULT_STRATEGY,
            max_cost=args.max_cost,
            max_days=args.max_days,
            provider_id=args.provider_id,
        )
        _emit(result.to_dict() if result else None)
        return 0

    if args.command == "serviceability":
        _emit(orchestrator.check_serviceability(args.pincode).to_dict())
        return 0

    if args.command == "track":
        _emit(orchestrator.track_shipment(args.tracking_number, args.provider_id).to_dict())
        return 0

    if args.command == "refresh":
        from .pipelines.tracking_refresh import TrackingRefreshProcessor

        processed_path, _ = derive_output_paths(args.input)
        logger.info("Input: %s", args.input)
        logger.info("Processed output: %s", processed_path)
        summary = TrackingRefreshProcessor(logger, orchestrator).process(args.input, processed_path)
        _emit(summary)
        return 0

    if args.command == "events":
        if orchestrator.events is None:
            raise ConfigurationError("No events file: pass --events-file or set SHIPPING_EVENTS_FILE")
        event_log = orchestrator.events
        page, total = event_log.recent(take=args.limit, provider_id=args.provider_id,
                                       status=FAILED if args.failed else None)
        out: dict[str, Any] = {"total": total, "events": [e.to_dict() for e in page]}
        if args.provider_id:
            out["stats"] = event_log.provider_stats(args.provider_id)
        _emit(out)
        return 0

    raise ValidationError(f"unknown command: {args.command}")  # pragma: no cover


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    log_file = args.log_file
    if args.command == "refresh":
        # Resolve derived paths (also validates input exists)
        try:
            _, default_log = derive_output_paths(args.input)
        except FileNotFoundError:
            print(f"error: input file not found: {args.input}", file=sys.stderr)
            return 2
        except ValueError as e:
            print(f"error: {e}", file=sys.stderr)
            return 2
        log_file = log_file or default_log

    logger = get_logger(
        "shipping_hub",
        level=args.log_level,
        console=not args.no_console,
        log_file=log_file,
    )
    logger.debug("Logger initialized.")

    # Load env (don't fail unless user asked for strict)
    try:
        env_cfg = get_app_env(strict=args.strict_env)
    except ConfigurationError as e:
        logger.error("Environment error: %s", e)
        return 2

    providers_file = args.providers_file or (Path(env_cfg.SHIPPING_PROVIDERS_FILE)
                                             if env_cfg.SHIPPING_PROVIDERS_FILE else None)
    if providers_file is None:
        logger.error("No providers file: pass --providers-file or set SHIPPING_PROVIDERS_FILE")
        return 2

    try:
        events_file = args.events_file or (Path(env_cfg.SHIPPING_EVENTS_FILE)
                                           if env_cfg.SHIPPING_EVENTS_FILE else None)
        orchestrator = build_orchestrator(providers_file, env_cfg, events_file)
        return _run(args, orchestrator, env_cfg, logger)
    except (ValidationError, ConfigurationError) as e:
        logger.error("%s", e)
        return 2
    except ShippingError as e:
        logger.error("Shipping operation failed: %s", e)
        return 1
    except Exception as e:
        logger.exception("Unexpected failure: %s", e)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
