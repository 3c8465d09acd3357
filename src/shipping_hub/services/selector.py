from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

from shipping_hub.errors import ValidationError
from shipping_hub.models import SelectionResult, ShippingRate

logger = logging.getLogger("shipping_hub.services.selector")

CHEAPEST = "cheapest"
FASTEST = "fastest"
BALANCED = "balanced"
PRIORITY = "priority"
SPECIFIC = "specific"

STRATEGIES: tuple[str, ...] = (CHEAPEST, FASTEST, BALANCED, PRIORITY, SPECIFIC)

DEFAULT_COST_WEIGHT = 0.5
DEFAULT_SPEED_WEIGHT = 0.5
# scores are rounded so float noise cannot decide a tie
_SCORE_DIGITS = 9


def tie_break_key(rate: ShippingRate) -> tuple:
    """Lower provider priority first, then courier name (case-insensitive), then stable ids."""
    return (
        rate.provider_priority,
        rate.courier_name.casefold(),
        rate.provider_code,
        rate.courier_code or "",
        rate.provider_id,
    )


def sort_rates(rates: Iterable[ShippingRate]) -> list[ShippingRate]:
    """Deterministic presentation order: cheapest, then fastest, then tie-break."""
    return sorted(rates, key=lambda r: (r.rate, r.estimated_days, *tie_break_key(r)))


def balanced_scores(
    rates: Sequence[ShippingRate],
    cost_weight: float = DEFAULT_COST_WEIGHT,
    speed_weight: float = DEFAULT_SPEED_WEIGHT,
) -> list[float]:
    """
    score = cost_weight * rate / max_rate + speed_weight * days / max_days

    Lower is better. A zero maximum (all free, or all same-day) contributes 0
    for that term.
    """
    max_rate = max((r.rate for r in rates), default=0.0)
    max_days = max((r.estimated_days for r in rates), default=0)
    out: list[float] = []
    for r in rates:
        cost = r.rate / max_rate if max_rate > 0 else 0.0
        days = r.estimated_days / max_days if max_days > 0 else 0.0
        out.append(round(cost * cost_weight + days * speed_weight, _SCORE_DIGITS))
    return out


def best_rates_by_delivery_days(rates: Iterable[ShippingRate]) -> list[ShippingRate]:
    """Cheapest available rate for each delivery-day bucket, fastest bucket first."""
    winners: dict[int, ShippingRate] = {}
    for rate in rates:
        if not rate.available:
            continue
        current = winners.get(rate.estimated_days)
        if current is None or (rate.rate, *tie_break_key(rate)) < (current.rate, *tie_break_key(current)):
            winners[rate.estimated_days] = rate
    return [winners[d] for d in sorted(winners)]


def recommend_strategy(rates: Sequence[ShippingRate]) -> str:
    """Suggest a strategy from the spread of prices and delivery times."""
    usable = [r for r in rates if r.available]
    if len(usable) < 2:
        return PRIORITY

    prices = [r.rate for r in usable]
    avg = sum(prices) / len(prices)
    variation = (max(prices) - min(prices)) / avg if avg > 0 else 0.0
    days_range = max(r.estimated_days for r in usable) - min(r.estimated_days for r in usable)

    if variation > 0.2 and days_range > 1:
        return BALANCED
    if variation < 0.1:
        return FASTEST
    return CHEAPEST


class RateSelector:
    """Applies one of STRATEGIES to a set of collected rates.

    Unavailable rates are always filtered out first, along with any above
    `max_cost` or slower than `max_days`.
    """

    def __init__(self, cost_weight: float = DEFAULT_COST_WEIGHT, speed_weight: float = DEFAULT_SPEED_WEIGHT) -> None:
        self.cost_weight = cost_weight
        self.speed_weight = speed_weight

    def filter(
        self,
        rates: Iterable[ShippingRate],
        *,
        max_cost: Optional[float] = None,
        max_days: Optional[int] = None,
    ) -> tuple[list[ShippingRate], list[tuple[ShippingRate, str]]]:
        valid: list[ShippingRate] = []
        rejected: list[tuple[ShippingRate, str]] = []
        for rate in rates:
            if not rate.available:
                rejected.append((rate, "Not available"))
            elif max_cost is not None and rate.rate > max_cost:
                rejected.append((rate, f"Exceeds max cost of {max_cost}"))
            elif max_days is not None and rate.estimated_days > max_days:
                rejected.append((rate, f"Exceeds max delivery time of {max_days} days"))
            else:
                valid.append(rate)
        return valid, rejected

    def select(
        self,
        rates: Sequence[ShippingRate],
        strategy: str = BALANCED,
        *,
        max_cost: Optional[float] = None,
        max_days: Optional[int] = None,
        preferred_providers: Optional[Sequence[str]] = None,
        provider_id: Optional[str] = None,
    ) -> Optional[SelectionResult]:
        strategy = (strategy or BALANCED).strip().lower()
        if strategy not in STRATEGIES:
            raise ValidationError(f"Unknown rate selection strategy '{strategy}'; expected one of {', '.join(STRATEGIES)}")

        valid, rejected = self.filter(rates, max_cost=max_cost, max_days=max_days)
        if not valid:
            return None

        selected: Optional[ShippingRate] = None
        reason = ""

        if strategy == CHEAPEST:
            selected = min(valid, key=lambda r: (r.rate, *tie_break_key(r)))
            reason = f"Selected cheapest option at INR {selected.rate:.2f}"

        elif strategy == FASTEST:
            selected = min(valid, key=lambda r: (r.estimated_days, *tie_break_key(r)))
            reason = f"Selected fastest option with {selected.estimated_days} days delivery"

        elif strategy == BALANCED:
            scores = balanced_scores(valid, self.cost_weight, self.speed_weight)
            _, selected = min(zip(scores, valid), key=lambda sr: (sr[0], *tie_break_key(sr[1])))
            reason = "Selected based on best cost-time balance"

        elif strategy == PRIORITY:
            for pid in preferred_providers or ():
                mine = [r for r in valid if r.provider_id == pid]
                if mine:
                    selected = min(mine, key=lambda r: (r.rate, *tie_break_key(r)))
                    break
            if selected is None:
                selected = min(valid, key=lambda r: (r.provider_priority, r.rate, *tie_break_key(r)))
            reason = f"Selected based on provider priority ({selected.provider_name})"

        elif strategy == SPECIFIC:
            mine = [r for r in valid if provider_id and r.provider_id == provider_id]
            if not mine:
                logger.info("No available rate from requested provider %s", provider_id)
                return None
            selected = min(mine, key=lambda r: (r.rate, *tie_break_key(r)))
            reason = f"Selected specific provider: {provider_id}"

        alternatives = tuple(r for r in sort_rates(valid) if r is not selected)
        return SelectionResult(
            selected_rate=selected,
            reason=reason,
            strategy=strategy,
            alternative_rates=alternatives,
            metadata={
                "totalRatesEvaluated": len(rates),
                "ratesFiltered": len(rejected),
                "filterReasons": [{"courierName": r.courier_name, "reason": why} for r, why in rejected],
            },
        )
