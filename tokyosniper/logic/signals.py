"""Deal thresholds and the rule predicates built on them."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Iterable

from tokyosniper.ingest.models import FlightQuote, StayQuote

FLIGHT_INSTANT_EUR_CENTS = int(os.environ.get("FLIGHT_INSTANT_EUR_CENTS", 80000))
FLIGHT_DIGEST_EUR_CENTS = int(os.environ.get("FLIGHT_DIGEST_EUR_CENTS", 100000))
FLIGHT_DROP_PERCENT = float(os.environ.get("FLIGHT_DROP_PERCENT", 10))

STAY_INSTANT_USD_CENTS = int(os.environ.get("STAY_INSTANT_USD_CENTS", 4500))
STAY_GOOD_DEAL_USD_CENTS = int(os.environ.get("STAY_GOOD_DEAL_USD_CENTS", 6000))
STAY_GOOD_DEAL_MIN_RATING = float(os.environ.get("STAY_GOOD_DEAL_MIN_RATING", 8))


@dataclass(frozen=True, slots=True)
class FlightThresholds:
    instant_eur_cents: int = FLIGHT_INSTANT_EUR_CENTS
    drop_percent: float = FLIGHT_DROP_PERCENT


@dataclass(frozen=True, slots=True)
class StayThresholds:
    instant_usd_cents: int = STAY_INSTANT_USD_CENTS
    good_deal_usd_cents: int = STAY_GOOD_DEAL_USD_CENTS
    good_deal_min_rating: float = STAY_GOOD_DEAL_MIN_RATING


def drop_percent(previous: int | None, new: int) -> float | None:
    if not previous or previous <= 0:
        return None
    return (previous - new) / previous * 100


def is_price_drop(previous: int | None, new: int, threshold_percent: float) -> bool:
    """Inclusive drop check done in integer space so exact boundaries qualify."""
    if not previous or previous <= 0:
        return False
    return (previous - new) * 100 >= threshold_percent * previous


def is_instant_flight(quote: FlightQuote, thresholds: FlightThresholds) -> bool:
    return quote.return_date is not None and quote.prices.eur_cents < thresholds.instant_eur_cents


def is_instant_stay(quote: StayQuote, thresholds: StayThresholds) -> bool:
    return quote.prices.usd_cents < thresholds.instant_usd_cents


def has_amenity(amenities: Iterable[str] | None, term: str) -> bool:
    term = term.lower()
    return any(term in amenity.lower() for amenity in amenities or ())


def is_quality_stay(quote: StayQuote, thresholds: StayThresholds) -> bool:
    return (
        quote.prices.usd_cents < thresholds.good_deal_usd_cents
        and has_amenity(quote.amenities, "kitchen")
        and has_amenity(quote.amenities, "wifi")
        and (quote.rating or 0) >= thresholds.good_deal_min_rating
    )
