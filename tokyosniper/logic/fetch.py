"""Fetch orchestration: enumerate searches, query sources, dedupe and persist."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Sequence

import httpx
from sqlalchemy.exc import SQLAlchemyError

from tokyosniper.db.store import QuoteStore
from tokyosniper.ingest.amadeus import AmadeusSource
from tokyosniper.ingest.apify import (
    AirbnbSource,
    ApifyClient,
    BookingSource,
    GoogleFlightsApifySource,
    SkyscannerSource,
)
from tokyosniper.ingest.currency import RateProvider
from tokyosniper.ingest.models import FlightQuote, StayQuote, TripConfig
from tokyosniper.ingest.serpapi import SerpApiSource
from tokyosniper.logic.policies import FALLBACK, FANOUT, Source, query
from tokyosniper.logic.trips import generate_stay_dates, generate_trip_pairs
from tokyosniper.utils.dates import utcnow

logger = logging.getLogger(__name__)

FLIGHT_SOURCES = os.environ.get("FLIGHT_SOURCES", "skyscanner,google_flights_apify,serpapi")
STAY_SOURCES = os.environ.get("STAY_SOURCES", "booking,airbnb")
FLIGHT_QUERY_POLICY = os.environ.get("FLIGHT_QUERY_POLICY", FALLBACK)
STAY_QUERY_POLICY = os.environ.get("STAY_QUERY_POLICY", FANOUT)


@dataclass(slots=True)
class FetchSummary:
    kind: str
    currency: str
    total_checked: int = 0
    new_records: int = 0
    errors: list[str] = field(default_factory=list)
    cheapest_cents: int | None = None
    quotes: list[Any] = field(default_factory=list)
    started_at: datetime | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "totalChecked": self.total_checked,
            "newRecords": self.new_records,
            "errors": list(self.errors),
            "cheapestCents": self.cheapest_cents,
            "currency": self.currency,
        }


def _names(value: str | Sequence[str]) -> list[str]:
    if isinstance(value, str):
        return [name.strip() for name in value.split(",") if name.strip()]
    return list(value)


def build_flight_sources(
    client: ApifyClient,
    rates: RateProvider,
    names: str | Sequence[str] = FLIGHT_SOURCES,
    *,
    session: httpx.AsyncClient | None = None,
) -> list[Source]:
    """Instantiate flight adapters in the configured priority order."""
    factories: dict[str, Callable[[], Source]] = {
        "skyscanner": lambda: SkyscannerSource(client, rates),
        "google_flights_apify": lambda: GoogleFlightsApifySource(client, rates),
        "serpapi": lambda: SerpApiSource(rates, session=session),
        "amadeus": lambda: AmadeusSource(rates, session=session),
    }
    return [_build(factories, name) for name in _names(names)]


def build_stay_sources(
    client: ApifyClient,
    rates: RateProvider,
    names: str | Sequence[str] = STAY_SOURCES,
) -> list[Source]:
    factories: dict[str, Callable[[], Source]] = {
        "booking": lambda: BookingSource(client, rates),
        "airbnb": lambda: AirbnbSource(client, rates),
    }
    return [_build(factories, name) for name in _names(names)]


def _build(factories: dict[str, Callable[[], Source]], name: str) -> Source:
    try:
        return factories[name]()
    except KeyError:
        raise ValueError(f"Unknown source: {name}") from None


def flight_key(quote: FlightQuote) -> tuple:
    return (quote.airline, quote.departure_date, quote.stops, quote.prices.eur_cents)


def stay_key(quote: StayQuote) -> tuple:
    return (quote.name, quote.platform, quote.neighborhood)


def dedupe(quotes: Sequence[Any], key: Callable[[Any], tuple]) -> list[Any]:
    """Keep the first quote for every key, preserving order."""
    seen: set[tuple] = set()
    unique = []
    for quote in quotes:
        identity = key(quote)
        if identity in seen:
            continue
        seen.add(identity)
        unique.append(quote)
    return unique


class FlightFetcher:
    kind = "flight"

    def __init__(
        self,
        store: QuoteStore,
        sources: Sequence[Source],
        trip: TripConfig,
        *,
        policy: str = FLIGHT_QUERY_POLICY,
    ) -> None:
        self.store = store
        self.sources = list(sources)
        self.trip = trip
        self.policy = policy

    async def run(self, policy: str | None = None) -> FetchSummary:
        policy = policy or self.policy
        summary = FetchSummary(kind=self.kind, currency="EUR", started_at=utcnow())
        pairs = generate_trip_pairs(self.trip.windows, self.trip.departure_days, self.trip.return_offsets)
        candidates: list[FlightQuote] = []

        for route in self.trip.routes:
            for pair in pairs:
                quotes, errors = await query(policy, self.sources, route.origin, route.destination, pair.start, pair.end)
                candidates.extend(quotes)
                summary.errors.extend(f"{source} {route.label} {pair.label}: {error}" for source, error in errors)

        summary.total_checked = len(candidates)
        unique = dedupe(candidates, flight_key)
        logger.info("Flights: %s candidates, %s unique, %s source errors", len(candidates), len(unique), len(summary.errors))

        loop = asyncio.get_running_loop()
        inserted, persist_errors = await loop.run_in_executor(None, self._persist, unique)
        summary.new_records = inserted
        summary.errors.extend(persist_errors)
        summary.quotes = unique
        summary.cheapest_cents = min((q.prices.eur_cents for q in unique), default=None)
        return summary

    def _persist(self, quotes: list[FlightQuote]) -> tuple[int, list[str]]:
        if not quotes:
            return 0, []
        try:
            return self.store.insert_flights(quotes), []
        except SQLAlchemyError as exc:
            logger.warning("Batch insert of %s flights failed, retrying one by one: %s", len(quotes), exc)
        inserted = 0
        errors: list[str] = []
        for quote in quotes:
            try:
                self.store.insert_flight(quote)
            except SQLAlchemyError as exc:
                errors.append(f"DB insert {quote.origin}-{quote.destination} {quote.departure_date}: {exc}")
                continue
            inserted += 1
        return inserted, errors


class StayFetcher:
    kind = "stay"

    def __init__(
        self,
        store: QuoteStore,
        sources: Sequence[Source],
        trip: TripConfig,
        *,
        policy: str = STAY_QUERY_POLICY,
    ) -> None:
        self.store = store
        self.sources = list(sources)
        self.trip = trip
        self.policy = policy

    async def run(self, policy: str | None = None) -> FetchSummary:
        policy = policy or self.policy
        summary = FetchSummary(kind=self.kind, currency="USD", started_at=utcnow())
        stays = generate_stay_dates(self.trip.windows, self.trip.departure_days, self.trip.stay_nights)
        candidates: list[StayQuote] = []

        for neighborhood in self.trip.neighborhoods:
            for pair in stays:
                quotes, errors = await query(policy, self.sources, neighborhood, pair.start, pair.end)
                candidates.extend(quotes)
                summary.errors.extend(
                    f"{source} {neighborhood.label} {pair.label}: {error}" for source, error in errors
                )

        summary.total_checked = len(candidates)
        unique = dedupe(candidates, stay_key)
        logger.info("Stays: %s candidates, %s unique, %s source errors", len(candidates), len(unique), len(summary.errors))

        loop = asyncio.get_running_loop()
        inserted, persist_errors = await loop.run_in_executor(None, self._persist, unique)
        summary.new_records = inserted
        summary.errors.extend(persist_errors)
        summary.quotes = unique
        summary.cheapest_cents = min((q.prices.usd_cents for q in unique), default=None)
        return summary

    def _persist(self, quotes: list[StayQuote]) -> tuple[int, list[str]]:
        inserted = 0
        errors: list[str] = []
        for quote in quotes:
            try:
                self.store.insert_stay_quote(quote)
            except SQLAlchemyError as exc:
                errors.append(f"DB insert {quote.name}: {exc}")
                continue
            inserted += 1
        return inserted, errors
