"""Ingestion data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Generic, Literal, TypeVar

from tokyosniper.utils.dates import utcnow

Currency = Literal["EUR", "USD", "RSD", "JPY"]
CURRENCIES: tuple[str, ...] = ("EUR", "USD", "RSD", "JPY")

Kind = Literal["flight", "stay"]
KINDS: tuple[str, ...] = ("flight", "stay")


@dataclass(frozen=True, slots=True)
class Prices:
    eur_cents: int
    usd_cents: int
    rsd_cents: int
    jpy_cents: int

    def in_currency(self, currency: str) -> int:
        return {
            "EUR": self.eur_cents,
            "USD": self.usd_cents,
            "RSD": self.rsd_cents,
            "JPY": self.jpy_cents,
        }[currency.upper()]


@dataclass(frozen=True, slots=True)
class Route:
    origin: str
    destination: str
    label: str


@dataclass(frozen=True, slots=True)
class Neighborhood:
    slug: str
    label: str


@dataclass(frozen=True, slots=True)
class TripWindow:
    label: str
    month: str  # YYYY-MM


@dataclass(frozen=True, slots=True)
class DatePair:
    start: date
    end: date
    label: str


@dataclass(slots=True)
class TripConfig:
    routes: list[Route]
    neighborhoods: list[Neighborhood]
    windows: list[TripWindow]
    departure_days: list[int]
    return_offsets: list[int]
    stay_nights: int


@dataclass(frozen=True, slots=True)
class FlightQuote:
    origin: str
    destination: str
    departure_date: date
    prices: Prices
    source: str
    return_date: date | None = None
    airline: str | None = None
    stops: int = 0
    duration_minutes: int | None = None
    booking_url: str | None = None
    raw_data: Any = None
    observed_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class StayQuote:
    name: str
    neighborhood: str
    platform: str
    prices: Prices
    check_in: date
    check_out: date
    source: str
    url: str | None = None
    property_type: str | None = None
    rating: float | None = None
    review_count: int | None = None
    amenities: tuple[str, ...] | None = None
    total_usd_cents: int | None = None
    raw_data: Any = None
    observed_at: datetime = field(default_factory=utcnow)


Q = TypeVar("Q", FlightQuote, StayQuote)


@dataclass(slots=True)
class SourceResult(Generic[Q]):
    source: str
    success: bool
    quotes: list[Q] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def failed(cls, source: str, error: str) -> "SourceResult[Q]":
        return cls(source=source, success=False, error=error)
