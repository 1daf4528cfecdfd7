"""Apify-hosted scrapers: Skyscanner and Google Flights for flights, Booking.com and Airbnb for stays."""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from datetime import date
from typing import Any

import httpx

from tokyosniper.ingest.airlines import skyscanner_url
from tokyosniper.ingest.currency import RateProvider, normalize
from tokyosniper.ingest.models import FlightQuote, Neighborhood, SourceResult, StayQuote
from tokyosniper.utils.dates import parse_iso_date
from tokyosniper.utils.retry import retry_async

logger = logging.getLogger(__name__)

APIFY_BASE_URL = "https://api.apify.com/v2"

# Actor IDs, easy to swap if one gets deprecated
APIFY_ACTORS = {
    "skyscanner": "canadesk/skyscanner-flights-api",
    "google_flights": "simpleapi/google-flights-scraper",
    "booking": "voyager/booking-scraper",
    "airbnb": "tri_angle/airbnb-scraper",
}


class ApifyError(RuntimeError):
    """Apify refused the run or returned something other than dataset items."""


SOURCE_ERRORS = (httpx.HTTPError, ApifyError, ValueError, KeyError, TypeError, AttributeError)


class ApifyClient:
    def __init__(
        self,
        token: str | None = None,
        *,
        session: httpx.AsyncClient | None = None,
        base_url: str = APIFY_BASE_URL,
    ) -> None:
        self.token = token if token is not None else os.environ.get("APIFY_API_TOKEN", "")
        self.session = session or httpx.AsyncClient(timeout=120.0)
        self.base_url = base_url.rstrip("/")

    async def close(self) -> None:
        await self.session.aclose()

    async def run_actor(self, actor: str, payload: dict[str, Any]) -> list[dict[str, Any]]:
        if not self.token:
            raise ApifyError("APIFY_API_TOKEN is not set")
        url = f"{self.base_url}/acts/{actor.replace('/', '~')}/run-sync-get-dataset-items"
        response = await retry_async(self.session.post)(url, params={"token": self.token}, json=payload)
        if response.status_code >= 400:
            raise ApifyError(f"Actor {actor} failed: HTTP {response.status_code} {response.text[:200]}")
        items = response.json()
        if not isinstance(items, list):
            raise ApifyError(f"Actor {actor} returned {type(items).__name__}, expected a list")
        return [item for item in items if isinstance(item, dict)]


def _error_text(exc: Exception) -> str:
    return str(exc) or exc.__class__.__name__


def _date_or(value: Any, default: date | None) -> date | None:
    if not value:
        return default
    try:
        return parse_iso_date(str(value))
    except ValueError:
        return default


def _as_float(value: Any) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _as_int(value: Any) -> int | None:
    number = _as_float(value)
    return int(number) if number is not None else None


def _string_list(value: Any) -> tuple[str, ...] | None:
    if not isinstance(value, list):
        return None
    names = []
    for entry in value:
        if isinstance(entry, dict):
            entry = entry.get("name") or entry.get("title")
        if entry:
            names.append(str(entry))
    return tuple(names)


class ApifyFlightSource:
    name = "apify"
    actor = ""

    def __init__(self, client: ApifyClient, rates: RateProvider) -> None:
        self.client = client
        self.rates = rates

    def payload(self, origin: str, destination: str, departure: date, return_date: date | None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "origin": origin,
            "destination": destination,
            "departureDate": departure.isoformat(),
            "currency": "EUR",
            "adults": 1,
        }
        if return_date:
            payload["returnDate"] = return_date.isoformat()
        return payload

    async def search(
        self,
        origin: str,
        destination: str,
        departure: date,
        return_date: date | None = None,
    ) -> SourceResult[FlightQuote]:
        try:
            items = await self.client.run_actor(self.actor, self.payload(origin, destination, departure, return_date))
            rates = await self.rates.snapshot()
            quotes = []
            for item in items:
                quote = self.to_quote(item, origin, destination, departure, return_date, rates)
                if quote is not None:
                    quotes.append(quote)
        except SOURCE_ERRORS as exc:
            logger.warning("%s search %s-%s %s failed: %s", self.name, origin, destination, departure, exc)
            return SourceResult.failed(self.name, _error_text(exc))
        return SourceResult(source=self.name, success=True, quotes=quotes)

    def to_quote(
        self,
        item: dict[str, Any],
        origin: str,
        destination: str,
        departure: date,
        return_date: date | None,
        rates: dict[str, float],
    ) -> FlightQuote | None:
        prices = normalize(item.get("price"), str(item.get("currency") or "EUR"), rates)
        if prices is None:
            return None
        airline = item.get("airline")
        if not airline and isinstance(item.get("airlines"), list):
            airline = ", ".join(str(name) for name in item["airlines"] if name)
        duration = item.get("durationMinutes") or item.get("duration")
        departure_date = _date_or(item.get("departureDate") or item.get("departure_date"), departure)
        return_date = _date_or(item.get("returnDate") or item.get("return_date"), return_date)
        return FlightQuote(
            origin=item.get("origin") or origin,
            destination=item.get("destination") or destination,
            departure_date=departure_date,
            return_date=return_date,
            airline=airline or None,
            prices=prices,
            source=self.name,
            stops=max(0, _as_int(item.get("stops")) or 0),
            duration_minutes=_as_int(duration) if isinstance(duration, (int, float)) else None,
            booking_url=item.get("url")
            or item.get("link")
            or skyscanner_url(origin, destination, departure_date, return_date),
            raw_data=item,
        )


class SkyscannerSource(ApifyFlightSource):
    name = "skyscanner"
    actor = APIFY_ACTORS["skyscanner"]

    def payload(self, origin, destination, departure, return_date):
        payload = super().payload(origin, destination, departure, return_date)
        payload["cabinClass"] = "economy"
        return payload


class GoogleFlightsApifySource(ApifyFlightSource):
    name = "google_flights_apify"
    actor = APIFY_ACTORS["google_flights"]


class ApifyStaySource(ABC):
    name = "apify"
    platform = ""
    actor = ""
    default_currency = "USD"

    def __init__(self, client: ApifyClient, rates: RateProvider) -> None:
        self.client = client
        self.rates = rates

    @abstractmethod
    def payload(self, neighborhood: Neighborhood, check_in: date, check_out: date) -> dict[str, Any]: ...

    def price_of(self, item: dict[str, Any]) -> tuple[Any, str]:
        return item.get("price"), str(item.get("currency") or self.default_currency)

    @abstractmethod
    def details(self, item: dict[str, Any]) -> dict[str, Any]: ...

    async def search(self, neighborhood: Neighborhood, check_in: date, check_out: date) -> SourceResult[StayQuote]:
        nights = max(1, (check_out - check_in).days)
        try:
            items = await self.client.run_actor(self.actor, self.payload(neighborhood, check_in, check_out))
            rates = await self.rates.snapshot()
            quotes = []
            for item in items:
                amount, currency = self.price_of(item)
                prices = normalize(amount, currency, rates)
                if prices is None:
                    continue
                quotes.append(
                    StayQuote(
                        neighborhood=neighborhood.slug,
                        platform=self.platform,
                        prices=prices,
                        total_usd_cents=prices.usd_cents * nights,
                        check_in=check_in,
                        check_out=check_out,
                        source=self.name,
                        raw_data=item,
                        **self.details(item),
                    )
                )
        except SOURCE_ERRORS as exc:
            logger.warning("%s search %s %s failed: %s", self.name, neighborhood.slug, check_in, exc)
            return SourceResult.failed(self.name, _error_text(exc))
        return SourceResult(source=self.name, success=True, quotes=quotes)


class BookingSource(ApifyStaySource):
    name = "booking"
    platform = "booking"
    actor = APIFY_ACTORS["booking"]

    def payload(self, neighborhood, check_in, check_out):
        return {
            "search": f"Tokyo {neighborhood.label}",
            "checkIn": check_in.isoformat(),
            "checkOut": check_out.isoformat(),
            "currency": "USD",
            "language": "en-us",
            "adults": 1,
            "rooms": 1,
            "minScore": "8",
            "propertyType": "Apartments",
            "sortBy": "price",
            "maxPages": 20,
            "useFilters": True,
        }

    def details(self, item):
        rating = item.get("rating")
        reviews = item.get("reviewCount")
        return {
            "name": item.get("name") or "Unknown",
            "url": item.get("url"),
            "property_type": item.get("propertyType") or item.get("type"),
            "rating": _as_float(rating if rating is not None else item.get("reviewScore")),
            "review_count": _as_int(reviews if reviews is not None else item.get("numberOfReviews")),
            "amenities": _string_list(item.get("amenities") or item.get("facilities")),
        }


class AirbnbSource(ApifyStaySource):
    name = "airbnb"
    platform = "airbnb"
    actor = APIFY_ACTORS["airbnb"]

    def payload(self, neighborhood, check_in, check_out):
        return {
            "locationQuery": f"{neighborhood.label}, Tokyo, Japan",
            "checkIn": check_in.isoformat(),
            "checkOut": check_out.isoformat(),
            "currency": "USD",
            "maxListings": 20,
        }

    def price_of(self, item):
        pricing = item.get("pricing") or {}
        amount = (pricing.get("rate") or {}).get("amount")
        if amount is None:
            amount = item.get("price")
        currency = pricing.get("currency") or item.get("currency") or self.default_currency
        return amount, str(currency)

    def details(self, item):
        return {
            "name": item.get("name") or item.get("title") or "Unknown",
            "url": item.get("url"),
            "property_type": item.get("roomType") or "entire_home",
            "rating": _as_float(item.get("rating")),
            "review_count": _as_int(item.get("reviewsCount")),
            "amenities": _string_list(item.get("amenities")),
        }

