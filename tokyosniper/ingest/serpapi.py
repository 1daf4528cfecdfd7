"""SerpAPI Google Flights search."""

from __future__ import annotations

import logging
import os
from datetime import date
from typing import Any

import httpx

from tokyosniper.ingest.airlines import skyscanner_url
from tokyosniper.ingest.currency import RateProvider, normalize
from tokyosniper.ingest.models import FlightQuote, SourceResult
from tokyosniper.utils.retry import retry_async

logger = logging.getLogger(__name__)

SERPAPI_ENDPOINT = "https://serpapi.com/search.json"

SOURCE_ERRORS = (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError)


def _minutes(value: Any) -> int | None:
    try:
        return int(float(value)) if value is not None else None
    except (TypeError, ValueError, OverflowError):
        return None


class SerpApiSource:
    name = "serpapi"

    def __init__(
        self,
        rates: RateProvider,
        api_key: str | None = None,
        *,
        session: httpx.AsyncClient | None = None,
    ) -> None:
        self.rates = rates
        self.api_key = api_key if api_key is not None else os.environ.get("SERPAPI_KEY", "")
        self.session = session or httpx.AsyncClient(timeout=60.0)

    async def close(self) -> None:
        await self.session.aclose()

    async def search(
        self,
        origin: str,
        destination: str,
        departure: date,
        return_date: date | None = None,
    ) -> SourceResult[FlightQuote]:
        if not self.api_key:
            return SourceResult.failed(self.name, "No SERPAPI_KEY")
        params = {
            "engine": "google_flights",
            "departure_id": origin,
            "arrival_id": destination,
            "outbound_date": departure.isoformat(),
            "currency": "EUR",
            "hl": "en",
            "api_key": self.api_key,
            "type": "1" if return_date else "2",  # 1 = round trip, 2 = one way
        }
        if return_date:
            params["return_date"] = return_date.isoformat()
        try:
            response = await retry_async(self.session.get)(SERPAPI_ENDPOINT, params=params)
            data = response.json()
            if not isinstance(data, dict):
                raise ValueError(f"SerpAPI returned {type(data).__name__}, expected an object")
            if data.get("error"):
                return SourceResult.failed(self.name, str(data["error"]))
            response.raise_for_status()
            rates = await self.rates.snapshot()
            offers = (data.get("best_flights") or []) + (data.get("other_flights") or [])
            quotes = []
            for offer in offers:
                quote = self._to_quote(offer, origin, destination, departure, return_date, rates)
                if quote is not None:
                    quotes.append(quote)
        except SOURCE_ERRORS as exc:
            logger.warning("serpapi search %s-%s %s failed: %s", origin, destination, departure, exc)
            return SourceResult.failed(self.name, str(exc) or exc.__class__.__name__)
        return SourceResult(source=self.name, success=True, quotes=quotes)

    def _to_quote(
        self,
        offer: dict[str, Any],
        origin: str,
        destination: str,
        departure: date,
        return_date: date | None,
        rates: dict[str, float],
    ) -> FlightQuote | None:
        prices = normalize(offer.get("price"), "EUR", rates)
        if prices is None:
            return None
        legs = offer.get("flights") or []
        airlines = ", ".join(dict.fromkeys(leg["airline"] for leg in legs if leg.get("airline")))
        return FlightQuote(
            origin=origin,
            destination=destination,
            departure_date=departure,
            return_date=return_date,
            airline=airlines or None,
            prices=prices,
            source=self.name,
            stops=len(offer.get("layovers") or []),
            duration_minutes=_minutes(offer.get("total_duration")),
            booking_url=skyscanner_url(origin, destination, departure, return_date),
            raw_data=offer,
        )
