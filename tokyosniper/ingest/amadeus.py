"""Amadeus Self-Service flight offers search."""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from typing import Any

import httpx

from tokyosniper.ingest.airlines import airline_name, parse_iso8601_duration, skyscanner_url
from tokyosniper.ingest.currency import RateProvider, normalize
from tokyosniper.ingest.models import FlightQuote, SourceResult
from tokyosniper.utils.dates import parse_iso_date
from tokyosniper.utils.retry import retry_async

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://test.api.amadeus.com"
TOKEN_SAFETY_MARGIN = 60


class AmadeusAuthError(RuntimeError):
    """Credentials missing or rejected by the OAuth2 endpoint."""


SOURCE_ERRORS = (httpx.HTTPError, AmadeusAuthError, ValueError, KeyError, TypeError, AttributeError)


@dataclass(slots=True)
class _CachedToken:
    value: str
    expires_at: float


class TokenCache:
    """Bearer tokens keyed by source name; an entry is only ever replaced once it expires."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.clock = clock
        self._tokens: dict[str, _CachedToken] = {}

    def get(self, key: str) -> str | None:
        entry = self._tokens.get(key)
        if entry is None or self.clock() >= entry.expires_at:
            return None
        return entry.value

    def set(self, key: str, token: str, ttl: float) -> None:
        self._tokens[key] = _CachedToken(value=token, expires_at=self.clock() + ttl)


# Shared by every AmadeusSource in the process unless a test injects its own.
DEFAULT_TOKEN_CACHE = TokenCache()


class AmadeusSource:
    name = "amadeus"

    def __init__(
        self,
        rates: RateProvider,
        *,
        api_key: str | None = None,
        api_secret: str | None = None,
        base_url: str | None = None,
        session: httpx.AsyncClient | None = None,
        tokens: TokenCache | None = None,
    ) -> None:
        self.rates = rates
        self.api_key = api_key if api_key is not None else os.environ.get("AMADEUS_API_KEY", "")
        self.api_secret = api_secret if api_secret is not None else os.environ.get("AMADEUS_API_SECRET", "")
        self.base_url = (base_url or os.environ.get("AMADEUS_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.session = session or httpx.AsyncClient(timeout=30.0)
        self.tokens = tokens or DEFAULT_TOKEN_CACHE

    async def close(self) -> None:
        await self.session.aclose()

    async def access_token(self) -> str:
        token = self.tokens.get(self.name)
        if token:
            return token
        if not self.api_key or not self.api_secret:
            raise AmadeusAuthError("AMADEUS_API_KEY and AMADEUS_API_SECRET are required")
        response = await retry_async(self.session.post)(
            f"{self.base_url}/v1/security/oauth2/token",
            data={
                "grant_type": "client_credentials",
                "client_id": self.api_key,
                "client_secret": self.api_secret,
            },
        )
        if response.status_code != 200:
            raise AmadeusAuthError(f"Amadeus auth failed: {response.status_code} {response.text[:200]}")
        data = response.json()
        token = data["access_token"]
        self.tokens.set(self.name, token, ttl=float(data["expires_in"]) - TOKEN_SAFETY_MARGIN)
        return token

    async def search(
        self,
        origin: str,
        destination: str,
        departure: date,
        return_date: date | None = None,
    ) -> SourceResult[FlightQuote]:
        try:
            token = await self.access_token()
            params = {
                "originLocationCode": origin,
                "destinationLocationCode": destination,
                "departureDate": departure.isoformat(),
                "adults": "1",
                "currencyCode": "EUR",
                "max": "50",
            }
            if return_date:
                params["returnDate"] = return_date.isoformat()
            response = await retry_async(self.session.get)(
                f"{self.base_url}/v2/shopping/flight-offers",
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
            if response.status_code != 200:
                return SourceResult.failed(
                    self.name, f"Amadeus API error: {response.status_code} {response.text[:200]}"
                )
            data = response.json()
            if not isinstance(data, dict):
                raise ValueError(f"Amadeus returned {type(data).__name__}, expected an object")
            if data.get("errors"):
                detail = ", ".join(str(err.get("detail")) for err in data["errors"])
                return SourceResult.failed(self.name, detail)
            offers = data.get("data") or []
            if not offers:
                return SourceResult(source=self.name, success=True)
            rates = await self.rates.snapshot()
            quotes = []
            for offer in offers:
                quote = self._to_quote(offer, origin, destination, departure, return_date, rates)
                if quote is not None:
                    quotes.append(quote)
        except SOURCE_ERRORS as exc:
            logger.warning("amadeus search %s-%s %s failed: %s", origin, destination, departure, exc)
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
        price = offer.get("price") or {}
        prices = normalize(price.get("total"), str(price.get("currency") or "EUR"), rates)
        itineraries = offer.get("itineraries") or []
        if prices is None or not itineraries:
            return None
        outbound = itineraries[0]
        segments = outbound.get("segments") or []
        first = segments[0] if segments else {}
        departed_at = (first.get("departure") or {}).get("at")
        departure_date = parse_iso_date(departed_at) if departed_at else departure
        if len(itineraries) > 1:
            inbound_segments = itineraries[1].get("segments") or [{}]
            returned_at = (inbound_segments[0].get("departure") or {}).get("at")
            if returned_at:
                return_date = parse_iso_date(returned_at)
        return FlightQuote(
            origin=origin,
            destination=destination,
            departure_date=departure_date,
            return_date=return_date,
            airline=airline_name(first.get("carrierCode")),
            prices=prices,
            source=self.name,
            stops=max(0, len(segments) - 1),
            duration_minutes=parse_iso8601_duration(outbound.get("duration")),
            booking_url=skyscanner_url(origin, destination, departure_date, return_date),
            raw_data=offer,
        )
