"""Exchange rates and price normalization into the four tracked currencies."""

from __future__ import annotations

import logging
import math
from typing import Any, Mapping

import httpx

from tokyosniper.ingest.models import Prices
from tokyosniper.utils.cache import Cache
from tokyosniper.utils.retry import retry_async

logger = logging.getLogger(__name__)

RATES_ENDPOINT = "https://api.frankfurter.dev/v1/latest"
RATES_CACHE_KEY = "currency:rates"
RATES_TTL = 3600 * 6

# EUR-based. Frankfurter does not publish RSD, so that rate always comes from here.
FALLBACK_RATES: dict[str, float] = {
    "EUR": 1.0,
    "USD": 1.08,
    "RSD": 117.5,
    "JPY": 163.0,
}

CURRENCY_SYMBOLS = {"EUR": "€", "USD": "$", "RSD": "RSD ", "JPY": "¥"}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def to_minor_units(amount: Any) -> int | None:
    """Convert a major-unit amount to minor units, or ``None`` when unusable."""
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return round_half_up(value * 100)


def normalize(amount: Any, currency: str, rates: Mapping[str, float]) -> Prices | None:
    """Express ``amount`` (major units of ``currency``) in all tracked currencies.

    Returns ``None`` when the item carries no usable price: a non-positive,
    non-finite or unparsable amount, or a currency the rate table lacks.
    The EUR amount is computed first and every other currency is derived
    from it independently; a table without JPY yields ``jpy_cents=0``.
    """
    minor = to_minor_units(amount)
    if minor is None:
        return None
    code = (currency or "EUR").upper()
    rate = rates.get(code)
    if not rate or rate <= 0:
        logger.warning("No exchange rate for %s; dropping price", code)
        return None
    eur_cents = round_half_up(minor / rate)
    jpy_rate = rates.get("JPY")
    return Prices(
        eur_cents=eur_cents,
        usd_cents=round_half_up(eur_cents * rates["USD"]),
        rsd_cents=round_half_up(eur_cents * rates["RSD"]),
        jpy_cents=round_half_up(eur_cents * jpy_rate) if jpy_rate else 0,
    )


def format_price(cents: int, currency: str) -> str:
    amount = cents / 100
    symbol = CURRENCY_SYMBOLS.get(currency, f"{currency} ")
    if currency == "JPY":
        return f"{symbol}{round_half_up(amount):,}"
    return f"{symbol}{amount:.2f}"


class RateProvider:
    """EUR-based rate table: cache, then Frankfurter, then the fallback table."""

    def __init__(
        self,
        cache: Cache | None = None,
        *,
        session: httpx.AsyncClient | None = None,
    ) -> None:
        self.cache = cache
        self.session = session or httpx.AsyncClient(timeout=10.0)

    async def close(self) -> None:
        await self.session.aclose()

    async def snapshot(self) -> dict[str, float]:
        if self.cache is not None:
            cached_rates = await self.cache.get(RATES_CACHE_KEY)
            if cached_rates:
                return {code: float(rate) for code, rate in cached_rates.items()}

        try:
            rates = await self._fetch()
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Exchange rate lookup failed, using fallback table: %s", exc)
            return dict(FALLBACK_RATES)

        if self.cache is not None:
            await self.cache.set(RATES_CACHE_KEY, rates, ttl=RATES_TTL)
        return rates

    async def _fetch(self) -> dict[str, float]:
        params = {"base": "EUR", "symbols": "USD,JPY"}
        response = await retry_async(self.session.get)(RATES_ENDPOINT, params=params)
        response.raise_for_status()
        data = response.json()["rates"]
        return {
            "EUR": 1.0,
            "USD": float(data["USD"]),
            "JPY": float(data["JPY"]),
            "RSD": FALLBACK_RATES["RSD"],
        }
