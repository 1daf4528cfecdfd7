import math

import httpx
import pytest
import respx

from tokyosniper.ingest.currency import (
    FALLBACK_RATES,
    RATES_CACHE_KEY,
    RATES_ENDPOINT,
    RATES_TTL,
    RateProvider,
    format_price,
    normalize,
    round_half_up,
)
from tokyosniper.ingest.models import Prices

from conftest import load_fixture


def test_normalize_eur_amount():
    prices = normalize(742.5, "EUR", FALLBACK_RATES)
    assert prices == Prices(eur_cents=74250, usd_cents=80190, rsd_cents=8724375, jpy_cents=12102750)


def test_normalize_converts_through_eur():
    prices = normalize(1050, "usd", FALLBACK_RATES)
    assert prices.eur_cents == 97222
    assert prices.usd_cents == 105000
    assert prices.rsd_cents == round_half_up(97222 * 117.5)


@pytest.mark.parametrize("amount", [0, -5, None, "abc", math.nan, math.inf, ""])
def test_normalize_rejects_unusable_amounts(amount):
    assert normalize(amount, "EUR", FALLBACK_RATES) is None


def test_normalize_accepts_numeric_strings():
    assert normalize("701.30", "EUR", FALLBACK_RATES).eur_cents == 70130


def test_normalize_unknown_currency_is_dropped():
    assert normalize(100, "XYZ", FALLBACK_RATES) is None


def test_normalize_without_jpy_rate_yields_zero_yen():
    rates = {"EUR": 1.0, "USD": 1.08, "RSD": 117.5}
    prices = normalize(100, "EUR", rates)
    assert prices.jpy_cents == 0
    assert prices.eur_cents == 10000


def test_normalize_is_deterministic():
    assert normalize(123.45, "RSD", FALLBACK_RATES) == normalize(123.45, "RSD", FALLBACK_RATES)


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(2.4999) == 2


def test_format_price():
    assert format_price(75000, "EUR") == "€750.00"
    assert format_price(5500, "USD") == "$55.00"
    assert format_price(881250, "RSD") == "RSD 8812.50"
    assert format_price(1222500, "JPY") == "¥12,225"


@pytest.mark.asyncio
async def test_rate_provider_fetches_and_caches(cache, redis_client):
    async with respx.mock(assert_all_called=True) as router:
        route = router.get(RATES_ENDPOINT).mock(return_value=httpx.Response(200, text=load_fixture("frankfurter/latest.json")))
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            provider = RateProvider(cache, session=session)
            rates = await provider.snapshot()
            again = await provider.snapshot()
    assert rates == {"EUR": 1.0, "USD": 1.09, "JPY": 164.2, "RSD": 117.5}
    assert again == rates
    assert route.call_count == 1
    assert redis_client.ttls[RATES_CACHE_KEY] == RATES_TTL


@pytest.mark.asyncio
async def test_rate_provider_falls_back_when_upstream_fails(cache, redis_client):
    async with respx.mock(assert_all_called=True) as router:
        router.get(RATES_ENDPOINT).mock(return_value=httpx.Response(503, text="unavailable"))
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            rates = await RateProvider(cache, session=session).snapshot()
    assert rates == FALLBACK_RATES
    assert RATES_CACHE_KEY not in redis_client.data


@pytest.mark.asyncio
async def test_rate_provider_survives_cache_outage(broken_cache):
    async with respx.mock(assert_all_called=True) as router:
        router.get(RATES_ENDPOINT).mock(return_value=httpx.Response(200, text=load_fixture("frankfurter/latest.json")))
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            rates = await RateProvider(broken_cache, session=session).snapshot()
    assert rates["USD"] == 1.09
