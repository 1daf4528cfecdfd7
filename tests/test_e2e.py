import json

import httpx
import pytest
import respx
from sqlalchemy import text

from tokyosniper.ingest.currency import RATES_ENDPOINT
from tokyosniper.jobs import pipeline
from tokyosniper.notify.telegram import TelegramNotifier

from conftest import load_fixture

APIFY = "https://api.apify.com/v2/acts"
SEND_MESSAGE = "https://api.telegram.org/botbot-token/sendMessage"


def mock_common(router):
    router.get(RATES_ENDPOINT).mock(return_value=httpx.Response(200, text=load_fixture("frankfurter/latest.json")))
    return router.post(SEND_MESSAGE).mock(
        return_value=httpx.Response(200, text=load_fixture("telegram/send_message_ok.json"))
    )


@pytest.mark.asyncio
async def test_flight_check_e2e(engine, cache, redis_client, small_trip, monkeypatch):
    monkeypatch.setenv("APIFY_API_TOKEN", "apify-token")
    notifier = TelegramNotifier(token="bot-token", chat_id="12345", provider="telegram")

    async with respx.mock(assert_all_called=True) as router:
        telegram = mock_common(router)
        skyscanner = router.post(f"{APIFY}/canadesk~skyscanner-flights-api/run-sync-get-dataset-items").mock(
            return_value=httpx.Response(201, text=load_fixture("apify/skyscanner.json"))
        )

        result = await pipeline.run_check(
            "flight", engine=engine, cache=cache, notifier=notifier, trip=small_trip, policy="fallback"
        )

    assert skyscanner.call_count == 1
    assert result["totalChecked"] == 3
    assert result["newRecords"] == 2
    assert result["cheapestCents"] == 74250
    assert result["alertsSent"] == 1
    assert result["errors"] == []

    sent = json.loads(telegram.calls.last.request.content)
    assert sent["chat_id"] == "12345"
    assert sent["parse_mode"] == "HTML"
    assert "FLIGHT DEALS FOUND (1)" in sent["text"]
    assert "€742.50" in sent["text"]

    with engine.connect() as conn:
        prices = conn.execute(text("SELECT price_eur_cents FROM flight_quotes ORDER BY price_eur_cents")).scalars().all()
        history = conn.execute(text("SELECT currency, price_cents FROM alert_history")).all()
    # 1050 USD at the fetched 1.09 rate
    assert prices == [74250, 96330]
    assert [tuple(row) for row in history] == [("EUR", 74250)]
    assert "currency:rates" in redis_client.data
    assert "status:flights:lastCompleted" in redis_client.data


@pytest.mark.asyncio
async def test_stay_check_e2e(engine, cache, small_trip, monkeypatch):
    monkeypatch.setenv("APIFY_API_TOKEN", "apify-token")
    notifier = TelegramNotifier(token="bot-token", chat_id="12345", provider="telegram")

    async with respx.mock(assert_all_called=True) as router:
        telegram = mock_common(router)
        router.post(f"{APIFY}/voyager~booking-scraper/run-sync-get-dataset-items").mock(
            return_value=httpx.Response(201, text=load_fixture("apify/booking.json"))
        )
        router.post(f"{APIFY}/tri_angle~airbnb-scraper/run-sync-get-dataset-items").mock(
            return_value=httpx.Response(201, text=load_fixture("apify/airbnb.json"))
        )

        result = await pipeline.run_check("stay", engine=engine, cache=cache, notifier=notifier, trip=small_trip)

    assert result["kind"] == "stay"
    assert result["currency"] == "USD"
    assert result["newRecords"] == 3
    assert result["cheapestCents"] == 4200
    assert result["alertsSent"] == 1

    text_sent = json.loads(telegram.calls.last.request.content)["text"]
    assert "STAY DEALS FOUND (2)" in text_sent
    assert "under $45/night" in text_sent
    assert "great deal (kitchen+wifi+8★)" in text_sent
    assert "Koenji" not in text_sent


@pytest.mark.asyncio
async def test_telegram_failure_is_reported(engine, cache, small_trip, monkeypatch):
    monkeypatch.setenv("APIFY_API_TOKEN", "apify-token")
    notifier = TelegramNotifier(token="bot-token", chat_id="12345", provider="telegram")

    async with respx.mock(assert_all_called=True) as router:
        router.get(RATES_ENDPOINT).mock(return_value=httpx.Response(200, text=load_fixture("frankfurter/latest.json")))
        router.post(SEND_MESSAGE).mock(return_value=httpx.Response(400, json={"ok": False, "description": "chat not found"}))
        router.post(f"{APIFY}/canadesk~skyscanner-flights-api/run-sync-get-dataset-items").mock(
            return_value=httpx.Response(201, text=load_fixture("apify/skyscanner.json"))
        )

        result = await pipeline.run_check(
            "flight", engine=engine, cache=cache, notifier=notifier, trip=small_trip, policy="fallback"
        )

    assert result["alertsSent"] == 0
    assert result["errors"] == ["Failed to send consolidated flight alert"]
    with engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM alert_history")).scalar() == 0
