import pytest

from tokyosniper.notify.commands import handle_command, parse_command, reply_for
from tokyosniper.utils.rate_limit import mark_completed

from conftest import FakeNotifier, make_flight, make_stay


@pytest.mark.parametrize(
    "text, expected",
    [
        ("/cheapest", "/cheapest"),
        ("  /Flights@tokyo_sniper_bot now", "/flights"),
        ("/stays extra words", "/stays"),
        ("hello there", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_command(text, expected):
    assert parse_command(text) == expected


@pytest.mark.asyncio
async def test_cheapest_with_no_data(store, cache):
    reply = await reply_for("/cheapest", store, cache)
    assert "No flight data yet" in reply
    assert "No stay data yet" in reply


@pytest.mark.asyncio
async def test_cheapest_reports_best_flight_and_stay(store, cache, redis_client):
    store.insert_flight(make_flight(910))
    store.insert_flight(make_flight(745, destination="HND", airline="ANA"))
    store.insert_stay_quote(make_stay(52, name="Kuramae Loft"))

    reply = await reply_for("/cheapest", store, cache)

    assert "BUD→HND" in reply
    assert "€745.00 | ANA" in reply
    assert "Kuramae Loft" in reply
    assert "$52.00/night" in reply
    assert "flights:cheapest" in redis_client.data
    assert "stays:cheapest:1" in redis_client.data


@pytest.mark.asyncio
async def test_cached_answer_is_reused(store, cache):
    store.insert_flight(make_flight(910))
    await reply_for("/cheapest", store, cache)
    store.insert_flight(make_flight(500))
    reply = await reply_for("/cheapest", store, cache)
    assert "€910.00" in reply


@pytest.mark.asyncio
async def test_flights_lists_each_destination(store, cache):
    store.insert_flight(make_flight(910))
    store.insert_flight(make_flight(880))
    store.insert_flight(make_flight(745, destination="HND", airline=None, stops=0))

    reply = await reply_for("/flights", store, cache)

    assert "BUD→NRT: €880.00 (Turkish Airlines)" in reply
    assert "BUD→HND: €745.00\n" in reply
    assert "0 stops" in reply


@pytest.mark.asyncio
async def test_flights_without_data(store):
    assert await reply_for("/flights", store, None) == "No flight data yet."


@pytest.mark.asyncio
async def test_stays_top_five(store, cache):
    for i in range(7):
        store.insert_stay_quote(make_stay(50 + i, name=f"Flat {i}"))
    reply = await reply_for("/stays", store, cache)
    assert "Top 5 Cheapest Stays" in reply
    assert "Flat 4" in reply
    assert "Flat 5" not in reply


@pytest.mark.asyncio
async def test_status_shows_last_completed_runs(store, cache):
    reply = await reply_for("/status", store, cache)
    assert "Last flight check: Never" in reply
    assert "Last stay check: Never" in reply

    await mark_completed(cache, "flight", clock=lambda: 1772323200.0)
    reply = await reply_for("/status", store, cache)
    assert "Last flight check: 2026-03-01T00:00:00Z" in reply
    assert "every 6h" in reply
    assert "every 12h" in reply


@pytest.mark.asyncio
async def test_unknown_command_gets_help(store, cache):
    reply = await reply_for("/start", store, cache)
    assert reply == "Available commands: /cheapest /flights /stays /status"


@pytest.mark.asyncio
async def test_handle_command_sends_reply(store, cache, notifier):
    reply = await handle_command("/status@tokyo_sniper_bot", store=store, cache=cache, notifier=notifier)
    assert notifier.messages == [reply]


@pytest.mark.asyncio
async def test_handle_command_ignores_plain_text(store, cache, notifier):
    assert await handle_command("any deals today?", store=store, cache=cache, notifier=notifier) is None
    assert notifier.messages == []


@pytest.mark.asyncio
async def test_undelivered_reply_is_still_returned(store, cache):
    notifier = FakeNotifier(ok=False)
    reply = await handle_command("/help", store=store, cache=cache, notifier=notifier)
    assert reply.startswith("Available commands")
