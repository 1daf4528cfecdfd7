"""Telegram bot commands."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Sequence

from tokyosniper.db.store import QuoteStore
from tokyosniper.logic.alerts import Notifier
from tokyosniper.notify.render import render_message
from tokyosniper.utils.cache import Cache, cached
from tokyosniper.utils.dates import iso_timestamp
from tokyosniper.utils.rate_limit import last_completed

logger = logging.getLogger(__name__)

COMMANDS = ("/cheapest", "/flights", "/stays", "/status")
DESTINATIONS = ("NRT", "HND")
QUERY_TTL = 300
FLIGHT_EVERY_HOURS = 6
STAY_EVERY_HOURS = 12


async def _query(cache: Cache | None, key: str, fn: Callable[..., Any], *args: Any) -> Any:
    loop = asyncio.get_running_loop()

    async def load() -> Any:
        return await loop.run_in_executor(None, fn, *args)

    return await cached(cache, key, QUERY_TTL, load)


async def _timestamp(cache: Cache | None, kind: str) -> str | None:
    if cache is None:
        return None
    value = await last_completed(cache, kind)
    return iso_timestamp(value) if value else None


async def reply_for(
    command: str,
    store: QuoteStore,
    cache: Cache | None,
    destinations: Sequence[str] = DESTINATIONS,
) -> str:
    if command == "/cheapest":
        flight = await _query(cache, "flights:cheapest", store.cheapest_flight)
        stays = await _query(cache, "stays:cheapest:1", store.cheapest_stays, 1)
        return render_message("cheapest", flight=flight, stay=stays[0] if stays else None)
    if command == "/flights":
        flights = []
        for destination in destinations:
            flight = await _query(cache, f"flights:cheapest:{destination}", store.cheapest_flight, destination)
            if flight:
                flights.append(flight)
        return render_message("flights", flights=flights)
    if command == "/stays":
        stays = await _query(cache, "stays:cheapest:5", store.cheapest_stays, 5)
        return render_message("stays", stays=stays)
    if command == "/status":
        return render_message(
            "status",
            last_flight_run=await _timestamp(cache, "flight"),
            last_stay_run=await _timestamp(cache, "stay"),
            flight_every_hours=FLIGHT_EVERY_HOURS,
            stay_every_hours=STAY_EVERY_HOURS,
        )
    return render_message("help", commands=COMMANDS)


def parse_command(text: str | None) -> str | None:
    """``/Flights@my_bot extra`` -> ``/flights``; plain text -> ``None``."""
    text = (text or "").strip()
    if not text.startswith("/"):
        return None
    return text.split()[0].split("@")[0].lower()


async def handle_command(
    text: str | None,
    *,
    store: QuoteStore,
    cache: Cache | None,
    notifier: Notifier,
) -> str | None:
    command = parse_command(text)
    if command is None:
        return None
    reply = await reply_for(command, store, cache)
    if not await notifier.send(reply):
        logger.warning("Reply to %s was not delivered", command)
    return reply
