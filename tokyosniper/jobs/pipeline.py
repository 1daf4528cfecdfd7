"""Scheduled job orchestration: price checks and the daily digest."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Sequence

import httpx
from dotenv import load_dotenv
from sqlalchemy.engine import Engine

from tokyosniper.db.session import create_engine_from_env
from tokyosniper.db.store import QuoteStore
from tokyosniper.ingest import load_trip_config
from tokyosniper.ingest.apify import ApifyClient
from tokyosniper.ingest.currency import RateProvider
from tokyosniper.ingest.models import TripConfig
from tokyosniper.logic.alerts import AlertEvaluator, Notifier
from tokyosniper.logic.fetch import FlightFetcher, StayFetcher, build_flight_sources, build_stay_sources
from tokyosniper.logic.policies import Source
from tokyosniper.logic.signals import FLIGHT_DIGEST_EUR_CENTS
from tokyosniper.notify.render import render_digest
from tokyosniper.notify.telegram import TelegramNotifier
from tokyosniper.utils.cache import Cache
from tokyosniper.utils.dates import iso_timestamp
from tokyosniper.utils.rate_limit import RunGate, mark_completed

logger = logging.getLogger(__name__)

SKIPPED = {"skipped": True, "reason": "Rate limited"}
DIGEST_STAY_LIMIT = 5


def _timestamp() -> str:
    return iso_timestamp(time.time())


def _sources(kind: str, cache: Cache, session: httpx.AsyncClient) -> list[Source]:
    rates = RateProvider(cache, session=session)
    client = ApifyClient(session=session)
    if kind == "flight":
        return build_flight_sources(client, rates, session=session)
    return build_stay_sources(client, rates)


async def run_check(
    kind: str,
    *,
    engine: Engine | None = None,
    cache: Cache | None = None,
    notifier: Notifier | None = None,
    sources: Sequence[Source] | None = None,
    trip: TripConfig | None = None,
    policy: str | None = None,
) -> dict[str, Any]:
    """Gate, fetch, persist, alert and invalidate for one kind (``flight`` or ``stay``)."""
    if kind not in ("flight", "stay"):
        raise ValueError(f"Unknown check kind: {kind}")
    load_dotenv()
    engine = engine or create_engine_from_env()
    owns_cache = cache is None
    cache = cache or Cache.from_env()
    notifier = notifier or TelegramNotifier()
    trip = trip or load_trip_config()
    store = QuoteStore(engine)
    session: httpx.AsyncClient | None = None

    try:
        if not await RunGate.for_kind(cache, kind).acquire():
            return dict(SKIPPED)
        if sources is None:
            session = httpx.AsyncClient(timeout=120.0)
            sources = _sources(kind, cache, session)

        fetcher_cls = FlightFetcher if kind == "flight" else StayFetcher
        summary = await fetcher_cls(store, sources, trip).run(policy)
        outcome = await AlertEvaluator(store, notifier).evaluate(
            kind, summary.quotes, history_before=summary.started_at
        )

        await cache.invalidate("dashboard:*", f"{kind}s:*")
        await mark_completed(cache, kind)
        logger.info(
            "%s check: %s checked, %s stored, %s alert(s), %s error(s)",
            kind,
            summary.total_checked,
            summary.new_records,
            outcome.alerts_sent,
            len(summary.errors) + len(outcome.errors),
        )
        result = summary.as_dict()
        result["errors"].extend(outcome.errors)
        result["alertsSent"] = outcome.alerts_sent
        result["timestamp"] = _timestamp()
        return result
    finally:
        if session is not None:
            await session.aclose()
        if owns_cache:
            await cache.close()


async def run_flight_check(**kwargs: Any) -> dict[str, Any]:
    return await run_check("flight", **kwargs)


async def run_stay_check(**kwargs: Any) -> dict[str, Any]:
    return await run_check("stay", **kwargs)


async def run_daily_digest(
    *,
    engine: Engine | None = None,
    cache: Cache | None = None,
    notifier: Notifier | None = None,
    trip: TripConfig | None = None,
    gate: bool = True,
) -> dict[str, Any]:
    load_dotenv()
    engine = engine or create_engine_from_env()
    owns_cache = cache is None
    cache = cache or Cache.from_env()
    notifier = notifier or TelegramNotifier()
    trip = trip or load_trip_config()
    store = QuoteStore(engine)
    loop = asyncio.get_running_loop()

    try:
        if gate and not await RunGate.for_kind(cache, "digest").acquire():
            return dict(SKIPPED)
        flights = []
        for route in trip.routes:
            cheapest = await loop.run_in_executor(None, store.cheapest_flight, route.destination)
            flights.append((f"{route.origin} → {route.destination}", cheapest))
        stays = await loop.run_in_executor(None, store.cheapest_stays, DIGEST_STAY_LIMIT)
        message = render_digest(
            flights,
            stays,
            digest_threshold=FLIGHT_DIGEST_EUR_CENTS,
            stay_limit=DIGEST_STAY_LIMIT,
        )
        sent = await notifier.send(message)
        logger.info("Daily digest %s", "sent" if sent else "failed")
        return {"sent": sent, "timestamp": _timestamp()}
    finally:
        if owns_cache:
            await cache.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_flight_check())
