"""Deal detection and consolidated alert delivery."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Protocol, Sequence

from sqlalchemy.exc import SQLAlchemyError

from tokyosniper.db.store import QuoteStore
from tokyosniper.ingest.models import FlightQuote, StayQuote
from tokyosniper.logic.signals import (
    FlightThresholds,
    StayThresholds,
    drop_percent,
    is_instant_flight,
    is_instant_stay,
    is_price_drop,
    is_quality_stay,
)
from tokyosniper.notify.render import render_flight_deals, render_stay_deals

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send(self, text: str) -> bool: ...


@dataclass(slots=True)
class Deal:
    kind: str
    quote: Any
    reason: str
    price_cents: int
    currency: str
    config_id: int | None = None
    previous_cents: int | None = None

    @property
    def drop_percent(self) -> float | None:
        if self.previous_cents is None:
            return None
        return drop_percent(self.previous_cents, self.price_cents)

    @property
    def headline(self) -> str:
        if self.kind == "flight":
            quote = self.quote
            return f"{quote.origin}→{quote.destination} {quote.departure_date}"
        return f"{self.quote.name} ({self.quote.neighborhood}, {self.quote.platform})"


@dataclass(slots=True)
class AlertOutcome:
    alerts_sent: int = 0
    errors: list[str] = field(default_factory=list)
    deals: list[Deal] = field(default_factory=list)


def _flight_identity(quote: FlightQuote) -> tuple:
    return (quote.destination, quote.departure_date, quote.prices.eur_cents)


def _stay_identity(quote: StayQuote) -> tuple:
    return (quote.name, quote.platform)


class AlertEvaluator:
    def __init__(
        self,
        store: QuoteStore,
        notifier: Notifier,
        *,
        flight_thresholds: FlightThresholds | None = None,
        stay_thresholds: StayThresholds | None = None,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.flight_thresholds = flight_thresholds or FlightThresholds()
        self.stay_thresholds = stay_thresholds or StayThresholds()

    async def evaluate(
        self,
        kind: str,
        quotes: Sequence[Any],
        *,
        history_before: datetime | None = None,
    ) -> AlertOutcome:
        """Find every deal among ``quotes`` and deliver them as a single message.

        Price drops are measured against rows checked before ``history_before``,
        normally the start of the fetch run that produced ``quotes``; it
        defaults to the earliest quote's ``observed_at``, so rows from the
        same batch never count as history.

        ``alerts_sent`` is 1 when that message went out and 0 otherwise,
        regardless of how many deals it listed. History rows are written
        only after a successful send.
        """
        if kind == "flight":
            deals = await self._flight_deals(quotes, history_before)
            render = render_flight_deals
        elif kind == "stay":
            deals = self._stay_deals(quotes)
            render = render_stay_deals
        else:
            raise ValueError(f"Unknown alert kind: {kind}")
        deals.extend(await self._custom_deals(kind, quotes, deals))

        outcome = AlertOutcome(deals=deals)
        if not deals:
            return outcome

        logger.info("Sending %s %s deal(s)", len(deals), kind)
        if not await self.notifier.send(render(deals)):
            outcome.errors.append(f"Failed to send consolidated {kind} alert")
            return outcome
        outcome.alerts_sent = 1

        loop = asyncio.get_running_loop()
        outcome.errors.extend(await loop.run_in_executor(None, self._log_history, deals))
        return outcome

    async def _flight_deals(self, quotes: Sequence[FlightQuote], before: datetime | None) -> list[Deal]:
        thresholds = self.flight_thresholds
        if before is None and quotes:
            before = min(quote.observed_at for quote in quotes)
        loop = asyncio.get_running_loop()
        deals: list[Deal] = []
        for quote in quotes:
            price = quote.prices.eur_cents
            if is_instant_flight(quote, thresholds):
                deals.append(Deal("flight", quote, f"under €{thresholds.instant_eur_cents // 100}", price, "EUR"))
                continue
            previous = await loop.run_in_executor(
                None, self._previous_lowest, quote.destination, quote.departure_date, before
            )
            if is_price_drop(previous, price, thresholds.drop_percent):
                reason = f"{drop_percent(previous, price):.0f}% drop"
                deals.append(Deal("flight", quote, reason, price, "EUR", previous_cents=previous))
        return deals

    def _previous_lowest(self, destination: str, departure_date: date, before: datetime | None) -> int | None:
        return self.store.lowest_flight_price(destination, departure_date, before=before)

    def _stay_deals(self, quotes: Sequence[StayQuote]) -> list[Deal]:
        thresholds = self.stay_thresholds
        deals: list[Deal] = []
        for quote in quotes:
            price = quote.prices.usd_cents
            if is_instant_stay(quote, thresholds):
                deals.append(Deal("stay", quote, f"under ${thresholds.instant_usd_cents // 100}/night", price, "USD"))
            elif is_quality_stay(quote, thresholds):
                reason = f"great deal (kitchen+wifi+{thresholds.good_deal_min_rating:g}★)"
                deals.append(Deal("stay", quote, reason, price, "USD"))
        return deals

    async def _custom_deals(self, kind: str, quotes: Sequence[Any], existing: list[Deal]) -> list[Deal]:
        loop = asyncio.get_running_loop()
        configs = await loop.run_in_executor(None, self.store.enabled_alert_configs, kind)
        identity = _flight_identity if kind == "flight" else _stay_identity
        seen = {identity(deal.quote) for deal in existing}
        deals: list[Deal] = []
        for config in configs:
            for quote in quotes:
                price = quote.prices.in_currency(config.currency)
                if price >= config.threshold_cents:
                    continue
                key = identity(quote)
                if key in seen:
                    continue
                seen.add(key)
                deals.append(Deal(kind, quote, config.label, price, config.currency, config_id=config.id))
        return deals

    def _log_history(self, deals: Sequence[Deal]) -> list[str]:
        errors: list[str] = []
        for deal in deals:
            try:
                self.store.log_alert(
                    deal.kind,
                    f"{deal.reason}: {deal.headline}",
                    deal.price_cents,
                    deal.currency,
                    config_id=deal.config_id,
                )
            except SQLAlchemyError as exc:
                logger.warning("Could not record %s alert history: %s", deal.kind, exc)
                errors.append(f"Alert history for {deal.headline}: {exc}")
        return errors
