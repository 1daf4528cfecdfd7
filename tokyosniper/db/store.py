"""Persistence for quotes, alert rules and alert history."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Sequence

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql import text

from tokyosniper.ingest.models import FlightQuote, StayQuote
from tokyosniper.utils.dates import utcnow

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AlertConfig:
    id: int
    kind: str
    label: str
    threshold_cents: int
    currency: str
    enabled: bool
    created_at: Any = None


def _json(conn: Connection, param: str) -> str:
    if conn.dialect.name == "postgresql":
        return f"CAST(:{param} AS JSONB)"
    return f":{param}"


def _dump(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _flight_params(quote: FlightQuote) -> dict[str, Any]:
    return {
        "origin": quote.origin,
        "destination": quote.destination,
        "departure_date": quote.departure_date,
        "return_date": quote.return_date,
        "airline": quote.airline,
        "price_eur_cents": quote.prices.eur_cents,
        "price_usd_cents": quote.prices.usd_cents,
        "price_rsd_cents": quote.prices.rsd_cents,
        "price_jpy_cents": quote.prices.jpy_cents,
        "source": quote.source,
        "stops": quote.stops,
        "duration_minutes": quote.duration_minutes,
        "booking_url": quote.booking_url,
        "raw_data": _dump(quote.raw_data),
        "checked_at": quote.observed_at,
    }


class QuoteStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # flights

    def _insert_flight_sql(self, conn: Connection):
        return text(
            f"""
            INSERT INTO flight_quotes (
                origin, destination, departure_date, return_date, airline,
                price_eur_cents, price_usd_cents, price_rsd_cents, price_jpy_cents,
                source, stops, duration_minutes, booking_url, raw_data, checked_at
            ) VALUES (
                :origin, :destination, :departure_date, :return_date, :airline,
                :price_eur_cents, :price_usd_cents, :price_rsd_cents, :price_jpy_cents,
                :source, :stops, :duration_minutes, :booking_url, {_json(conn, "raw_data")}, :checked_at
            )
            """
        )

    def insert_flights(self, quotes: Sequence[FlightQuote]) -> int:
        """Insert every quote in one transaction; all or nothing."""
        if not quotes:
            return 0
        with self.engine.begin() as conn:
            conn.execute(self._insert_flight_sql(conn), [_flight_params(q) for q in quotes])
        return len(quotes)

    def insert_flight(self, quote: FlightQuote) -> None:
        with self.engine.begin() as conn:
            conn.execute(self._insert_flight_sql(conn), _flight_params(quote))

    def lowest_flight_price(
        self,
        destination: str,
        departure_date: date,
        *,
        before: datetime | None = None,
    ) -> int | None:
        """Lowest EUR price seen for a destination and departure date, optionally only before ``before``."""
        query = """
            SELECT MIN(price_eur_cents)
            FROM flight_quotes
            WHERE destination = :destination AND departure_date = :departure_date
        """
        params: dict[str, Any] = {"destination": destination, "departure_date": departure_date}
        if before is not None:
            query += " AND checked_at < :before"
            params["before"] = before
        with self.engine.connect() as conn:
            value = conn.execute(text(query), params).scalar()
        return int(value) if value is not None else None

    def cheapest_flight(self, destination: str | None = None) -> dict[str, Any] | None:
        query = """
            SELECT origin, destination, departure_date, return_date, airline,
                   price_eur_cents, price_usd_cents, stops, booking_url, checked_at
            FROM flight_quotes
        """
        params: dict[str, Any] = {}
        if destination:
            query += " WHERE destination = :destination"
            params["destination"] = destination
        query += " ORDER BY price_eur_cents ASC, checked_at DESC LIMIT 1"
        with self.engine.connect() as conn:
            row = conn.execute(text(query), params).mappings().first()
        return dict(row) if row else None

    # stays

    def ensure_accommodation(self, conn: Connection, quote: StayQuote) -> int:
        """Return the accommodation id for the quote's identity, creating it on first sight.

        Lookup and insert are separate statements; two concurrent runs can
        both miss and create the same property twice.
        """
        existing = conn.execute(
            text(
                """
                SELECT id FROM accommodations
                WHERE name = :name AND platform = :platform AND neighborhood = :neighborhood
                ORDER BY id
                LIMIT 1
                """
            ),
            {"name": quote.name, "platform": quote.platform, "neighborhood": quote.neighborhood},
        ).scalar()
        if existing is not None:
            return int(existing)
        result = conn.execute(
            text(
                f"""
                INSERT INTO accommodations (
                    name, neighborhood, platform, url, property_type,
                    rating, review_count, amenities, created_at
                ) VALUES (
                    :name, :neighborhood, :platform, :url, :property_type,
                    :rating, :review_count, {_json(conn, "amenities")}, :created_at
                )
                RETURNING id
                """
            ),
            {
                "name": quote.name,
                "neighborhood": quote.neighborhood,
                "platform": quote.platform,
                "url": quote.url,
                "property_type": quote.property_type,
                "rating": quote.rating,
                "review_count": quote.review_count,
                "amenities": _dump(list(quote.amenities)) if quote.amenities is not None else None,
                "created_at": quote.observed_at,
            },
        )
        return int(result.scalar_one())

    def insert_stay_quote(self, quote: StayQuote) -> int:
        """Resolve the accommodation and append one nightly price observation for it."""
        with self.engine.begin() as conn:
            accommodation_id = self.ensure_accommodation(conn, quote)
            conn.execute(
                text(
                    f"""
                    INSERT INTO accommodation_quotes (
                        accommodation_id,
                        price_per_night_eur_cents, price_per_night_usd_cents,
                        price_per_night_rsd_cents, price_per_night_jpy_cents,
                        total_price_usd_cents, check_in, check_out, source, raw_data, checked_at
                    ) VALUES (
                        :accommodation_id,
                        :eur, :usd, :rsd, :jpy,
                        :total_usd, :check_in, :check_out, :source, {_json(conn, "raw_data")}, :checked_at
                    )
                    """
                ),
                {
                    "accommodation_id": accommodation_id,
                    "eur": quote.prices.eur_cents,
                    "usd": quote.prices.usd_cents,
                    "rsd": quote.prices.rsd_cents,
                    "jpy": quote.prices.jpy_cents,
                    "total_usd": quote.total_usd_cents,
                    "check_in": quote.check_in,
                    "check_out": quote.check_out,
                    "source": quote.source,
                    "raw_data": _dump(quote.raw_data),
                    "checked_at": quote.observed_at,
                },
            )
        return accommodation_id

    def cheapest_stays(self, limit: int = 5) -> list[dict[str, Any]]:
        query = text(
            """
            SELECT a.id, a.name, a.neighborhood, a.platform, a.url, a.rating, a.review_count,
                   a.property_type,
                   q.price_per_night_usd_cents, q.price_per_night_eur_cents,
                   q.price_per_night_rsd_cents, q.price_per_night_jpy_cents,
                   q.check_in, q.check_out, q.checked_at
            FROM accommodation_quotes q
            JOIN accommodations a ON a.id = q.accommodation_id
            ORDER BY q.price_per_night_usd_cents ASC
            LIMIT :limit
            """
        )
        with self.engine.connect() as conn:
            return [dict(row) for row in conn.execute(query, {"limit": limit}).mappings()]

    # alert rules

    def create_alert_config(self, kind: str, label: str, threshold_cents: int, currency: str) -> AlertConfig:
        created_at = utcnow()
        with self.engine.begin() as conn:
            config_id = conn.execute(
                text(
                    """
                    INSERT INTO alert_configs (kind, label, threshold_cents, currency, enabled, created_at)
                    VALUES (:kind, :label, :threshold_cents, :currency, :enabled, :created_at)
                    RETURNING id
                    """
                ),
                {
                    "kind": kind,
                    "label": label,
                    "threshold_cents": threshold_cents,
                    "currency": currency,
                    "enabled": True,
                    "created_at": created_at,
                },
            ).scalar_one()
        logger.info("Created %s alert %s (%s %s)", kind, config_id, threshold_cents, currency)
        return AlertConfig(int(config_id), kind, label, threshold_cents, currency, True, created_at)

    def set_alert_enabled(self, config_id: int, enabled: bool) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                text("UPDATE alert_configs SET enabled = :enabled WHERE id = :id"),
                {"enabled": enabled, "id": config_id},
            )
        return result.rowcount > 0

    def delete_alert_config(self, config_id: int) -> bool:
        with self.engine.begin() as conn:
            conn.execute(
                text("UPDATE alert_history SET alert_config_id = NULL WHERE alert_config_id = :id"),
                {"id": config_id},
            )
            result = conn.execute(text("DELETE FROM alert_configs WHERE id = :id"), {"id": config_id})
        return result.rowcount > 0

    def list_alert_configs(self) -> list[AlertConfig]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                text(
                    """
                    SELECT id, kind, label, threshold_cents, currency, enabled, created_at
                    FROM alert_configs
                    ORDER BY id
                    """
                )
            ).mappings()
            return [_to_config(row) for row in rows]

    def enabled_alert_configs(self, kind: str) -> list[AlertConfig]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                text(
                    """
                    SELECT id, kind, label, threshold_cents, currency, enabled, created_at
                    FROM alert_configs
                    WHERE kind = :kind AND enabled = TRUE
                    ORDER BY id
                    """
                ),
                {"kind": kind},
            ).mappings()
            return [_to_config(row) for row in rows]

    # alert history

    def log_alert(
        self,
        kind: str,
        message: str,
        price_cents: int,
        currency: str,
        *,
        config_id: int | None = None,
        sent_at: datetime | None = None,
    ) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                text(
                    """
                    INSERT INTO alert_history (alert_config_id, kind, message, price_cents, currency, sent_at)
                    VALUES (:config_id, :kind, :message, :price_cents, :currency, :sent_at)
                    """
                ),
                {
                    "config_id": config_id,
                    "kind": kind,
                    "message": message,
                    "price_cents": price_cents,
                    "currency": currency,
                    "sent_at": sent_at or utcnow(),
                },
            )

    def alert_history(self, limit: int = 50) -> list[dict[str, Any]]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                text(
                    """
                    SELECT id, alert_config_id, kind, message, price_cents, currency, sent_at
                    FROM alert_history
                    ORDER BY sent_at DESC, id DESC
                    LIMIT :limit
                    """
                ),
                {"limit": limit},
            ).mappings()
            return [dict(row) for row in rows]


def _to_config(row) -> AlertConfig:
    return AlertConfig(
        id=int(row["id"]),
        kind=row["kind"],
        label=row["label"],
        threshold_cents=int(row["threshold_cents"]),
        currency=row["currency"],
        enabled=bool(row["enabled"]),
        created_at=row["created_at"],
    )
