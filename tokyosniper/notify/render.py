"""Telegram message rendering."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Sequence

from jinja2 import Environment, FileSystemLoader, select_autoescape

from tokyosniper.ingest.currency import format_price

if TYPE_CHECKING:
    from tokyosniper.logic.alerts import Deal

TEMPLATE_DIR = Path(__file__).parent / "templates"
ENV = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(enabled_extensions=("html",)),
    trim_blocks=True,
    lstrip_blocks=True,
)
ENV.filters["price"] = format_price


def render_message(name: str, **context: Any) -> str:
    return ENV.get_template(f"{name}.html").render(**context).strip()


def _dates(start, end) -> str:
    return f"{start}–{end}" if end else str(start)


def render_flight_deals(deals: Sequence["Deal"]) -> str:
    payload = []
    for deal in deals:
        flight = deal.quote
        payload.append(
            {
                "price": format_price(flight.prices.eur_cents, "EUR"),
                "route": f"{flight.origin}→{flight.destination}",
                "dates": _dates(flight.departure_date, flight.return_date),
                "airline": flight.airline,
                "reason": deal.reason,
                "previous": format_price(deal.previous_cents, "EUR") if deal.previous_cents else None,
                "drop": f"{deal.drop_percent:.0f}" if deal.drop_percent is not None else None,
                "url": flight.booking_url,
            }
        )
    return render_message("flight_deals", deals=payload)


def render_stay_deals(deals: Sequence["Deal"]) -> str:
    payload = [
        {
            "price": format_price(deal.quote.prices.usd_cents, "USD"),
            "name": deal.quote.name,
            "neighborhood": deal.quote.neighborhood,
            "platform": deal.quote.platform,
            "rating": deal.quote.rating,
            "reason": deal.reason,
            "dates": _dates(deal.quote.check_in, deal.quote.check_out),
            "url": deal.quote.url,
        }
        for deal in deals
    ]
    return render_message("stay_deals", deals=payload)


def render_digest(
    flights: Iterable[tuple[str, dict[str, Any] | None]],
    stays: Sequence[dict[str, Any]],
    *,
    digest_threshold: int,
    stay_limit: int = 5,
) -> str:
    """Daily summary: cheapest flight per route label, then the cheapest stays."""
    rows = [{"label": label, "flight": flight} for label, flight in flights]
    return render_message(
        "digest",
        flights=rows,
        stays=stays,
        digest_threshold=digest_threshold,
        stay_limit=stay_limit,
    )
