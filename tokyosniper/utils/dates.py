"""Datetime helpers."""

from __future__ import annotations

import os
from datetime import date, datetime, timezone

import pendulum

DEFAULT_TZ = "Europe/Budapest"


def timezone_name() -> str:
    return os.environ.get("TIMEZONE", DEFAULT_TZ)


def now_in_tz() -> pendulum.DateTime:
    tz = pendulum.timezone(timezone_name())
    return pendulum.now(tz)


def today_in_tz() -> date:
    return _plain(now_in_tz().date())


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in ``checked_at`` / ``sent_at``."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _plain(value: date) -> date:
    return date(value.year, value.month, value.day)


def parse_iso_date(value: str) -> date:
    return _plain(pendulum.parse(value[:10]).date())


def format_date(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def add_days(value: date, days: int) -> date:
    return _plain(pendulum.date(value.year, value.month, value.day).add(days=days))


def iso_timestamp(epoch_seconds: float) -> str:
    return pendulum.from_timestamp(epoch_seconds).to_iso8601_string()
