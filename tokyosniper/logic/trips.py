"""Search-date enumeration for the configured trip windows."""

from __future__ import annotations

from datetime import date
from typing import Sequence

from tokyosniper.ingest.models import DatePair, TripWindow
from tokyosniper.utils.dates import add_days


def _sample_date(window: TripWindow, day: int) -> date:
    year, month = (int(part) for part in window.month.split("-"))
    return date(year, month, day)


def generate_trip_pairs(
    windows: Sequence[TripWindow],
    days: Sequence[int],
    offsets: Sequence[int],
) -> list[DatePair]:
    """Departure/return pairs for every window, sample day and trip length, in that nesting order."""
    pairs: list[DatePair] = []
    for window in windows:
        for day in days:
            departure = _sample_date(window, day)
            for offset in offsets:
                pairs.append(
                    DatePair(
                        start=departure,
                        end=add_days(departure, offset),
                        label=f"{window.label} d{day}+{offset}",
                    )
                )
    return pairs


def generate_stay_dates(
    windows: Sequence[TripWindow],
    days: Sequence[int],
    nights: int,
) -> list[DatePair]:
    """Check-in/check-out pairs: one fixed-length stay per window and sample day."""
    dates: list[DatePair] = []
    for window in windows:
        for day in days:
            check_in = _sample_date(window, day)
            dates.append(
                DatePair(
                    start=check_in,
                    end=add_days(check_in, nights),
                    label=f"{window.label} d{day}",
                )
            )
    return dates
