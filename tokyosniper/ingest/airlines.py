"""Airline code lookup and small flight-field parsers shared by the adapters."""

from __future__ import annotations

import re
from datetime import date

# IATA code -> display name for carriers seen on BUD-TYO itineraries.
AIRLINE_NAMES = {
    "TK": "Turkish Airlines",
    "LH": "Lufthansa",
    "AF": "Air France",
    "KL": "KLM",
    "BA": "British Airways",
    "QR": "Qatar Airways",
    "EK": "Emirates",
    "EY": "Etihad",
    "SQ": "Singapore Airlines",
    "CX": "Cathay Pacific",
    "JL": "Japan Airlines",
    "NH": "ANA",
    "KE": "Korean Air",
    "OZ": "Asiana Airlines",
    "CA": "Air China",
    "MU": "China Eastern",
    "CZ": "China Southern",
    "SU": "Aeroflot",
    "OS": "Austrian Airlines",
    "LX": "Swiss",
    "AY": "Finnair",
    "SK": "SAS",
    "LO": "LOT Polish",
    "W6": "Wizz Air",
    "FR": "Ryanair",
    "U2": "easyJet",
}

DURATION_RE = re.compile(r"^PT(?:(\d+)H)?(?:(\d+)M)?$")


def airline_name(code: str | None) -> str:
    if not code:
        return "Unknown"
    return AIRLINE_NAMES.get(code.upper(), code)


def parse_iso8601_duration(value: str | None) -> int | None:
    """Parse an ISO 8601 duration such as ``PT12H30M`` into minutes."""
    if not value:
        return None
    match = DURATION_RE.match(value)
    if not match:
        return None
    hours = int(match.group(1) or 0)
    minutes = int(match.group(2) or 0)
    return hours * 60 + minutes


def skyscanner_url(origin: str, destination: str, departure: date, return_date: date | None = None) -> str:
    """Skyscanner search link: ``/transport/flights/{orig}/{dest}/{YYMMDD}/[{YYMMDD}/]``."""
    path = f"{origin.lower()}/{destination.lower()}/{departure.strftime('%y%m%d')}/"
    if return_date:
        path += f"{return_date.strftime('%y%m%d')}/"
    return f"https://www.skyscanner.net/transport/flights/{path}"
