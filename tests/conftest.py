import fnmatch
import json
import sqlite3
from datetime import date, datetime
from pathlib import Path

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    Table,
    Text,
    create_engine,
)
from sqlalchemy.pool import StaticPool

from tokyosniper.db.store import QuoteStore
from tokyosniper.ingest.currency import FALLBACK_RATES, normalize
from tokyosniper.ingest.models import (
    FlightQuote,
    Neighborhood,
    Route,
    StayQuote,
    TripConfig,
    TripWindow,
)
from tokyosniper.utils.cache import Cache

FIXTURES = Path(__file__).parent / "fixtures" / "http"

sqlite3.register_adapter(date, lambda value: value.isoformat())
sqlite3.register_adapter(datetime, lambda value: value.isoformat(" "))

metadata = MetaData()

flight_quotes = Table(
    "flight_quotes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("origin", Text, nullable=False),
    Column("destination", Text, nullable=False),
    Column("departure_date", Date, nullable=False),
    Column("return_date", Date),
    Column("airline", Text),
    Column("price_eur_cents", Integer, nullable=False),
    Column("price_usd_cents", Integer, nullable=False),
    Column("price_rsd_cents", Integer, nullable=False),
    Column("price_jpy_cents", Integer, nullable=False),
    Column("source", Text, nullable=False),
    Column("stops", Integer, nullable=False, default=0),
    Column("duration_minutes", Integer),
    Column("booking_url", Text),
    Column("raw_data", JSON),
    Column("checked_at", DateTime, nullable=False),
)

accommodations = Table(
    "accommodations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text, nullable=False),
    Column("neighborhood", Text, nullable=False),
    Column("platform", Text, nullable=False),
    Column("url", Text),
    Column("property_type", Text),
    Column("rating", Float),
    Column("review_count", Integer),
    Column("amenities", JSON),
    Column("created_at", DateTime, nullable=False),
)

accommodation_quotes = Table(
    "accommodation_quotes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("accommodation_id", Integer, ForeignKey("accommodations.id"), nullable=False),
    Column("price_per_night_eur_cents", Integer, nullable=False),
    Column("price_per_night_usd_cents", Integer, nullable=False),
    Column("price_per_night_rsd_cents", Integer, nullable=False),
    Column("price_per_night_jpy_cents", Integer, nullable=False),
    Column("total_price_usd_cents", Integer),
    Column("check_in", Date, nullable=False),
    Column("check_out", Date, nullable=False),
    Column("source", Text, nullable=False),
    Column("raw_data", JSON),
    Column("checked_at", DateTime, nullable=False),
)

alert_configs = Table(
    "alert_configs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("kind", Text, nullable=False),
    Column("label", Text, nullable=False),
    Column("threshold_cents", Integer, nullable=False),
    Column("currency", Text, nullable=False),
    Column("enabled", Boolean, nullable=False),
    Column("created_at", DateTime, nullable=False),
)

alert_history = Table(
    "alert_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("alert_config_id", Integer, ForeignKey("alert_configs.id")),
    Column("kind", Text, nullable=False),
    Column("message", Text, nullable=False),
    Column("price_cents", Integer, nullable=False),
    Column("currency", Text, nullable=False),
    Column("sent_at", DateTime, nullable=False),
)


def load_fixture(path: str) -> str:
    return (FIXTURES / path).read_text()


class FakeRedis:
    """Just enough of ``redis.asyncio.Redis`` for the cache wrapper."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def scan_iter(self, match="*"):
        for key in list(self.data):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def aclose(self):
        return None


class BrokenRedis(FakeRedis):
    async def get(self, key):
        raise RedisConnectionError("redis down")

    async def set(self, key, value, ex=None):
        raise RedisConnectionError("redis down")

    async def scan_iter(self, match="*"):
        raise RedisConnectionError("redis down")
        yield  # pragma: no cover


class FakeNotifier:
    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.messages: list[str] = []

    async def send(self, text: str) -> bool:
        self.messages.append(text)
        return self.ok


class StaticRates:
    def __init__(self, rates=None) -> None:
        self.rates = dict(rates or FALLBACK_RATES)

    async def snapshot(self):
        return dict(self.rates)


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def store(engine):
    return QuoteStore(engine)


@pytest.fixture()
def redis_client():
    return FakeRedis()


@pytest.fixture()
def cache(redis_client):
    return Cache(redis_client)


@pytest.fixture()
def broken_cache():
    return Cache(BrokenRedis())


@pytest.fixture()
def notifier():
    return FakeNotifier()


@pytest.fixture()
def rates():
    return StaticRates()


@pytest.fixture()
def small_trip():
    return TripConfig(
        routes=[Route(origin="BUD", destination="NRT", label="Budapest → Narita")],
        neighborhoods=[Neighborhood(slug="asakusa", label="Asakusa / Taito Ward")],
        windows=[TripWindow(label="March 2026", month="2026-03")],
        departure_days=[1],
        return_offsets=[9],
        stay_nights=9,
    )


def make_flight(
    eur: float,
    *,
    destination: str = "NRT",
    departure: date = date(2026, 3, 1),
    return_date: date | None = date(2026, 3, 10),
    airline: str | None = "Turkish Airlines",
    stops: int = 1,
    source: str = "skyscanner",
    observed_at: datetime | None = None,
) -> FlightQuote:
    extra = {"observed_at": observed_at} if observed_at else {}
    return FlightQuote(
        origin="BUD",
        destination=destination,
        departure_date=departure,
        return_date=return_date,
        airline=airline,
        prices=normalize(eur, "EUR", FALLBACK_RATES),
        source=source,
        stops=stops,
        **extra,
    )


def make_stay(
    usd: float,
    *,
    name: str = "Asakusa Riverside Apartment",
    platform: str = "booking",
    neighborhood: str = "asakusa",
    rating: float | None = 9.0,
    amenities: tuple[str, ...] | None = ("Free WiFi", "Kitchen"),
) -> StayQuote:
    return StayQuote(
        name=name,
        neighborhood=neighborhood,
        platform=platform,
        prices=normalize(usd, "USD", FALLBACK_RATES),
        check_in=date(2026, 3, 1),
        check_out=date(2026, 3, 10),
        source=platform,
        rating=rating,
        amenities=amenities,
    )


def fixture_json(path: str):
    return json.loads(load_fixture(path))
