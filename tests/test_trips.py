from datetime import date

from tokyosniper.ingest import load_trip_config
from tokyosniper.ingest.models import TripWindow
from tokyosniper.logic.trips import generate_stay_dates, generate_trip_pairs

WINDOWS = [TripWindow(label="March 2026", month="2026-03"), TripWindow(label="April 2026", month="2026-04")]


def test_trip_pairs_cover_every_combination_in_order():
    pairs = generate_trip_pairs(WINDOWS, [1, 8], [9, 14])
    assert len(pairs) == 2 * 2 * 2
    assert [pair.label for pair in pairs[:4]] == [
        "March 2026 d1+9",
        "March 2026 d1+14",
        "March 2026 d8+9",
        "March 2026 d8+14",
    ]
    assert pairs[0].start == date(2026, 3, 1)
    assert pairs[0].end == date(2026, 3, 10)
    assert pairs[-1].start == date(2026, 4, 8)
    assert pairs[-1].end == date(2026, 4, 22)


def test_trip_pairs_cross_month_boundary():
    pairs = generate_trip_pairs([TripWindow(label="March 2026", month="2026-03")], [22], [14])
    assert pairs[0].end == date(2026, 4, 5)


def test_trip_pairs_return_plain_dates():
    pair = generate_trip_pairs(WINDOWS, [1], [9])[0]
    assert type(pair.start) is date
    assert type(pair.end) is date


def test_stay_dates_use_fixed_length():
    stays = generate_stay_dates(WINDOWS, [1, 15], 9)
    assert len(stays) == 4
    assert stays[1].label == "March 2026 d15"
    assert all((stay.end - stay.start).days == 9 for stay in stays)


def test_empty_inputs_produce_nothing():
    assert generate_trip_pairs([], [1], [9]) == []
    assert generate_trip_pairs(WINDOWS, [], [9]) == []
    assert generate_stay_dates(WINDOWS, [], 9) == []


def test_bundled_trip_config():
    trip = load_trip_config()
    assert [route.destination for route in trip.routes] == ["NRT", "HND"]
    assert {n.slug for n in trip.neighborhoods} == {
        "asakusa",
        "ueno",
        "sumida",
        "nakano",
        "koenji",
        "ikebukuro",
        "kuramae",
    }
    assert [w.month for w in trip.windows] == ["2026-03", "2026-04", "2026-10"]
    pairs = generate_trip_pairs(trip.windows, trip.departure_days, trip.return_offsets)
    assert len(pairs) == 3 * 4 * 3
    assert len(generate_stay_dates(trip.windows, trip.departure_days, trip.stay_nights)) == 12
