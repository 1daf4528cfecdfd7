"""Ingestion helpers."""

from __future__ import annotations

import pathlib

import yaml

from tokyosniper.ingest.models import Neighborhood, Route, TripConfig, TripWindow

TRIP_PATH = pathlib.Path(__file__).resolve().parent.parent / "trip.yml"


def load_trip_config(path: pathlib.Path = TRIP_PATH) -> TripConfig:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    return TripConfig(
        routes=[Route(**item) for item in data["routes"]],
        neighborhoods=[Neighborhood(**item) for item in data["neighborhoods"]],
        windows=[TripWindow(label=item["label"], month=str(item["month"])) for item in data["windows"]],
        departure_days=[int(day) for day in data["departure_days"]],
        return_offsets=[int(offset) for offset in data["return_offsets"]],
        stay_nights=int(data["stay_nights"]),
    )
