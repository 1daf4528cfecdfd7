"""Seed example alert rules."""

from __future__ import annotations

from dotenv import load_dotenv

from tokyosniper.db.session import create_engine_from_env
from tokyosniper.db.store import QuoteStore


EXAMPLE_ALERTS = [
    {"kind": "flight", "label": "Round trip under €650", "threshold_cents": 65000, "currency": "EUR"},
    {"kind": "flight", "label": "Round trip under 80,000 RSD", "threshold_cents": 8000000, "currency": "RSD"},
    {"kind": "stay", "label": "Apartment under $40/night", "threshold_cents": 4000, "currency": "USD"},
]


def main() -> None:
    load_dotenv()
    store = QuoteStore(create_engine_from_env())
    existing = {(config.kind, config.label) for config in store.list_alert_configs()}
    created = 0
    for alert in EXAMPLE_ALERTS:
        if (alert["kind"], alert["label"]) in existing:
            continue
        store.create_alert_config(**alert)
        created += 1
    print(f"Seed complete ({created} alert rules created)")


if __name__ == "__main__":
    main()
