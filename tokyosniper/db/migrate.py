"""Apply ``schema.sql`` and check that every table the pipeline writes to exists.

Run with ``python -m tokyosniper.db.migrate``.
"""

from __future__ import annotations

import logging
import pathlib
import sys
from typing import Iterator

from dotenv import load_dotenv
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from tokyosniper.db.session import create_engine_from_env

logger = logging.getLogger(__name__)

SCHEMA_PATH = pathlib.Path(__file__).with_name("schema.sql")
TABLES = ("flight_quotes", "accommodations", "accommodation_quotes", "alert_configs", "alert_history")


def schema_statements(sql: str | None = None) -> Iterator[str]:
    """Split the schema on statement-ending semicolons, dropping blank and ``--`` lines."""
    sql = SCHEMA_PATH.read_text() if sql is None else sql
    pending: list[str] = []
    for line in sql.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("--"):
            continue
        pending.append(line)
        if stripped.endswith(";"):
            yield "\n".join(pending)
            pending = []
    if pending:
        yield "\n".join(pending)


def apply_schema(engine: Engine) -> int:
    statements = list(schema_statements())
    with engine.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))
    logger.info("Applied %s schema statements", len(statements))
    return len(statements)


def missing_tables(engine: Engine) -> list[str]:
    existing = set(inspect(engine).get_table_names())
    return [table for table in TABLES if table not in existing]


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    load_dotenv()
    engine = create_engine_from_env()
    try:
        apply_schema(engine)
        missing = missing_tables(engine)
    except SQLAlchemyError as exc:
        print(f"Migration failed: {exc}", file=sys.stderr)
        sys.exit(2)
    if missing:
        print(f"Tables still missing after migration: {', '.join(missing)}", file=sys.stderr)
        sys.exit(3)


if __name__ == "__main__":
    main()
