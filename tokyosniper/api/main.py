"""FastAPI application: cron triggers, Telegram webhook and alert rule management."""

from __future__ import annotations

import hmac
import logging
import os
from dataclasses import asdict
from datetime import datetime
from functools import lru_cache
from typing import Any, AsyncIterator, Literal

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.engine import Engine

from tokyosniper.db.session import create_engine_from_env
from tokyosniper.db.store import QuoteStore
from tokyosniper.ingest.currency import round_half_up
from tokyosniper.jobs import pipeline
from tokyosniper.notify.commands import handle_command
from tokyosniper.notify.telegram import TelegramNotifier
from tokyosniper.utils.cache import Cache

logger = logging.getLogger(__name__)

load_dotenv()

app = FastAPI(title="TokyoSniper API")


class AlertConfigRequest(BaseModel):
    kind: Literal["flight", "stay"]
    label: str = Field(min_length=1, max_length=200)
    threshold: float = Field(gt=0, description="Major units, e.g. 650 for €650")
    currency: Literal["EUR", "USD", "RSD", "JPY"] = "EUR"


class AlertConfigResponse(BaseModel):
    id: int
    kind: str
    label: str
    threshold_cents: int
    currency: str
    enabled: bool
    created_at: datetime | str | None = None


class AlertToggleRequest(BaseModel):
    enabled: bool


class AlertHistoryResponse(BaseModel):
    id: int
    alert_config_id: int | None = None
    kind: str
    message: str
    price_cents: int
    currency: str
    sent_at: datetime | str | None = None


class TelegramMessage(BaseModel):
    text: str | None = None
    chat: dict[str, Any] | None = None


class TelegramUpdate(BaseModel):
    update_id: int | None = None
    message: TelegramMessage | None = None


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_engine_from_env()


def get_store(engine: Engine = Depends(get_engine)) -> QuoteStore:
    return QuoteStore(engine)


async def get_cache() -> AsyncIterator[Cache]:
    cache = Cache.from_env()
    try:
        yield cache
    finally:
        await cache.close()


def get_notifier() -> TelegramNotifier:
    return TelegramNotifier()


def require_bearer(authorization: str | None = Header(default=None)) -> None:
    """Reject unless ``Authorization: Bearer $CRON_SECRET``; an unset secret rejects everything."""
    secret = os.environ.get("CRON_SECRET", "")
    if not secret or not authorization:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not hmac.compare_digest(authorization.encode(), f"Bearer {secret}".encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")


@app.get("/api/cron/check-flights", dependencies=[Depends(require_bearer)])
async def cron_check_flights(
    engine: Engine = Depends(get_engine),
    cache: Cache = Depends(get_cache),
    notifier: TelegramNotifier = Depends(get_notifier),
) -> JSONResponse:
    result = await pipeline.run_flight_check(engine=engine, cache=cache, notifier=notifier)
    return JSONResponse(result)


@app.get("/api/cron/check-stays", dependencies=[Depends(require_bearer)])
async def cron_check_stays(
    engine: Engine = Depends(get_engine),
    cache: Cache = Depends(get_cache),
    notifier: TelegramNotifier = Depends(get_notifier),
) -> JSONResponse:
    result = await pipeline.run_stay_check(engine=engine, cache=cache, notifier=notifier)
    return JSONResponse(result)


@app.get("/api/cron/daily-digest", dependencies=[Depends(require_bearer)])
async def cron_daily_digest(
    engine: Engine = Depends(get_engine),
    cache: Cache = Depends(get_cache),
    notifier: TelegramNotifier = Depends(get_notifier),
) -> JSONResponse:
    result = await pipeline.run_daily_digest(engine=engine, cache=cache, notifier=notifier)
    return JSONResponse(result)


@app.post("/api/telegram/webhook")
async def telegram_webhook(
    request: Request,
    x_telegram_bot_api_secret_token: str | None = Header(default=None),
    store: QuoteStore = Depends(get_store),
    cache: Cache = Depends(get_cache),
    notifier: TelegramNotifier = Depends(get_notifier),
) -> JSONResponse:
    """Answer bot commands. Every call, malformed or failing, gets ``{"ok": true}``."""
    secret = os.environ.get("TELEGRAM_WEBHOOK_SECRET")
    if secret and not hmac.compare_digest((x_telegram_bot_api_secret_token or "").encode(), secret.encode()):
        logger.warning("Ignoring webhook call with a bad secret token")
        return JSONResponse({"ok": True})
    try:
        update = TelegramUpdate.model_validate(await request.json())
    except (ValueError, ValidationError) as exc:
        logger.warning("Ignoring malformed Telegram update: %s", exc)
        return JSONResponse({"ok": True})
    text = update.message.text if update.message else None
    try:
        await handle_command(text, store=store, cache=cache, notifier=notifier)
    except Exception:
        logger.exception("Telegram command %r failed", text)
    return JSONResponse({"ok": True})


@app.get("/alerts", response_model=list[AlertConfigResponse], dependencies=[Depends(require_bearer)])
def list_alerts(store: QuoteStore = Depends(get_store)) -> list[AlertConfigResponse]:
    return [AlertConfigResponse(**asdict(config)) for config in store.list_alert_configs()]


@app.post(
    "/alerts",
    response_model=AlertConfigResponse,
    status_code=201,
    dependencies=[Depends(require_bearer)],
)
def create_alert(payload: AlertConfigRequest, store: QuoteStore = Depends(get_store)) -> AlertConfigResponse:
    config = store.create_alert_config(
        payload.kind,
        payload.label.strip(),
        round_half_up(payload.threshold * 100),
        payload.currency,
    )
    return AlertConfigResponse(**asdict(config))


@app.get("/alerts/history", response_model=list[AlertHistoryResponse], dependencies=[Depends(require_bearer)])
def alert_history(
    limit: int = Query(50, ge=1, le=500),
    store: QuoteStore = Depends(get_store),
) -> list[AlertHistoryResponse]:
    return [AlertHistoryResponse(**row) for row in store.alert_history(limit)]


@app.patch("/alerts/{config_id}", dependencies=[Depends(require_bearer)])
def toggle_alert(
    config_id: int,
    payload: AlertToggleRequest,
    store: QuoteStore = Depends(get_store),
) -> JSONResponse:
    if not store.set_alert_enabled(config_id, payload.enabled):
        raise HTTPException(status_code=404, detail="Alert not found")
    return JSONResponse({"id": config_id, "enabled": payload.enabled})


@app.delete("/alerts/{config_id}", dependencies=[Depends(require_bearer)])
def delete_alert(config_id: int, store: QuoteStore = Depends(get_store)) -> JSONResponse:
    if not store.delete_alert_config(config_id):
        raise HTTPException(status_code=404, detail="Alert not found")
    return JSONResponse({"deleted": True, "id": config_id})
