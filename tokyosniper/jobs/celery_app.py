"""Celery beat schedule for the price checks and the daily digest."""

from __future__ import annotations

import asyncio
import logging
import os

from celery import Celery
from celery.schedules import crontab

from tokyosniper.jobs import pipeline
from tokyosniper.utils.dates import timezone_name

logger = logging.getLogger(__name__)

REDIS_URL = os.environ.get("REDIS_URL", "redis://redis:6379/0")
SEND_HOUR = int(os.environ.get("SEND_HOUR", "8"))
SEND_MINUTE = int(os.environ.get("SEND_MINUTE", "0"))

celery_app = Celery("tokyosniper", broker=REDIS_URL, backend=REDIS_URL)
celery_app.conf.timezone = timezone_name()
celery_app.conf.beat_schedule = {
    "check-flights": {
        "task": "tokyosniper.check_flights",
        "schedule": crontab(minute=0, hour="*/6"),
    },
    "check-stays": {
        "task": "tokyosniper.check_stays",
        "schedule": crontab(minute=30, hour="*/12"),
    },
    "daily-digest": {
        "task": "tokyosniper.daily_digest",
        "schedule": crontab(hour=SEND_HOUR, minute=SEND_MINUTE),
    },
}


@celery_app.task(name="tokyosniper.check_flights")
def check_flights():  # pragma: no cover - executed by worker
    result = asyncio.run(pipeline.run_flight_check())
    logger.info("Flight check finished: %s", result)
    return result


@celery_app.task(name="tokyosniper.check_stays")
def check_stays():  # pragma: no cover - executed by worker
    result = asyncio.run(pipeline.run_stay_check())
    logger.info("Stay check finished: %s", result)
    return result


@celery_app.task(name="tokyosniper.daily_digest")
def daily_digest():  # pragma: no cover - executed by worker
    return asyncio.run(pipeline.run_daily_digest())
