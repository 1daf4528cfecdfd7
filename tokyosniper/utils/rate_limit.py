"""Cooldown gate that keeps scheduled runs from overlapping."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from tokyosniper.utils.cache import Cache

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN = 300
COMPLETED_TTL = 3600 * 24 * 7


def run_key(kind: str) -> str:
    return f"cron:{kind}s:lastRun"


def completed_key(kind: str) -> str:
    return f"status:{kind}s:lastCompleted"


async def mark_completed(cache: Cache, kind: str, *, clock: Callable[[], float] = time.time) -> None:
    """Remember when a run finished; the gate key itself expires after the cooldown."""
    await cache.set(completed_key(kind), clock(), ttl=COMPLETED_TTL)


async def last_completed(cache: Cache, kind: str) -> float | None:
    value = await cache.get(completed_key(kind))
    return float(value) if value else None


class RunGate:
    """Skip a run when another one started within ``ttl`` seconds.

    The read and the write are two separate cache calls, so two triggers
    landing inside that window can both proceed. An unreachable cache lets
    every run through.
    """

    def __init__(
        self,
        cache: Cache,
        key: str,
        *,
        ttl: int = DEFAULT_COOLDOWN,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache = cache
        self.key = key
        self.ttl = ttl
        self.clock = clock

    @classmethod
    def for_kind(cls, cache: Cache, kind: str, **kwargs) -> "RunGate":
        return cls(cache, run_key(kind), **kwargs)

    async def acquire(self) -> bool:
        last_run = await self.cache.get(self.key)
        if last_run:
            logger.info("Run gate %s closed (last run at %s)", self.key, last_run)
            return False
        await self.cache.set(self.key, self.clock(), ttl=self.ttl)
        return True

    async def last_run(self) -> float | None:
        value = await self.cache.get(self.key)
        return float(value) if value else None
