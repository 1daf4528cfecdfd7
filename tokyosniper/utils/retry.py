"""Retry helpers for outbound HTTP calls."""

from __future__ import annotations

import asyncio
import functools
import random
from collections.abc import Awaitable, Callable

import httpx

RETRY_EXCEPTIONS = (OSError, asyncio.TimeoutError, httpx.TransportError)


def retry_async(func: Callable[..., Awaitable], *, attempts: int = 3):
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        delay = 1.0
        for attempt in range(attempts):
            try:
                return await func(*args, **kwargs)
            except RETRY_EXCEPTIONS:
                if attempt == attempts - 1:
                    raise
                await asyncio.sleep(delay + random.random())
                delay *= 2
    return wrapper
