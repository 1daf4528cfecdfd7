"""Source querying policies: sequential fallback chain and concurrent fan-out."""

from __future__ import annotations

import asyncio
from typing import Any, Protocol, Sequence

from tokyosniper.ingest.models import SourceResult

FALLBACK = "fallback"
FANOUT = "fanout"
POLICIES = (FALLBACK, FANOUT)


class Source(Protocol):
    name: str

    async def search(self, *args: Any) -> SourceResult: ...


SourceError = tuple[str, str]


async def query_fallback(sources: Sequence[Source], *args: Any) -> tuple[list, list[SourceError]]:
    """Try each source in turn until one answers with at least one quote."""
    errors: list[SourceError] = []
    for source in sources:
        result = await source.search(*args)
        if result.success and result.quotes:
            return list(result.quotes), errors
        if result.error:
            errors.append((result.source, result.error))
    return [], errors


async def query_fanout(sources: Sequence[Source], *args: Any) -> tuple[list, list[SourceError]]:
    """Query every source concurrently and merge the successes in source order."""
    results = await asyncio.gather(*(source.search(*args) for source in sources))
    quotes: list = []
    errors: list[SourceError] = []
    for result in results:
        if result.success:
            quotes.extend(result.quotes)
        elif result.error:
            errors.append((result.source, result.error))
    return quotes, errors


async def query(policy: str, sources: Sequence[Source], *args: Any) -> tuple[list, list[SourceError]]:
    if policy == FALLBACK:
        return await query_fallback(sources, *args)
    if policy == FANOUT:
        return await query_fanout(sources, *args)
    raise ValueError(f"Unknown query policy: {policy}")
