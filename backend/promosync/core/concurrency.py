"""Concurrency helpers for bounded fan-out of sink writes."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Iterable

import anyio


async def gather_limited(
    calls: Iterable[Callable[[], Awaitable[Any]]],
    limit: int,
) -> list[Any]:
    """Run the zero-arg coroutine factories concurrently, at most ``limit`` at a time.

    Results keep the input order. Exceptions are returned in place of results
    so one failing row never cancels its siblings.
    """

    sem = anyio.Semaphore(max(1, limit))

    async def _run(call: Callable[[], Awaitable[Any]]) -> Any:
        async with sem:
            return await call()

    return await asyncio.gather(*(_run(call) for call in calls), return_exceptions=True)
