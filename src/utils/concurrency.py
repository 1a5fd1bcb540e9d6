"""Shared concurrency primitives for the ingestion pipeline.

**throttled_gather** is a drop-in replacement for ``asyncio.gather`` that
wraps each awaitable in a semaphore acquire/release.  The embedding client
uses it to fan batches out to the provider, and the orchestrator uses it to
run several queue workers side by side, both under a configured ceiling.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

_T = TypeVar("_T")


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently with semaphore throttling.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Semaphore bounding how many awaitables run at once.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


def bounded_semaphore(limit: int) -> asyncio.Semaphore:
    """Return a semaphore for *limit*, clamped to at least one slot."""
    # A zero or negative limit would deadlock every waiter.
    return asyncio.Semaphore(max(1, limit))
