"""Bounded-concurrency mapping."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def map_concurrent(
    items: Iterable[T],
    func: Callable[[T], Awaitable[R]],
    *,
    concurrency: int,
) -> list[R]:
    """Apply ``func`` to every item with at most ``concurrency`` calls in flight.

    Results keep input order. The first failure cancels the remaining calls
    and is re-raised.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def limited(item: T) -> R:
        async with semaphore:
            return await func(item)

    tasks = [asyncio.ensure_future(limited(item)) for item in items]
    if not tasks:
        return []

    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


__all__ = ["map_concurrent"]
