"""Bounded-concurrency helpers shared by the pipeline phases."""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from wikicube.constants import DEFAULT_BATCH_CONCURRENCY

T = TypeVar("T")
R = TypeVar("R")


async def batch_all(
    items: Sequence[T],
    fn: Callable[[T], Awaitable[R]],
    concurrency: int = DEFAULT_BATCH_CONCURRENCY,
) -> list[R]:
    """Run fn over items with at most `concurrency` calls in flight.

    Workers share a cursor into `items`. Each worker claims the next unclaimed
    index and writes its result into the slot at that index, so results come
    back in input order no matter which call finishes first. Claiming the
    index is a plain read-then-increment with no await in between, which the
    event loop runs atomically.

    An exception raised by fn propagates and cancels the remaining workers;
    callers that want per-item isolation catch inside fn.

    Args:
        items: Inputs to process.
        fn: Async function applied to each input.
        concurrency: Maximum number of calls in flight. Values below 1 are
            treated as 1.

    Returns:
        One result per input, in input order.
    """
    total = len(items)
    if total == 0:
        return []

    results: list[R] = [None] * total  # type: ignore[list-item]
    cursor = 0

    async def worker() -> None:
        nonlocal cursor
        while cursor < total:
            index = cursor
            cursor += 1
            # Each slot is written by exactly one worker
            results[index] = await fn(items[index])

    workers = [asyncio.create_task(worker()) for _ in range(min(max(concurrency, 1), total))]
    try:
        await asyncio.gather(*workers)
    except BaseException:
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        raise

    return results
