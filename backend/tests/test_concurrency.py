"""Bounded-concurrency batch runner tests."""

import asyncio

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from wikicube.concurrency import batch_all


async def test_results_follow_input_order_despite_skewed_latency():
    """Item i's result lands at index i even when later items finish first."""
    delays = [5, 4, 3, 2, 1]
    finished: list[int] = []

    async def work(delay: int) -> int:
        await asyncio.sleep(delay / 1000)
        finished.append(delay)
        return delay * 10

    results = await batch_all(delays, work, concurrency=3)

    assert results == [50, 40, 30, 20, 10]
    assert finished != delays


async def test_empty_input_returns_empty_list_without_calling_fn():
    """Empty input resolves immediately."""
    calls = 0

    async def work(item):
        nonlocal calls
        calls += 1
        return item

    assert await batch_all([], work, concurrency=4) == []
    assert calls == 0


async def test_never_exceeds_concurrency_limit():
    """At most `concurrency` calls are in flight at once."""
    in_flight = 0
    peak = 0

    async def work(item: int) -> int:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.001 * (item % 3))
        in_flight -= 1
        return item

    results = await batch_all(list(range(20)), work, concurrency=4)

    assert results == list(range(20))
    assert peak == 4


async def test_concurrency_larger_than_input():
    """A limit above the item count still processes every item once."""
    seen: list[int] = []

    async def work(item: int) -> int:
        seen.append(item)
        return item + 1

    assert await batch_all([1, 2], work, concurrency=10) == [2, 3]
    assert sorted(seen) == [1, 2]


async def test_concurrency_below_one_is_treated_as_one():
    """Zero or negative limits degrade to sequential processing."""
    order: list[int] = []

    async def work(item: int) -> int:
        order.append(item)
        await asyncio.sleep(0)
        return item

    assert await batch_all([3, 1, 2], work, concurrency=0) == [3, 1, 2]
    assert order == [3, 1, 2]


async def test_exception_propagates_and_stops_other_workers():
    """An exception from fn surfaces to the caller; pending items are not started."""
    started: list[int] = []

    async def work(item: int) -> int:
        started.append(item)
        if item == 1:
            raise RuntimeError("boom")
        await asyncio.sleep(0.01)
        return item

    with pytest.raises(RuntimeError, match="boom"):
        await batch_all(list(range(10)), work, concurrency=2)

    assert len(started) < 10


@given(
    items=st.lists(st.integers(min_value=0, max_value=1000), max_size=40),
    concurrency=st.integers(min_value=1, max_value=8),
)
@settings(max_examples=100)
def test_property_output_matches_sequential_map(items, concurrency):
    """For any input and limit, the result equals a sequential map."""

    async def work(item: int) -> int:
        # Yield a varying number of times so completion order is scrambled
        for _ in range(item % 4):
            await asyncio.sleep(0)
        return item * 2

    results = asyncio.run(batch_all(items, work, concurrency))

    assert results == [item * 2 for item in items]
