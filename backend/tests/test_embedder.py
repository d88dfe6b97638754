"""Retriable embedding batcher tests."""

import asyncio
import math

import pytest

from wikicube.indexing.embedder import EmbeddingBatcher


def fake_vector(text: str) -> list[float]:
    return [float(len(text)), 1.0]


def make_batcher(embed_fn, **kwargs) -> EmbeddingBatcher:
    kwargs.setdefault("batch_size", 7)
    kwargs.setdefault("concurrency", 5)
    kwargs.setdefault("max_attempts", 3)
    return EmbeddingBatcher(embed_fn, backoff_min=0, backoff_max=0, call_timeout=1.0, **kwargs)


async def test_one_vector_per_text_in_order():
    """M texts yield M vectors, aligned by position."""
    calls: list[list[str]] = []

    async def embed(texts: list[str]) -> list[list[float]]:
        calls.append(texts)
        # Finish later batches first
        await asyncio.sleep(0.001 * (10 - len(calls)))
        return [fake_vector(t) for t in texts]

    texts = [f"text {'x' * i}" for i in range(30)]
    batcher = make_batcher(embed)

    vectors = await batcher.embed(texts)

    assert vectors == [fake_vector(t) for t in texts]
    assert len(calls) == math.ceil(30 / 7)
    assert all(len(batch) <= 7 for batch in calls)


def test_make_batches_offsets():
    batcher = make_batcher(None, batch_size=3)

    batches = batcher.make_batches(list("abcdefg"))

    assert [b.index for b in batches] == [0, 1, 2]
    assert [b.offset for b in batches] == [0, 3, 6]
    assert [b.texts for b in batches] == [["a", "b", "c"], ["d", "e", "f"], ["g"]]


def test_batch_size_must_be_positive():
    with pytest.raises(ValueError):
        make_batcher(None, batch_size=0)


async def test_empty_input_makes_no_calls():
    async def embed(texts):
        raise AssertionError("should not be called")

    assert await make_batcher(embed).embed([]) == []


async def test_transient_failure_is_retried():
    attempts = 0

    async def embed(texts):
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise ConnectionError("flaky")
        return [fake_vector(t) for t in texts]

    batches = await make_batcher(embed).embed_batches(["a", "b"])

    assert attempts == 3
    assert batches[0].ok
    assert batches[0].vectors == [fake_vector("a"), fake_vector("b")]


async def test_exhausted_batch_degrades_to_empty_without_raising():
    """A batch failing every attempt comes back empty; other batches survive."""
    attempts: dict[str, int] = {}

    async def embed(texts):
        attempts[texts[0]] = attempts.get(texts[0], 0) + 1
        if texts[0] == "c":
            raise RuntimeError("provider down")
        return [fake_vector(t) for t in texts]

    batcher = make_batcher(embed, batch_size=2)

    batches = await batcher.embed_batches(["a", "b", "c", "d", "e"])

    assert [b.ok for b in batches] == [True, False, True]
    assert batches[1].vectors == []
    assert attempts["c"] == 3
    assert await batcher.embed(["a", "b", "c", "d", "e"]) == [
        fake_vector(t) for t in ["a", "b", "e"]
    ]


async def test_wrong_vector_count_counts_as_failure():
    async def embed(texts):
        return [fake_vector(texts[0])]

    batches = await make_batcher(embed, max_attempts=2).embed_batches(["a", "b"])

    assert not batches[0].ok
    assert batches[0].vectors == []


async def test_stalled_call_times_out_and_is_retried():
    attempts = 0

    async def embed(texts):
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            await asyncio.sleep(10)
        return [fake_vector(t) for t in texts]

    batcher = EmbeddingBatcher(
        embed, batch_size=7, backoff_min=0, backoff_max=0, call_timeout=0.05
    )

    vectors = await batcher.embed(["a"])

    assert vectors == [fake_vector("a")]
    assert attempts == 2


async def test_cancel_event_skips_batches_not_started():
    cancel = asyncio.Event()
    embedded: list[str] = []

    async def embed(texts):
        embedded.extend(texts)
        cancel.set()
        return [fake_vector(t) for t in texts]

    batcher = make_batcher(embed, batch_size=1, concurrency=1)

    batches = await batcher.embed_batches(["a", "b", "c"], cancel_event=cancel)

    assert embedded == ["a"]
    assert [b.ok for b in batches] == [True, False, False]
