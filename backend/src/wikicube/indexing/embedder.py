"""Batched, retried embedding of passage texts."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from wikicube.concurrency import batch_all
from wikicube.constants import (
    CALL_TIMEOUT_SECONDS,
    EMBEDDING_BACKOFF_MAX_SECONDS,
    EMBEDDING_BACKOFF_MIN_SECONDS,
    EMBEDDING_BATCH_SIZE,
    EMBEDDING_CONCURRENCY,
    EMBEDDING_MAX_ATTEMPTS,
)

logger = logging.getLogger(__name__)

EmbedFn = Callable[[list[str]], Awaitable[list[list[float]]]]


class EmbeddingCountMismatch(Exception):
    """Raised when the provider returns a different number of vectors than texts."""

    pass


@dataclass
class EmbeddedBatch:
    """Outcome of embedding one batch.

    Attributes:
        index: Batch position.
        offset: Index of the batch's first text in the full input.
        texts: Texts in the batch.
        vectors: One vector per text, or empty when every attempt failed.
    """

    index: int
    offset: int
    texts: list[str]
    vectors: list[list[float]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return len(self.vectors) == len(self.texts)


class EmbeddingBatcher:
    """Turn a list of texts into vectors through a size-limited embedding call.

    Texts are grouped into ordered batches of at most `batch_size`. Batches run
    through batch_all, so batch i's vectors always land in position i. A batch
    that fails every attempt degrades to an empty vector list; it never
    raises and never yields a partial result.
    """

    def __init__(
        self,
        embed_fn: EmbedFn,
        batch_size: int = EMBEDDING_BATCH_SIZE,
        concurrency: int = EMBEDDING_CONCURRENCY,
        max_attempts: int = EMBEDDING_MAX_ATTEMPTS,
        backoff_min: float = EMBEDDING_BACKOFF_MIN_SECONDS,
        backoff_max: float = EMBEDDING_BACKOFF_MAX_SECONDS,
        call_timeout: float | None = CALL_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the batcher.

        Args:
            embed_fn: Async call that embeds one batch, e.g. LLMClient.embed.
            batch_size: Maximum texts per call.
            concurrency: Batches in flight at once.
            max_attempts: Attempts per batch, first call included.
            backoff_min: Initial wait between attempts, in seconds.
            backoff_max: Cap on the wait between attempts, in seconds.
            call_timeout: Per-attempt timeout in seconds, or None for no limit.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._embed_fn = embed_fn
        self._batch_size = batch_size
        self._concurrency = concurrency
        self._max_attempts = max(max_attempts, 1)
        self._backoff_min = backoff_min
        self._backoff_max = backoff_max
        self._call_timeout = call_timeout

    def make_batches(self, texts: list[str]) -> list[EmbeddedBatch]:
        """Group texts into ordered batches of at most batch_size."""
        return [
            EmbeddedBatch(index=i, offset=offset, texts=texts[offset : offset + self._batch_size])
            for i, offset in enumerate(range(0, len(texts), self._batch_size))
        ]

    async def embed_batches(
        self, texts: list[str], cancel_event: asyncio.Event | None = None
    ) -> list[EmbeddedBatch]:
        """Embed texts, reporting the outcome of every batch.

        Args:
            texts: Texts to embed.
            cancel_event: When set, batches not yet started are skipped and
                come back empty.

        Returns:
            One EmbeddedBatch per batch, in batch order.
        """

        async def run(batch: EmbeddedBatch) -> EmbeddedBatch:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Skipping embedding batch {batch.index}: run cancelled")
                return batch
            return await self._run_batch(batch)

        return await batch_all(self.make_batches(texts), run, self._concurrency)

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts and concatenate the surviving vectors in batch order.

        The result has len(texts) vectors when every batch succeeds. Failed
        batches contribute nothing, so callers that need alignment should use
        embed_batches() instead.
        """
        vectors: list[list[float]] = []
        for batch in await self.embed_batches(texts):
            vectors.extend(batch.vectors)
        return vectors

    async def _run_batch(self, batch: EmbeddedBatch) -> EmbeddedBatch:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._backoff_min, max=self._backoff_max),
            retry=retry_if_exception_type(Exception),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    batch.vectors = await self._call(batch.texts)
        except RetryError as e:
            cause = e.last_attempt.exception()
            logger.error(
                f"Embedding batch {batch.index} ({len(batch.texts)} texts at offset "
                f"{batch.offset}) failed after {self._max_attempts} attempts: {cause}"
            )
            batch.vectors = []
        return batch

    async def _call(self, texts: list[str]) -> list[list[float]]:
        if self._call_timeout is None:
            vectors = await self._embed_fn(texts)
        else:
            vectors = await asyncio.wait_for(self._embed_fn(texts), timeout=self._call_timeout)
        if len(vectors) != len(texts):
            raise EmbeddingCountMismatch(f"expected {len(texts)} vectors, got {len(vectors)}")
        return vectors
