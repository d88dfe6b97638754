"""Streaming chat over a unit's wiki, with history persisted alongside."""

import asyncio
import logging
from collections.abc import AsyncGenerator, AsyncIterator

from wikicube.constants import CHAT_HISTORY_LIMIT, CHAT_TEMPERATURE
from wikicube.db.wiki_store import UnitRecord, WikiStore
from wikicube.generation.prompts import get_chat_system_prompt
from wikicube.llm.client import LLMClient
from wikicube.qa.retrieval import RetrievalAssembler

logger = logging.getLogger(__name__)

# Marks the end of a token stream on a subscriber queue
_END = object()


class _Failure:
    """Carries a producer exception to a subscriber."""

    def __init__(self, error: BaseException):
        self.error = error


class TokenFanOut:
    """Deliver one async token stream to several independent subscriber queues.

    Queues are unbounded, so a slow or failing subscriber never holds up the
    producer or any other subscriber.
    """

    def __init__(self, source: AsyncIterator[str], subscribers: int = 2):
        self._source = source
        self.queues: list[asyncio.Queue] = [asyncio.Queue() for _ in range(subscribers)]

    async def pump(self) -> None:
        """Copy every token to every queue, then an end marker."""
        try:
            async for token in self._source:
                for queue in self.queues:
                    queue.put_nowait(token)
        except Exception as e:
            for queue in self.queues:
                queue.put_nowait(_Failure(e))
        finally:
            for queue in self.queues:
                queue.put_nowait(_END)


async def _drain(queue: asyncio.Queue) -> AsyncGenerator[str, None]:
    while True:
        item = await queue.get()
        if item is _END:
            return
        if isinstance(item, _Failure):
            raise item.error
        yield item


class ChatService:
    """Answer questions about a unit, streaming tokens to the caller.

    The answer stream has two consumers: the caller, and a background task
    that stores the full answer once the stream ends. A storage failure is
    logged and never reaches the caller's stream.
    """

    def __init__(
        self,
        store: WikiStore,
        assembler: RetrievalAssembler,
        llm_client: LLMClient,
        history_limit: int = CHAT_HISTORY_LIMIT,
        temperature: float = CHAT_TEMPERATURE,
    ):
        self.store = store
        self.assembler = assembler
        self.llm_client = llm_client
        self.history_limit = history_limit
        self.temperature = temperature
        self._pending: set[asyncio.Task] = set()

    async def stream_answer(
        self,
        unit: UnitRecord,
        session_id: str,
        question: str,
        page_context: str | None = None,
    ) -> AsyncGenerator[str, None]:
        """Stream an answer to a question, grounded in the unit's wiki.

        Prior turns of the session are replayed to the model, and the
        question is stored before the model is called.

        Args:
            unit: Unit the question is about.
            session_id: Chat session the turn belongs to.
            question: The user's question.
            page_context: Text of the page the user is viewing, if any.

        Yields:
            Answer tokens as the model produces them.

        Raises:
            LLMError: If the model call fails.
        """
        history = [
            {"role": m.role, "content": m.content}
            for m in self.store.list_chat_messages(unit.id, session_id, self.history_limit)
        ]
        self.store.add_chat_message(unit.id, session_id, "user", question)

        context = await self.assembler.build_chat_context(unit, question, page_context)
        system_prompt = get_chat_system_prompt(context.blocks)
        tokens = self.llm_client.generate_stream(
            question,
            system_prompt=system_prompt,
            temperature=self.temperature,
            history=history,
        )

        fan_out = TokenFanOut(tokens)
        client_queue, persist_queue = fan_out.queues
        producer = asyncio.create_task(fan_out.pump())
        self._track(producer)
        self._track(asyncio.create_task(self._persist_answer(unit.id, session_id, persist_queue)))

        try:
            async for token in _drain(client_queue):
                yield token
        finally:
            # Client went away: stop generating; the partial answer is still stored
            if not producer.done():
                producer.cancel()

    async def _persist_answer(self, unit_id: int, session_id: str, queue: asyncio.Queue) -> None:
        parts: list[str] = []
        try:
            async for token in _drain(queue):
                parts.append(token)
        except Exception as e:
            logger.warning(f"Answer stream for unit {unit_id} ended with an error: {e}")

        answer = "".join(parts)
        if not answer:
            return
        try:
            self.store.add_chat_message(unit_id, session_id, "assistant", answer)
        except Exception as e:
            logger.error(f"Could not store chat answer for unit {unit_id}/{session_id}: {e}")

    def _track(self, task: asyncio.Task) -> None:
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def wait_pending(self) -> None:
        """Wait for background stream and storage tasks to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
