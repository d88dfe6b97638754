"""Chat endpoints: streamed answers and stored sessions."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from wikicube.api.deps import get_chat_service, get_store
from wikicube.api.routers.search import require_ready_unit
from wikicube.api.schemas import ChatMessageOut, ChatRequest, ChatSessionOut
from wikicube.db.wiki_store import WikiStore
from wikicube.llm.client import LLMError
from wikicube.qa.chat import ChatService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])


@router.post("")
async def chat(
    request: ChatRequest,
    store: WikiStore = Depends(get_store),
    service: ChatService = Depends(get_chat_service),
) -> StreamingResponse:
    """Answer a question about a wiki, streaming the answer as it is generated."""
    unit = require_ready_unit(store, request.wiki_id)

    async def answer_stream():
        try:
            async for token in service.stream_answer(
                unit, request.session_id, request.question, request.page_context
            ):
                yield token
        except LLMError as e:
            logger.error(f"Chat answer for wiki {unit.id} failed: {e}")
            yield "\n\n[The answer could not be completed.]"

    return StreamingResponse(
        answer_stream(),
        media_type="text/plain; charset=utf-8",
        headers={"Cache-Control": "no-cache"},
    )


@router.get("/sessions", response_model=list[ChatSessionOut] | list[ChatMessageOut])
async def chat_sessions(
    wiki_id: int = Query(..., alias="wikiId"),
    session_id: str | None = Query(None, alias="sessionId"),
    store: WikiStore = Depends(get_store),
) -> list[ChatSessionOut] | list[ChatMessageOut]:
    """List a wiki's chat sessions, or the messages of one session.

    With `sessionId`, returns that session's messages oldest first; without
    it, returns session summaries, most recently active first.
    """
    unit = store.get_unit(wiki_id)
    if unit is None:
        raise HTTPException(status_code=404, detail="Wiki not found")

    if session_id:
        return [
            ChatMessageOut(role=m.role, content=m.content, created_at=m.created_at)
            for m in store.list_chat_messages(unit.id, session_id)
        ]
    return [
        ChatSessionOut(
            session_id=s.session_id,
            preview=s.preview,
            last_activity=s.last_activity,
            message_count=s.message_count,
        )
        for s in store.list_chat_sessions(unit.id)
    ]
