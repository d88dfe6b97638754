"""Analysis endpoint streaming pipeline progress as Server-Sent Events."""

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from wikicube.api.deps import get_orchestrator, get_settings, get_store
from wikicube.api.schemas import AnalyzeCached, AnalyzeRequest
from wikicube.config import Config
from wikicube.db.wiki_store import WikiStore
from wikicube.generation.orchestrator import AnalysisOrchestrator, run_with_timeout
from wikicube.generation.status import ProgressEvent, UnitStatus
from wikicube.repo.url_parser import parse_repo_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["analyze"])

# Runs whose client went away keep going until they notice the cancel signal
_background_runs: set[asyncio.Task] = set()


def format_sse(event: ProgressEvent) -> str:
    """Format a progress event as one SSE message."""
    return f"event: {event.type.value}\ndata: {json.dumps(event.to_dict())}\n\n"


@router.post("/analyze")
async def analyze(
    request: AnalyzeRequest,
    store: WikiStore = Depends(get_store),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
    settings: Config = Depends(get_settings),
):
    """Analyze a repository, streaming progress events.

    Returns the existing wiki id instead when the repository was already
    analyzed successfully and `force` is not set.
    """
    try:
        repo = parse_repo_id(request.repo_url)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    existing = store.find_unit(repo.owner, repo.name)
    if existing and existing.status == UnitStatus.DONE.value and not request.force:
        return AnalyzeCached(wiki_id=existing.id)

    queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
    cancel_event = asyncio.Event()

    async def on_event(event: ProgressEvent) -> None:
        queue.put_nowait(event)

    async def run_pipeline() -> None:
        try:
            await run_with_timeout(
                orchestrator,
                repo,
                on_event=on_event,
                cancel_event=cancel_event,
                timeout_minutes=settings.pipeline.run_timeout_minutes,
            )
        except Exception as e:
            # Already reported to the client as an error event
            logger.info(f"Analysis stream for {repo} ended with an error: {e}")
        finally:
            queue.put_nowait(None)

    async def event_stream():
        task = asyncio.create_task(run_pipeline())
        _background_runs.add(task)
        task.add_done_callback(_background_runs.discard)
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield format_sse(event)
        finally:
            if not task.done():
                logger.info(f"Client disconnected from analysis of {repo}; cancelling")
                cancel_event.set()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
