"""Search endpoint."""

from fastapi import APIRouter, Depends, HTTPException

from wikicube.api.deps import get_assembler, get_store
from wikicube.api.schemas import SearchHit, SearchRequest, SearchResponse
from wikicube.db.wiki_store import UnitRecord, WikiStore
from wikicube.generation.status import UnitStatus
from wikicube.qa.retrieval import RetrievalAssembler, SearchResult, merge_search_results

router = APIRouter(prefix="/api/search", tags=["search"])


def require_ready_unit(store: WikiStore, wiki_id: int) -> UnitRecord:
    """Get a unit whose analysis finished, or raise 404."""
    unit = store.get_unit(wiki_id)
    if unit is None or unit.status != UnitStatus.DONE.value:
        raise HTTPException(status_code=404, detail="Wiki not found or not ready")
    return unit


def _hit(result: SearchResult) -> SearchHit:
    return SearchHit(
        kind=result.kind,
        feature_title=result.topic_title,
        feature_slug=result.topic_slug,
        content=result.content,
        source_type=result.source_type,
        source_file=result.source_file,
        similarity=result.score,
    )


@router.post("", response_model=SearchResponse)
async def search(
    request: SearchRequest,
    store: WikiStore = Depends(get_store),
    assembler: RetrievalAssembler = Depends(get_assembler),
) -> SearchResponse:
    """Semantic search over a wiki, plus fuzzy matches on topic titles."""
    unit = require_ready_unit(store, request.wiki_id)
    semantic = await assembler.search(unit.id, request.query)
    title_matches = assembler.title_matches(store.list_topics(unit.id), request.query)
    return SearchResponse(
        results=[_hit(r) for r in semantic],
        merged=[_hit(r) for r in merge_search_results(title_matches, semantic)],
    )
