"""Wiki read endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from wikicube.api.deps import get_store
from wikicube.api.schemas import TopicOut, UnitOut, WikiResponse, WikiSummary
from wikicube.db.wiki_store import TopicRecord, UnitRecord, WikiStore
from wikicube.generation.status import UnitStatus

router = APIRouter(prefix="/api/wikis", tags=["wikis"])


def unit_out(unit: UnitRecord) -> UnitOut:
    return UnitOut(
        id=unit.id,
        owner=unit.owner,
        name=unit.name,
        default_branch=unit.default_branch,
        description=unit.description,
        status=unit.status,
        status_message=unit.status_message,
        overview=unit.overview,
        created_at=unit.created_at,
        updated_at=unit.updated_at,
    )


def topic_out(topic: TopicRecord) -> TopicOut:
    return TopicOut(
        id=topic.id,
        slug=topic.slug,
        title=topic.title,
        summary=topic.summary,
        markdown=topic.markdown,
        entry_points=topic.entry_points,
        citations=topic.citations,
        sort_order=topic.sort_order,
    )


@router.get("", response_model=list[WikiSummary])
async def list_wikis(store: WikiStore = Depends(get_store)) -> list[WikiSummary]:
    """List finished wikis, most recently updated first."""
    return [
        WikiSummary(
            id=unit.id,
            owner=unit.owner,
            name=unit.name,
            status=unit.status,
            created_at=unit.created_at,
            updated_at=unit.updated_at,
        )
        for unit in store.list_units(status=UnitStatus.DONE.value)
    ]


def _require_unit(store: WikiStore, owner: str, repo: str) -> UnitRecord:
    unit = store.find_unit(owner, repo)
    if unit is None:
        raise HTTPException(status_code=404, detail=f"Wiki not found: {owner}/{repo}")
    return unit


@router.get("/{owner}/{repo}", response_model=WikiResponse)
async def get_wiki(owner: str, repo: str, store: WikiStore = Depends(get_store)) -> WikiResponse:
    """Get a wiki and its topics in page order."""
    unit = _require_unit(store, owner, repo)
    return WikiResponse(
        wiki=unit_out(unit),
        features=[topic_out(t) for t in store.list_topics(unit.id)],
    )


@router.get("/{owner}/{repo}/{slug}", response_model=TopicOut)
async def get_topic(
    owner: str, repo: str, slug: str, store: WikiStore = Depends(get_store)
) -> TopicOut:
    """Get one topic page by slug."""
    unit = _require_unit(store, owner, repo)
    topic = store.get_topic_by_slug(unit.id, slug)
    if topic is None:
        raise HTTPException(status_code=404, detail=f"Page not found: {slug}")
    return topic_out(topic)
