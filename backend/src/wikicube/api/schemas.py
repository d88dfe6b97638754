"""Pydantic schemas for API requests and responses.

Field names are snake_case in Python and camelCase on the wire.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base model serializing to camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AnalyzeRequest(ApiModel):
    """Request to analyze a repository."""

    repo_url: str = Field(..., min_length=1, description="owner/repo or a GitHub URL")
    force: bool = Field(False, description="Regenerate even if a finished wiki exists")


class AnalyzeCached(ApiModel):
    """Response when a finished wiki already exists."""

    wiki_id: int
    status: str = "done"
    cached: bool = True


class UnitOut(ApiModel):
    """An analysis unit as returned by the API."""

    id: int
    owner: str
    name: str
    default_branch: str
    description: str | None
    status: str
    status_message: str | None
    overview: str | None
    created_at: str | None = None
    updated_at: str | None = None


class WikiSummary(ApiModel):
    """A finished wiki in the wiki list."""

    id: int
    owner: str
    name: str
    status: str
    created_at: str | None = None
    updated_at: str | None = None


class TopicOut(ApiModel):
    """A topic page as returned by the API."""

    id: int
    slug: str
    title: str
    summary: str
    markdown: str
    entry_points: list[dict] = Field(default_factory=list)
    citations: list[dict] = Field(default_factory=list)
    sort_order: int = 0


class WikiResponse(ApiModel):
    """A wiki with its topics in sort order."""

    wiki: UnitOut
    features: list[TopicOut]


class SearchRequest(ApiModel):
    """Search within one wiki."""

    wiki_id: int
    query: str = Field(..., min_length=1)


class SearchHit(ApiModel):
    """One search result."""

    kind: str
    feature_title: str | None
    feature_slug: str | None
    content: str
    source_type: str | None = None
    source_file: str | None = None
    similarity: float = 0.0


class SearchResponse(ApiModel):
    """Semantic hits plus the per-topic merge of title matches and hits."""

    results: list[SearchHit]
    merged: list[SearchHit]


class ChatRequest(ApiModel):
    """A chat question about one wiki."""

    wiki_id: int
    session_id: str = Field(..., min_length=1)
    question: str = Field(..., min_length=1)
    page_context: str | None = None


class ChatSessionOut(ApiModel):
    """One chat session on a wiki."""

    session_id: str
    preview: str
    last_activity: str
    message_count: int


class ChatMessageOut(ApiModel):
    """One message of a chat session."""

    role: str
    content: str
    created_at: str | None = None
