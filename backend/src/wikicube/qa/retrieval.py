"""Retrieval for search and chat: semantic hits, fuzzy titles and RAG context."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from difflib import SequenceMatcher

from wikicube.constants import (
    CHAT_MATCH_COUNT,
    FALLBACK_BODY_CHARS,
    FUZZY_TITLE_LIMIT,
    FUZZY_TITLE_THRESHOLD,
    MAX_CONTEXT_TOKENS,
    MAX_TOPICS,
    OVERVIEW_CONTEXT_CHARS,
    SEARCH_MATCH_COUNT,
    SIMILARITY_THRESHOLD,
    SNIPPET_MAX_LENGTH,
)
from wikicube.db.wiki_store import PassageHit, TopicRecord, UnitRecord, WikiStore
from wikicube.indexing.tokens import Tokenizer, TokenCounter

logger = logging.getLogger(__name__)

QueryEmbedFn = Callable[[list[str]], Awaitable[list[list[float]]]]


@dataclass
class SearchResult:
    """One search result, either a topic title match or a passage hit.

    Attributes:
        kind: "feature" for a title match, "chunk" for a semantic hit.
        topic_title: Title of the topic the result belongs to, if any.
        topic_slug: Slug of that topic, if any.
        content: Topic summary or truncated passage text.
        source_type: "code" or "document" for passage hits.
        source_file: Repository path for code passages.
        score: Similarity (semantic) or title ratio (fuzzy).
    """

    kind: str
    topic_title: str | None
    topic_slug: str | None
    content: str
    source_type: str | None = None
    source_file: str | None = None
    score: float = 0.0


@dataclass
class ChatContext:
    """Context blocks for a chat answer, in priority order."""

    blocks: list[str] = field(default_factory=list)
    used_fallback: bool = False
    sources: list[str] = field(default_factory=list)
    token_count: int = 0


def merge_search_results(
    title_matches: list[SearchResult], semantic: list[SearchResult]
) -> list[SearchResult]:
    """Merge fuzzy title matches ahead of semantic hits, one result per topic.

    Results without a topic slug cannot be linked to a page and are left out.
    """
    seen: set[str] = set()
    merged: list[SearchResult] = []
    for result in [*title_matches, *semantic]:
        if not result.topic_slug or result.topic_slug in seen:
            continue
        seen.add(result.topic_slug)
        merged.append(result)
    return merged


def title_ratio(query: str, title: str) -> float:
    """Similarity of a query to a title, tolerant of partial queries."""
    query = query.lower().strip()
    title = title.lower()
    if not query:
        return 0.0
    if query in title:
        return 1.0
    whole = SequenceMatcher(None, query, title).ratio()
    best_word = max(
        (SequenceMatcher(None, query, word).ratio() for word in title.split()),
        default=0.0,
    )
    return max(whole, best_word)


class RetrievalAssembler:
    """Ranked retrieval over a unit's passages and topics."""

    def __init__(
        self,
        store: WikiStore,
        embed_fn: QueryEmbedFn,
        tokenizer: Tokenizer | None = None,
        search_match_count: int = SEARCH_MATCH_COUNT,
        chat_match_count: int = CHAT_MATCH_COUNT,
        threshold: float = SIMILARITY_THRESHOLD,
        snippet_length: int = SNIPPET_MAX_LENGTH,
        overview_chars: int = OVERVIEW_CONTEXT_CHARS,
        fallback_topics: int = MAX_TOPICS,
        fallback_body_chars: int = FALLBACK_BODY_CHARS,
        max_context_tokens: int = MAX_CONTEXT_TOKENS,
        fuzzy_threshold: float = FUZZY_TITLE_THRESHOLD,
        fuzzy_limit: int = FUZZY_TITLE_LIMIT,
    ):
        """Initialize the assembler.

        Args:
            store: Store holding the unit's topics and passages.
            embed_fn: Embeds a list of texts; used for the query vector.
            tokenizer: Token counter for the context budget.
            search_match_count: Semantic hits returned by search.
            chat_match_count: Semantic hits injected into chat context.
            threshold: Minimum cosine similarity, exclusive.
            snippet_length: Characters kept from each search hit.
            overview_chars: Characters of the overview injected into chat.
            fallback_topics: Topic summaries injected when nothing matches.
            fallback_body_chars: Characters of each fallback topic's body.
            max_context_tokens: Token budget for all chat context blocks.
            fuzzy_threshold: Minimum title ratio for a title match.
            fuzzy_limit: Maximum title matches.
        """
        self.store = store
        self.embed_fn = embed_fn
        self.tokenizer = tokenizer or TokenCounter()
        self.search_match_count = search_match_count
        self.chat_match_count = chat_match_count
        self.threshold = threshold
        self.snippet_length = snippet_length
        self.overview_chars = overview_chars
        self.fallback_topics = fallback_topics
        self.fallback_body_chars = fallback_body_chars
        self.max_context_tokens = max_context_tokens
        self.fuzzy_threshold = fuzzy_threshold
        self.fuzzy_limit = fuzzy_limit

    async def _query_vector(self, query: str) -> list[float] | None:
        vectors = await self.embed_fn([query])
        if not vectors or not vectors[0]:
            logger.warning("Query embedding came back empty; skipping semantic search")
            return None
        return vectors[0]

    async def semantic_search(self, unit_id: int, query: str, k: int) -> list[PassageHit]:
        """Passages above the similarity threshold, most similar first."""
        vector = await self._query_vector(query)
        if vector is None:
            return []
        return self.store.similarity_search(unit_id, vector, k, self.threshold)

    def title_matches(self, topics: list[TopicRecord], query: str) -> list[SearchResult]:
        """Topics whose title fuzzily matches the query, best first."""
        scored = [(title_ratio(query, t.title), t) for t in topics]
        scored = [(score, t) for score, t in scored if score >= self.fuzzy_threshold]
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [
            SearchResult(
                kind="feature",
                topic_title=t.title,
                topic_slug=t.slug,
                content=t.summary,
                score=score,
            )
            for score, t in scored[: self.fuzzy_limit]
        ]

    async def search(self, unit_id: int, query: str) -> list[SearchResult]:
        """Search a unit's passages semantically, joined to their topics.

        Returns:
            Up to search_match_count hits, most similar first, with content
            truncated to snippet_length.
        """
        topics_by_id = {t.id: t for t in self.store.list_topics(unit_id)}
        hits = await self.semantic_search(unit_id, query, self.search_match_count)
        results = []
        for hit in hits:
            topic = topics_by_id.get(hit.topic_id) if hit.topic_id is not None else None
            results.append(
                SearchResult(
                    kind="chunk",
                    topic_title=topic.title if topic else None,
                    topic_slug=topic.slug if topic else None,
                    content=hit.content[: self.snippet_length],
                    source_type=hit.source_type,
                    source_file=hit.source_file,
                    score=hit.similarity,
                )
            )
        return results

    async def search_merged(self, unit_id: int, query: str) -> list[SearchResult]:
        """Title matches and semantic hits merged into one result per topic."""
        fuzzy = self.title_matches(self.store.list_topics(unit_id), query)
        semantic = await self.search(unit_id, query)
        return merge_search_results(fuzzy, semantic)

    async def build_chat_context(
        self,
        unit: UnitRecord,
        question: str,
        page_context: str | None = None,
    ) -> ChatContext:
        """Assemble grounding context for a chat answer.

        Blocks, in order: an overview slice, the page the user is viewing,
        then semantic passages labelled with their source file. When no
        passage clears the threshold, topic summaries are injected instead so
        the model is never left without context. Blocks are added until the
        token budget would be exceeded.
        """
        blocks: list[str] = []
        if unit.overview:
            blocks.append(f"[Wiki Overview]\n{unit.overview[: self.overview_chars]}")
        if page_context:
            blocks.append(f"[Current Page Context]\n{page_context}")

        hits = await self.semantic_search(unit.id, question, self.chat_match_count)
        sources = []
        for hit in hits:
            prefix = f"[Source: {hit.source_file}]\n" if hit.source_file else ""
            blocks.append(f"{prefix}{hit.content}")
            if hit.source_file:
                sources.append(hit.source_file)

        used_fallback = not hits
        if used_fallback:
            topics = self.store.list_topics(unit.id)[: self.fallback_topics]
            logger.info(
                f"No passages above {self.threshold} for unit {unit.id}; "
                f"falling back to {len(topics)} topic summaries"
            )
            for t in topics:
                blocks.append(
                    f"[Feature: {t.title}]\nSummary: {t.summary}\n"
                    f"{t.markdown[: self.fallback_body_chars]}"
                )

        kept, tokens = self._fit_budget(blocks)
        return ChatContext(
            blocks=kept,
            used_fallback=used_fallback,
            sources=list(dict.fromkeys(sources)),
            token_count=tokens,
        )

    def _fit_budget(self, blocks: list[str]) -> tuple[list[str], int]:
        """Keep leading blocks while they fit the budget.

        A first block that alone exceeds the budget is cut to fit.
        """
        kept: list[str] = []
        total = 0
        for block in blocks:
            size = self.tokenizer.count(block)
            if total + size <= self.max_context_tokens:
                kept.append(block)
                total += size
                continue
            if not kept:
                head = self.tokenizer.split(block, self.max_context_tokens)[0]
                kept.append(head)
                total = self.tokenizer.count(head)
            break
        return kept, total
