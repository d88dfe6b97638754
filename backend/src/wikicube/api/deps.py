"""FastAPI dependency injection functions."""

import logging
from functools import lru_cache

from wikicube.config import Config, load_settings
from wikicube.db.connection import Database
from wikicube.db.migrations import run_migrations
from wikicube.db.wiki_store import WikiStore
from wikicube.generation.generator import WikiGenerator
from wikicube.generation.orchestrator import AnalysisOrchestrator
from wikicube.indexing.chunking import PassageChunker
from wikicube.indexing.embedder import EmbeddingBatcher
from wikicube.indexing.tokens import TokenCounter
from wikicube.llm.client import LLMClient
from wikicube.qa.chat import ChatService
from wikicube.qa.retrieval import RetrievalAssembler
from wikicube.repo.github import GitHubContentSource
from wikicube.vectorstore.store import VectorStore

logger = logging.getLogger(__name__)


@lru_cache
def get_settings() -> Config:
    """Get cached application settings."""
    return load_settings()


# Process-wide instances, created on first use
_store_instance: WikiStore | None = None
_llm_instance: LLMClient | None = None
_content_source_instance: GitHubContentSource | None = None


def get_store() -> WikiStore:
    """Get the wiki store with migrations applied."""
    global _store_instance
    if _store_instance is None:
        settings = get_settings()
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        db = Database(settings.db_path)
        run_migrations(db)
        _store_instance = WikiStore(db, VectorStore(settings.chroma_path))
    return _store_instance


def get_llm() -> LLMClient:
    """Get LLM client instance."""
    global _llm_instance
    if _llm_instance is None:
        settings = get_settings()
        _llm_instance = LLMClient(
            provider=settings.active_provider,
            model=settings.active_model,
            api_key=settings.llm_api_key,
            endpoint=settings.llm_endpoint,
            log_path=settings.llm_log_path,
            embedding_model=settings.embedding.model,
            embedding_dimensions=settings.embedding.dimensions,
            embedding_api_key=settings.embedding_api_key,
        )
    return _llm_instance


def get_content_source() -> GitHubContentSource:
    """Get the shared GitHub content source."""
    global _content_source_instance
    if _content_source_instance is None:
        settings = get_settings()
        _content_source_instance = GitHubContentSource(
            token=settings.github_token,
            timeout=settings.pipeline.call_timeout_seconds,
        )
    return _content_source_instance


@lru_cache
def get_tokenizer() -> TokenCounter:
    return TokenCounter(get_settings().chunking.encoding)


def get_embedder() -> EmbeddingBatcher:
    settings = get_settings()
    return EmbeddingBatcher(
        get_llm().embed,
        batch_size=settings.embedding.batch_size,
        concurrency=settings.embedding.concurrency,
        max_attempts=settings.embedding.max_attempts,
        backoff_min=settings.embedding.backoff_min_seconds,
        backoff_max=settings.embedding.backoff_max_seconds,
        call_timeout=settings.pipeline.call_timeout_seconds,
    )


def get_orchestrator() -> AnalysisOrchestrator:
    """Build an orchestrator wired to the configured collaborators."""
    settings = get_settings()
    chunker = PassageChunker(
        tokenizer=get_tokenizer(),
        budget=settings.chunking.chunk_tokens,
        min_slice_tokens=settings.chunking.min_slice_tokens,
    )
    return AnalysisOrchestrator(
        content_source=get_content_source(),
        generator=WikiGenerator(get_llm()),
        store=get_store(),
        embedder=get_embedder(),
        chunker=chunker,
        max_topics=settings.pipeline.max_topics,
        max_files_per_topic=settings.pipeline.max_files_per_topic,
        topic_concurrency=settings.pipeline.topic_concurrency,
        fetch_concurrency=settings.pipeline.fetch_concurrency,
        call_timeout=settings.pipeline.call_timeout_seconds,
    )


def get_assembler() -> RetrievalAssembler:
    """Build a retrieval assembler from retrieval settings."""
    settings = get_settings()
    retrieval = settings.retrieval
    return RetrievalAssembler(
        store=get_store(),
        embed_fn=get_llm().embed,
        tokenizer=get_tokenizer(),
        search_match_count=retrieval.search_match_count,
        chat_match_count=retrieval.chat_match_count,
        threshold=retrieval.similarity_threshold,
        snippet_length=retrieval.snippet_max_length,
        overview_chars=retrieval.overview_context_chars,
        fallback_topics=settings.pipeline.max_topics,
        fallback_body_chars=retrieval.fallback_body_chars,
        max_context_tokens=retrieval.max_context_tokens,
        fuzzy_threshold=retrieval.fuzzy_title_threshold,
        fuzzy_limit=retrieval.fuzzy_title_limit,
    )


def get_chat_service() -> ChatService:
    settings = get_settings()
    return ChatService(
        store=get_store(),
        assembler=get_assembler(),
        llm_client=get_llm(),
        temperature=settings.llm.chat_temperature,
    )


async def close_instances() -> None:
    """Close shared clients and stores (shutdown and tests)."""
    global _store_instance, _llm_instance, _content_source_instance
    if _content_source_instance is not None:
        await _content_source_instance.aclose()
        _content_source_instance = None
    if _store_instance is not None:
        _store_instance.close()
        _store_instance = None
    _llm_instance = None
    get_settings.cache_clear()
    get_tokenizer.cache_clear()
