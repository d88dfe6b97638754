# backend/src/wikicube/generation/orchestrator.py
"""Analysis pipeline orchestrator.

This module provides the AnalysisOrchestrator class that drives one analysis
run of a repository through its phases:

1. Context - Fetch metadata, the file tree, README and manifests (fatal)
2. Topics - Identify the repository's features (fatal)
3. Pages - Fetch files and generate one page per topic (per-topic failures
   are isolated)
4. Overview - Synthesize the overview from the generated topics (fatal)
5. Embedding - Chunk everything and embed it (failed batches are dropped)
6. Done - Mark the unit complete
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Awaitable, TypeVar

from wikicube.concurrency import batch_all
from wikicube.constants import (
    CALL_TIMEOUT_SECONDS,
    FETCH_CONCURRENCY,
    MANIFEST_MAX_CHARS,
    MAX_FILES_PER_TOPIC,
    MAX_TOPICS,
    README_MAX_CHARS,
    RUN_TIMEOUT_MINUTES,
    TOPIC_CONCURRENCY,
    TREE_MAX_PATHS,
)
from wikicube.generation.errors import (
    ContextGatherError,
    PipelineCancelled,
    PipelineError,
)
from wikicube.generation.schemas import GeneratedPage, IdentifiedTopic
from wikicube.generation.status import (
    EventType,
    ProgressCallback,
    ProgressEvent,
    UnitStatus,
    check_transition,
)
from wikicube.indexing.chunking import PassageChunker, PassageDraft, strip_nul
from wikicube.indexing.embedder import EmbeddingBatcher
from wikicube.repo.file_filter import filter_tree, format_tree
from wikicube.repo.url_parser import RepoId

logger = logging.getLogger(__name__)

T = TypeVar("T")


def slugify(text: str) -> str:
    """Lowercase text and join its alphanumeric runs with hyphens."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug or "topic"


def unique_slugs(topics: list[IdentifiedTopic]) -> list[str]:
    """Slug per topic, from its id or title, suffixed -2, -3... on collision."""
    seen: dict[str, int] = {}
    slugs = []
    for topic in topics:
        base = slugify(topic.id or topic.title)
        seen[base] = seen.get(base, 0) + 1
        slugs.append(base if seen[base] == 1 else f"{base}-{seen[base]}")
    return slugs


@dataclass
class RepoContext:
    """Everything gathered about the repository before topic identification."""

    branch: str
    description: str
    paths: list[str]
    tree: str
    readme: str
    manifests: str


@dataclass
class TopicOutcome:
    """A topic whose page was generated and persisted."""

    topic_id: int
    topic: IdentifiedTopic
    page: GeneratedPage
    files: dict[str, str] = field(default_factory=dict)


@dataclass
class _RunState:
    unit_id: int
    repo: RepoId
    on_event: ProgressCallback | None
    cancel_event: asyncio.Event | None
    status: UnitStatus = UnitStatus.PENDING

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


class AnalysisOrchestrator:
    """Orchestrates one analysis run of a repository.

    Collaborators are injected so tests can substitute fakes:

    - content_source: fetch_metadata / fetch_tree / fetch_files /
      fetch_project_context (see GitHubContentSource)
    - generator: identify_topics / generate_page / synthesize_overview
      (see WikiGenerator)
    - store: unit, topic and passage persistence (see WikiStore)

    Attributes:
        max_topics: Identified topics beyond this count are dropped.
        max_files_per_topic: Candidate files fetched per topic.
        topic_concurrency: Topics processed at once.
        fetch_concurrency: File downloads in flight per topic.
        call_timeout: Per-call timeout in seconds for external calls.
    """

    def __init__(
        self,
        content_source,
        generator,
        store,
        embedder: EmbeddingBatcher,
        chunker: PassageChunker | None = None,
        max_topics: int = MAX_TOPICS,
        max_files_per_topic: int = MAX_FILES_PER_TOPIC,
        topic_concurrency: int = TOPIC_CONCURRENCY,
        fetch_concurrency: int = FETCH_CONCURRENCY,
        call_timeout: float | None = CALL_TIMEOUT_SECONDS,
    ):
        self.content_source = content_source
        self.generator = generator
        self.store = store
        self.embedder = embedder
        self.chunker = chunker or PassageChunker()
        self.max_topics = max_topics
        self.max_files_per_topic = max_files_per_topic
        self.topic_concurrency = topic_concurrency
        self.fetch_concurrency = fetch_concurrency
        self.call_timeout = call_timeout

    async def run(
        self,
        repo: RepoId,
        on_event: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> int:
        """Run the complete analysis pipeline for a repository.

        Any prior topics and passages of the repository are deleted first.
        A failure in context gathering, topic identification or overview
        synthesis aborts the run: the unit's status becomes "error", an
        error event is emitted and the exception propagates. Topics that fail
        individually are dropped and reported as partial.

        Args:
            repo: Repository to analyze.
            on_event: Optional async callback for progress events.
            cancel_event: Optional signal; once set, no new external calls are
                started and the run ends with PipelineCancelled. Work already
                persisted is left in place.

        Returns:
            The analysis unit id.

        Raises:
            PipelineError: On a fatal phase failure or cancellation.
        """
        unit_id = self.store.reset_unit(repo.owner, repo.name)
        state = _RunState(unit_id=unit_id, repo=repo, on_event=on_event, cancel_event=cancel_event)
        logger.info(f"Starting analysis of {repo} (unit {unit_id})")

        try:
            await self._set_status(
                state, UnitStatus.FETCHING_TREE, "Fetching repository structure..."
            )
            context = await self._gather_context(state)

            self._check_cancelled(state)
            await self._set_status(
                state, UnitStatus.IDENTIFYING_FEATURES, "Identifying features..."
            )
            topics = await self._identify_topics(state, context)

            self._check_cancelled(state)
            await self._set_status(
                state, UnitStatus.GENERATING_PAGES, f"Generating {len(topics)} pages..."
            )
            outcomes = await self._generate_pages(state, context, topics)
            self._check_cancelled(state)

            await self._emit(state, self._status_event(state.status, "Synthesizing overview..."))
            overview = await self._call(
                self.generator.synthesize_overview(
                    repo.full_name,
                    context.description,
                    context.readme,
                    [(o.topic.title, o.topic.summary) for o in outcomes],
                )
            )
            self.store.set_overview(unit_id, overview)

            self._check_cancelled(state)
            await self._set_status(state, UnitStatus.EMBEDDING, "Building search index...")
            await self._embed_and_store(state, overview, outcomes)

            await self._set_status(state, UnitStatus.DONE, "Analysis complete")
        except (Exception, asyncio.CancelledError) as e:
            await self._fail(state, e)
            raise

        logger.info(f"Finished analysis of {repo} (unit {unit_id})")
        await self._emit(state, ProgressEvent(type=EventType.DONE, unit_id=unit_id))
        return unit_id

    async def _emit(self, state: _RunState, event: ProgressEvent) -> None:
        if state.on_event:
            await state.on_event(event)

    @staticmethod
    def _status_event(status: UnitStatus, message: str) -> ProgressEvent:
        return ProgressEvent(type=EventType.STATUS, status=status, message=message)

    async def _set_status(self, state: _RunState, status: UnitStatus, message: str) -> None:
        check_transition(state.status, status)
        self.store.update_status(state.unit_id, status.value, message)
        state.status = status
        await self._emit(state, self._status_event(status, message))

    async def _fail(self, state: _RunState, error: BaseException) -> None:
        """Move the unit to "error" and report it; never masks the original error."""
        if isinstance(error, asyncio.CancelledError):
            message = "Analysis was cancelled"
        else:
            message = str(error) or type(error).__name__
        logger.error(f"Analysis of {state.repo} (unit {state.unit_id}) failed: {message}")

        if not state.status.is_terminal:
            try:
                self.store.update_status(state.unit_id, UnitStatus.ERROR.value, message)
                state.status = UnitStatus.ERROR
            except Exception as store_error:
                logger.error(
                    f"Could not record error status for unit {state.unit_id}: {store_error}"
                )
        try:
            await self._emit(state, ProgressEvent(type=EventType.ERROR, message=message))
        except Exception as emit_error:
            logger.warning(f"Could not deliver error event for {state.repo}: {emit_error}")

    def _check_cancelled(self, state: _RunState) -> None:
        if state.cancelled:
            raise PipelineCancelled(f"Analysis of {state.repo} was cancelled")

    async def _call(self, awaitable: Awaitable[T]) -> T:
        """Await an external call under the per-call timeout.

        Raises:
            PipelineError: If the call does not finish in time.
        """
        if self.call_timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=self.call_timeout)
        except asyncio.TimeoutError as e:
            raise PipelineError(f"External call timed out after {self.call_timeout:g}s") from e

    # =========================================================================
    # Phases
    # =========================================================================

    async def _gather_context(self, state: _RunState) -> RepoContext:
        """Fetch metadata, tree and project context.

        Raises:
            ContextGatherError: If any of them cannot be fetched.
        """
        repo = state.repo
        try:
            metadata = await self._call(self.content_source.fetch_metadata(repo))
            branch = metadata.default_branch
            entries = await self._call(self.content_source.fetch_tree(repo, branch))
            paths = [e.path for e in filter_tree(entries)]
            project = await self._call(
                self.content_source.fetch_project_context(repo, branch, paths)
            )
        except Exception as e:
            raise ContextGatherError(f"Could not gather context for {repo}: {e}") from e

        self.store.update_metadata(state.unit_id, branch, metadata.description)
        logger.info(f"{repo}@{branch}: {len(entries)} tree entries, {len(paths)} after filtering")
        return RepoContext(
            branch=branch,
            description=metadata.description,
            paths=paths,
            tree=format_tree(paths, TREE_MAX_PATHS),
            readme=project.readme[:README_MAX_CHARS],
            manifests=project.manifests[:MANIFEST_MAX_CHARS],
        )

    async def _identify_topics(
        self, state: _RunState, context: RepoContext
    ) -> list[IdentifiedTopic]:
        topics = await self._call(
            self.generator.identify_topics(
                state.repo.full_name,
                context.tree,
                context.readme,
                context.manifests,
                context.description,
            )
        )
        if len(topics) > self.max_topics:
            logger.info(f"Keeping {self.max_topics} of {len(topics)} topics for {state.repo}")
            topics = topics[: self.max_topics]

        await self._emit(
            state,
            ProgressEvent(type=EventType.TOPICS_LISTED, topics=[t.title for t in topics]),
        )
        return topics

    async def _generate_pages(
        self,
        state: _RunState,
        context: RepoContext,
        topics: list[IdentifiedTopic],
    ) -> list[TopicOutcome]:
        """Fetch files and generate a page for every topic, isolating failures.

        Returns:
            Outcomes of the topics that succeeded, in topic order.
        """
        slugs = unique_slugs(topics)

        async def process(item: tuple[int, IdentifiedTopic, str]) -> TopicOutcome | None:
            index, topic, slug = item
            if state.cancelled:
                return None
            await self._emit(
                state, ProgressEvent(type=EventType.TOPIC_STARTED, topic_title=topic.title)
            )
            try:
                outcome = await self._process_topic(state, context, topic, slug, index)
            except PipelineCancelled:
                raise
            except Exception as e:
                logger.warning(
                    f"Topic {topic.title!r} failed for {state.repo} (unit {state.unit_id}): {e}"
                )
                await self._emit(
                    state,
                    ProgressEvent(
                        type=EventType.TOPIC_COMPLETED, topic_title=topic.title, partial=True
                    ),
                )
                return None
            await self._emit(
                state, ProgressEvent(type=EventType.TOPIC_COMPLETED, topic_title=topic.title)
            )
            return outcome

        items = [(i, topic, slug) for i, (topic, slug) in enumerate(zip(topics, slugs))]
        results = await batch_all(items, process, self.topic_concurrency)
        outcomes = [r for r in results if r is not None]

        failed = len(topics) - len(outcomes)
        if failed and not state.cancelled:
            logger.warning(f"{failed} of {len(topics)} topics failed for {state.repo}")
        return outcomes

    async def _process_topic(
        self,
        state: _RunState,
        context: RepoContext,
        topic: IdentifiedTopic,
        slug: str,
        index: int,
    ) -> TopicOutcome:
        paths = topic.relevant_files[: self.max_files_per_topic]
        files = await self._call(
            self.content_source.fetch_files(
                state.repo, context.branch, paths, self.fetch_concurrency
            )
        )
        self._check_cancelled(state)
        page = await self._call(
            self.generator.generate_page(state.repo, context.branch, topic, files)
        )
        topic_id = self.store.insert_topic(
            unit_id=state.unit_id,
            slug=slug,
            title=topic.title,
            summary=topic.summary,
            markdown=page.body,
            entry_points=[e.model_dump(by_alias=True) for e in page.entry_points],
            citations=[c.model_dump(by_alias=True) for c in page.citations],
            sort_order=index,
        )
        return TopicOutcome(topic_id=topic_id, topic=topic, page=page, files=files)

    def _build_passages(self, overview: str, outcomes: list[TopicOutcome]) -> list[PassageDraft]:
        """Chunk the overview, every topic page and every fetched source file.

        A file fetched by several topics is chunked once; the last topic to
        fetch it supplies its text. NUL characters are removed before
        chunking so token counts match the stored text.
        """
        passages = self.chunker.chunk_overview(strip_nul(overview))
        source_files: dict[str, str] = {}
        for outcome in outcomes:
            passages.extend(
                self.chunker.chunk_document(
                    strip_nul(outcome.topic.title),
                    strip_nul(outcome.topic.summary),
                    strip_nul(outcome.page.body),
                    topic_id=outcome.topic_id,
                )
            )
            source_files.update(outcome.files)
        for path, text in source_files.items():
            passages.extend(self.chunker.chunk_code_file(path, strip_nul(text)))
        return passages

    async def _embed_and_store(
        self, state: _RunState, overview: str, outcomes: list[TopicOutcome]
    ) -> None:
        passages = self._build_passages(overview, outcomes)
        if not passages:
            logger.info(f"No passages to embed for {state.repo}")
            return

        batches = await self.embedder.embed_batches(
            [p.content for p in passages], cancel_event=state.cancel_event
        )
        self._check_cancelled(state)

        kept: list[PassageDraft] = []
        vectors: list[list[float]] = []
        dropped: list[int] = []
        for batch in batches:
            if not batch.ok:
                dropped.append(batch.index)
                continue
            kept.extend(passages[batch.offset : batch.offset + len(batch.texts)])
            vectors.extend(batch.vectors)

        if dropped:
            logger.warning(
                f"Dropping {len(passages) - len(kept)} passages for {state.repo} "
                f"(unit {state.unit_id}): embedding batches {dropped} failed"
            )
        stored = self.store.insert_passages(state.unit_id, kept, vectors)
        logger.info(f"Stored {stored} passages for {state.repo} (unit {state.unit_id})")


async def run_with_timeout(
    orchestrator: AnalysisOrchestrator,
    repo: RepoId,
    on_event: ProgressCallback | None = None,
    cancel_event: asyncio.Event | None = None,
    timeout_minutes: float = RUN_TIMEOUT_MINUTES,
) -> int:
    """Run the pipeline under a wall-clock ceiling.

    Raises:
        PipelineError: If the run does not finish within timeout_minutes, or
            fails for any other reason.
    """
    try:
        return await asyncio.wait_for(
            orchestrator.run(repo, on_event=on_event, cancel_event=cancel_event),
            timeout=timeout_minutes * 60,
        )
    except asyncio.TimeoutError as e:
        raise PipelineError(f"Analysis timed out after {timeout_minutes:g} minutes") from e

