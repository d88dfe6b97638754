"""LLM-backed generation of topics, topic pages and the overview."""

import logging
import time

from wikicube.generation.errors import (
    OverviewSynthesisError,
    PageGenerationError,
    TopicIdentificationError,
)
from wikicube.generation.prompts import (
    IDENTIFY_TOPICS_SYSTEM,
    OVERVIEW_FALLBACK,
    OVERVIEW_SYSTEM,
    get_identify_topics_prompt,
    get_overview_prompt,
    get_page_prompts,
)
from wikicube.generation.schemas import (
    GeneratedPage,
    IdentifiedTopic,
    SchemaError,
    parse_page,
    parse_topics,
)
from wikicube.llm.client import LLMClient, LLMError
from wikicube.repo.url_parser import RepoId, build_github_url

logger = logging.getLogger(__name__)


class WikiGenerator:
    """Generates wiki content using an LLM.

    Each method is one model call. Failures surface as the pipeline's error
    types so the orchestrator can decide whether they are fatal.
    """

    def __init__(self, llm_client: LLMClient):
        """Initialize the generator.

        Args:
            llm_client: LLM client for generating content.
        """
        self.llm_client = llm_client

    async def identify_topics(
        self,
        repo_name: str,
        tree: str,
        readme: str,
        manifests: str,
        description: str,
    ) -> list[IdentifiedTopic]:
        """Ask the model for the repository's user-facing features.

        Raises:
            TopicIdentificationError: On a failed call, a malformed response,
                or an empty feature list.
        """
        prompt = get_identify_topics_prompt(repo_name, tree, readme, manifests, description)
        start = time.perf_counter()
        try:
            raw = await self.llm_client.generate_with_json(
                prompt, system_prompt=IDENTIFY_TOPICS_SYSTEM
            )
        except LLMError as e:
            raise TopicIdentificationError(f"Topic identification failed: {e}") from e

        result = parse_topics(raw)
        if isinstance(result, SchemaError):
            raise TopicIdentificationError(f"Malformed topic response: {result.details}")

        topics = result.value.features
        logger.info(
            f"Identified {len(topics)} topics for {repo_name} "
            f"in {time.perf_counter() - start:.1f}s"
        )
        if not topics:
            raise TopicIdentificationError("No features identified in repository")
        return topics

    async def generate_page(
        self,
        repo: RepoId,
        branch: str,
        topic: IdentifiedTopic,
        files: dict[str, str],
    ) -> GeneratedPage:
        """Generate the wiki page for one topic.

        Entry points and citations the model left without a URL get one built
        from the file path and line numbers.

        Raises:
            PageGenerationError: On a failed call or a malformed response.
        """
        system, prompt = get_page_prompts(
            repo.full_name, repo.owner, repo.name, branch, topic.title, topic.summary, files
        )
        try:
            raw = await self.llm_client.generate_with_json(prompt, system_prompt=system)
        except LLMError as e:
            raise PageGenerationError(f"Page generation failed for {topic.title!r}: {e}") from e

        result = parse_page(raw)
        if isinstance(result, SchemaError):
            raise PageGenerationError(f"Malformed page for {topic.title!r}: {result.details}")

        page = result.value
        for entry in page.entry_points:
            if not entry.url:
                entry.url = build_github_url(repo.owner, repo.name, branch, entry.file, entry.line)
        for citation in page.citations:
            if not citation.url:
                citation.url = build_github_url(
                    repo.owner,
                    repo.name,
                    branch,
                    citation.file,
                    citation.start_line,
                    citation.end_line,
                )
        return page

    async def synthesize_overview(
        self,
        repo_name: str,
        description: str,
        readme: str,
        topics: list[tuple[str, str]],
    ) -> str:
        """Write the repository overview from the generated topics.

        Args:
            repo_name: owner/name of the repository.
            description: Repository description.
            readme: README text.
            topics: (title, summary) pairs of the generated topics.

        Returns:
            Overview markdown; a placeholder when the model returns nothing.

        Raises:
            OverviewSynthesisError: If the model call fails.
        """
        prompt = get_overview_prompt(repo_name, description, readme, topics)
        try:
            overview = await self.llm_client.generate(prompt, system_prompt=OVERVIEW_SYSTEM)
        except LLMError as e:
            raise OverviewSynthesisError(f"Overview synthesis failed: {e}") from e

        if not overview.strip():
            logger.warning(f"Empty overview for {repo_name}; using placeholder")
            return OVERVIEW_FALLBACK
        return overview
