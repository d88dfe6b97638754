# backend/src/wikicube/generation/prompts.py
"""Prompt templates for topic identification, page generation and chat."""

from dataclasses import dataclass
from typing import Any


@dataclass
class PromptTemplate:
    """A template for generating prompts with variable substitution."""

    template: str

    def render(self, **kwargs: Any) -> str:
        """Render the template with the given variables.

        Raises:
            KeyError: If a required variable is missing.
        """
        return self.template.format(**kwargs)


# =============================================================================
# Topic Identification
# =============================================================================

IDENTIFY_TOPICS_SYSTEM = """You are a senior technical writer analyzing a GitHub repository to create user-facing documentation.

Given a repository's file tree, README, and metadata, identify ALL high-level user-facing features and subsystems.

IMPORTANT:
- Think about what the software DOES for users, not how it's technically organized
- BAD examples: "Utils", "API layer", "Frontend", "Backend", "Config", "Types"
- GOOD examples: "User Authentication", "Real-time Notifications", "Data Export", "Search & Filtering"
- Be exhaustive: identify every meaningful feature, not just the obvious ones
- For each feature, list ALL specific file paths that implement it (routes, components, services, models, middleware, tests, configs)
- A file can belong to multiple features if relevant
- Only list paths that appear in the file tree

Return ONLY valid JSON with this exact structure:
{
  "features": [
    {
      "id": "kebab-case-id",
      "title": "Human Readable Title",
      "summary": "2-3 sentence description of what this feature does for users",
      "relevantFiles": ["path/to/file1.ts", "path/to/file2.py"]
    }
  ]
}"""

IDENTIFY_TOPICS_TEMPLATE = PromptTemplate(
    template="""Repository: {repo_name}
Description: {description}

{manifests}
{readme}

File tree:
{tree}"""
)


# =============================================================================
# Topic Page
# =============================================================================

PAGE_SYSTEM_TEMPLATE = PromptTemplate(
    template="""You are a senior technical writer creating wiki documentation for a GitHub repository.

Generate a comprehensive wiki page for the "{title}" feature of {repo_name}.

Structure your response as:
1. **Overview**: what this feature does for users (2-3 paragraphs)
2. **How It Works**: user-facing explanation of the feature's behavior
3. **Technical Details**: architecture, key modules, data flow, algorithms
4. **Configuration & Setup**: any config files, env vars, or setup needed
5. **Key Entry Points**: main functions/classes/routes that developers should know

Use "## " headings for each section.

CRITICAL RULES for citations:
- Every technical claim MUST reference specific code with inline citations
- Use this exact format: [filename#L42](https://github.com/{owner}/{repo}/blob/{branch}/filename#L42)
- Reference actual line numbers from the provided source code
- Only cite lines that actually contain the referenced code

Return ONLY valid JSON:
{{
  "markdownContent": "full markdown content with inline citations",
  "entryPoints": [
    {{ "file": "path/to/file.ts", "line": 42, "symbol": "functionName", "githubUrl": "full github url" }}
  ],
  "citations": [
    {{ "file": "path/to/file.ts", "startLine": 42, "endLine": 50, "githubUrl": "full github url" }}
  ]
}}"""
)

PAGE_TEMPLATE = PromptTemplate(
    template="""Feature: {title}
Summary: {summary}

Source files:
{files}"""
)


# =============================================================================
# Overview
# =============================================================================

OVERVIEW_SYSTEM = """You are a senior technical writer. Generate a concise overview page for a GitHub repository wiki.
Include:
1. A clear description of what the project does (from a user's perspective)
2. Key capabilities and use cases
3. Architecture overview (if discernible), with a mermaid diagram if helpful
4. A summary of all features listed below

Use "## " headings for sections. Write in markdown. Be concise but thorough.
Do NOT wrap in a JSON object; return raw markdown only."""

OVERVIEW_TEMPLATE = PromptTemplate(
    template="""Repository: {repo_name}
Description: {description}
{readme}
Features identified:
{topics}"""
)

OVERVIEW_FALLBACK = "# Overview\n\nNo overview generated."


# =============================================================================
# Chat
# =============================================================================

CHAT_SYSTEM_TEMPLATE = PromptTemplate(
    template="""You are a helpful assistant answering questions about a codebase wiki.

Use ONLY the provided context to answer. If the context doesn't contain enough information, say so honestly.
Cite specific features, files, and line numbers when possible.
Be concise and accurate.

Context from the wiki and codebase:
{context}"""
)

CONTEXT_SEPARATOR = "\n\n---\n\n"


def get_identify_topics_prompt(
    repo_name: str,
    tree: str,
    readme: str,
    manifests: str,
    description: str,
) -> str:
    """Generate the user prompt for topic identification.

    Args:
        repo_name: owner/name of the repository.
        tree: Filtered file tree, one path per line.
        readme: README text, possibly empty.
        manifests: Manifest files joined with "--- path ---" separators.
        description: Repository description from metadata.

    Returns:
        The rendered prompt string.
    """
    return IDENTIFY_TOPICS_TEMPLATE.render(
        repo_name=repo_name,
        description=description or "Not provided",
        manifests=f"Project manifests:\n{manifests}\n" if manifests else "",
        readme=f"README:\n{readme}\n" if readme else "No README found.",
        tree=tree,
    )


def format_source_files(files: dict[str, str]) -> str:
    """Format fetched files as "--- path ---" sections."""
    return "\n\n".join(f"--- {path} ---\n{content}" for path, content in files.items())


def get_page_prompts(
    repo_name: str,
    owner: str,
    repo: str,
    branch: str,
    title: str,
    summary: str,
    files: dict[str, str],
) -> tuple[str, str]:
    """Generate (system, user) prompts for one topic page."""
    system = PAGE_SYSTEM_TEMPLATE.render(
        title=title, repo_name=repo_name, owner=owner, repo=repo, branch=branch
    )
    user = PAGE_TEMPLATE.render(title=title, summary=summary, files=format_source_files(files))
    return system, user


def get_overview_prompt(
    repo_name: str,
    description: str,
    readme: str,
    topics: list[tuple[str, str]],
) -> str:
    """Generate the user prompt for overview synthesis.

    Args:
        repo_name: owner/name of the repository.
        description: Repository description from metadata.
        readme: README text, possibly empty.
        topics: (title, summary) of every successfully generated topic.

    Returns:
        The rendered prompt string.
    """
    topic_list = "\n".join(
        f"{i}. **{title}**: {summary}" for i, (title, summary) in enumerate(topics, start=1)
    )
    return OVERVIEW_TEMPLATE.render(
        repo_name=repo_name,
        description=description or "Not provided in repo metadata",
        readme=f"\nREADME excerpt:\n{readme}\n" if readme else "",
        topics=topic_list,
    )


def get_chat_system_prompt(context_blocks: list[str]) -> str:
    return CHAT_SYSTEM_TEMPLATE.render(context=CONTEXT_SEPARATOR.join(context_blocks))
