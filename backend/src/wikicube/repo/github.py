"""GitHub content source backed by the REST API and raw file host."""

import logging
from dataclasses import dataclass, field

import httpx

from wikicube.concurrency import batch_all
from wikicube.constants import (
    CALL_TIMEOUT_SECONDS,
    FETCH_CONCURRENCY,
    MANIFEST_FILES,
    README_FILES,
)
from wikicube.repo.file_filter import TreeEntry
from wikicube.repo.url_parser import RepoId

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
RAW_HOST = "https://raw.githubusercontent.com"


class ContentSourceError(Exception):
    """Raised when repository metadata or the file tree cannot be fetched."""

    pass


@dataclass
class RepoMetadata:
    """Repository metadata needed by the pipeline."""

    owner: str
    name: str
    default_branch: str
    description: str = ""
    homepage: str | None = None
    topics: list[str] = field(default_factory=list)
    is_private: bool = False


@dataclass
class ProjectContext:
    """README and manifest text used for topic identification."""

    readme: str = ""
    manifests: str = ""


class GitHubContentSource:
    """Fetch repository metadata, trees and file contents from GitHub.

    Metadata and tree failures raise ContentSourceError. Individual file
    fetches never raise: files that fail are left out of the result.
    """

    def __init__(
        self,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = CALL_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the content source.

        Args:
            token: Optional GitHub token for private repositories and higher
                rate limits.
            client: Optional shared HTTP client; one is created if omitted.
            timeout: Per-request timeout in seconds.
        """
        self._token = token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout), follow_redirects=True
        )

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": "wikicube/1.0",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def fetch_metadata(self, repo: RepoId) -> RepoMetadata:
        url = f"{GITHUB_API}/repos/{repo.owner}/{repo.name}"
        try:
            response = await self._client.get(url, headers=self._headers())
        except httpx.HTTPError as e:
            raise ContentSourceError(f"Could not reach GitHub for {repo}: {e}") from e
        if response.status_code != 200:
            raise ContentSourceError(
                f"GitHub API error {response.status_code} for {repo}: {response.text[:200]}"
            )

        data = response.json()
        return RepoMetadata(
            owner=repo.owner,
            name=repo.name,
            default_branch=data.get("default_branch") or "main",
            description=data.get("description") or "",
            homepage=data.get("homepage") or None,
            topics=list(data.get("topics") or []),
            is_private=bool(data.get("private", False)),
        )

    async def fetch_tree(self, repo: RepoId, branch: str) -> list[TreeEntry]:
        """List every entry of the branch's tree, recursively."""
        url = f"{GITHUB_API}/repos/{repo.owner}/{repo.name}/git/trees/{branch}"
        try:
            response = await self._client.get(
                url, headers=self._headers(), params={"recursive": "1"}
            )
        except httpx.HTTPError as e:
            raise ContentSourceError(f"Could not fetch tree for {repo}: {e}") from e
        if response.status_code != 200:
            raise ContentSourceError(f"Failed to fetch tree for {repo}: {response.status_code}")

        data = response.json()
        if data.get("truncated"):
            logger.warning(f"Tree for {repo}@{branch} was truncated by the GitHub API")
        return [
            TreeEntry(path=e["path"], type=e.get("type", "blob"), size=e.get("size"))
            for e in data.get("tree", [])
        ]

    async def fetch_file(self, repo: RepoId, branch: str, path: str) -> str:
        """Fetch one file's text; returns "" if it cannot be fetched."""
        url = f"{RAW_HOST}/{repo.owner}/{repo.name}/{branch}/{path}"
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else None
        try:
            response = await self._client.get(url, headers=headers)
        except httpx.HTTPError as e:
            logger.debug(f"Skipping {path} in {repo}: {e}")
            return ""
        if response.status_code != 200:
            logger.debug(f"Skipping {path} in {repo}: HTTP {response.status_code}")
            return ""
        return response.text

    async def fetch_files(
        self,
        repo: RepoId,
        branch: str,
        paths: list[str],
        concurrency: int = FETCH_CONCURRENCY,
    ) -> dict[str, str]:
        """Fetch several files; paths that fail or are empty are omitted.

        Returns:
            Mapping of path to text, in the order of `paths`.
        """

        async def fetch(path: str) -> tuple[str, str]:
            return path, await self.fetch_file(repo, branch, path)

        results = await batch_all(paths, fetch, concurrency)
        return {path: content for path, content in results if content}

    async def fetch_project_context(
        self, repo: RepoId, branch: str, tree_paths: list[str]
    ) -> ProjectContext:
        """Fetch the README and any manifest files present in the tree."""
        by_lower = {p.lower(): p for p in tree_paths}
        readme_path = next(
            (by_lower[r.lower()] for r in README_FILES if r.lower() in by_lower), None
        )
        manifest_paths = [by_lower[m.lower()] for m in MANIFEST_FILES if m.lower() in by_lower]

        wanted = ([readme_path] if readme_path else []) + manifest_paths
        contents = await self.fetch_files(repo, branch, wanted)

        manifests = "\n\n".join(
            f"--- {path} ---\n{contents[path]}" for path in manifest_paths if path in contents
        )
        return ProjectContext(
            readme=contents.get(readme_path, "") if readme_path else "",
            manifests=manifests,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
