"""Repository access: identifiers, tree filtering and GitHub content."""

from wikicube.repo.file_filter import TreeEntry, filter_tree, format_tree
from wikicube.repo.github import (
    ContentSourceError,
    GitHubContentSource,
    ProjectContext,
    RepoMetadata,
)
from wikicube.repo.url_parser import RepoId, build_github_url, parse_repo_id

__all__ = [
    "ContentSourceError",
    "GitHubContentSource",
    "ProjectContext",
    "RepoId",
    "RepoMetadata",
    "TreeEntry",
    "build_github_url",
    "filter_tree",
    "format_tree",
    "parse_repo_id",
]
