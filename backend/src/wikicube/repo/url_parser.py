"""Parse GitHub repository identifiers."""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class RepoId:
    """An owner/name pair identifying a GitHub repository."""

    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def __str__(self) -> str:
        return self.full_name


_NAME = r"[A-Za-z0-9_.-]+"

# Accepts owner/repo with or without a github.com prefix and scheme
REPO_PATTERN = re.compile(
    rf"^(?:(?:https?://)?(?:www\.)?github\.com/)?(?P<owner>{_NAME})/(?P<name>{_NAME})$"
)

# Full GitHub URL, optionally pointing inside the repository
GITHUB_URL_PATTERN = re.compile(
    rf"^https?://(?:www\.)?github\.com/(?P<owner>{_NAME})/(?P<name>{_NAME})(?:/.*)?$"
)


def parse_repo_id(value: str) -> RepoId:
    """
    Parse a repository identifier.

    Supports:
    - owner/repo
    - github.com/owner/repo
    - https://github.com/owner/repo (trailing slash and .git allowed)
    - https://github.com/owner/repo/tree/main/src (extra path ignored)

    Raises ValueError for anything else.
    """
    cleaned = value.strip().rstrip("/")
    if cleaned.endswith(".git"):
        cleaned = cleaned[: -len(".git")]

    match = REPO_PATTERN.match(cleaned) or GITHUB_URL_PATTERN.match(cleaned)
    if not match:
        raise ValueError(f"Invalid GitHub repository: {value}")

    owner, name = match.group("owner"), match.group("name")
    if owner in (".", "..") or name in (".", ".."):
        raise ValueError(f"Invalid GitHub repository: {value}")
    return RepoId(owner=owner, name=name)


def build_github_url(
    owner: str,
    repo: str,
    branch: str,
    file: str,
    start_line: int | None = None,
    end_line: int | None = None,
) -> str:
    """Build a link to a file, optionally anchored to a line range."""
    url = f"https://github.com/{owner}/{repo}/blob/{branch}/{file}"
    if start_line:
        url += f"#L{start_line}"
        if end_line and end_line != start_line:
            url += f"-L{end_line}"
    return url
