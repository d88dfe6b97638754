"""Filtering of repository trees down to documentation-worthy source files."""

import re
from dataclasses import dataclass

# Matched against the full repository path
DEFAULT_EXCLUDES = [
    # Dependencies
    r"^node_modules/",
    r"^vendor/",
    r"^\.venv/",
    r"^venv/",
    r"^__pycache__/",
    r"\.pyc$",
    # VCS and editor state
    r"^\.git/",
    r"^\.idea/",
    r"^\.vscode/",
    r"^\.husky/",
    r"^\.DS_Store$",
    r"^\.env",
    # Build outputs
    r"^dist/",
    r"^build/",
    r"^out/",
    r"^\.next/",
    r"^coverage/",
    r"^target/",
    # Lock files (large, not useful for docs)
    r"\.lock$",
    r"package-lock\.json$",
    # Minified/bundled assets
    r"\.min\.(js|css)$",
    r"\.map$",
    # Binary and media files
    r"(?i)\.(png|jpg|jpeg|gif|svg|ico|webp|mp4|mp3|woff2?|ttf|eot|otf|zip|tar|gz|pdf)$",
    # Fixtures, snapshots, CI and migrations
    r"^tests?/fixtures?/",
    r"^__tests__/snapshots?/",
    r"^\.github/workflows/",
    r"^migrations?/",
]

_EXCLUDE_PATTERNS = [re.compile(p) for p in DEFAULT_EXCLUDES]


@dataclass(frozen=True)
class TreeEntry:
    """One entry of a repository tree listing."""

    path: str
    type: str  # "blob" or "tree"
    size: int | None = None


def is_excluded(path: str) -> bool:
    """Check whether a path matches any default exclude pattern."""
    return any(p.search(path) for p in _EXCLUDE_PATTERNS)


def filter_tree(entries: list[TreeEntry]) -> list[TreeEntry]:
    """Keep files (blobs) that no exclude pattern matches, in tree order."""
    return [e for e in entries if e.type == "blob" and not is_excluded(e.path)]


def format_tree(paths: list[str], max_paths: int | None = None) -> str:
    """Format paths one per line for model context.

    Args:
        paths: Paths to list.
        max_paths: Optional cap; a trailing note reports how many were cut.
    """
    if max_paths is not None and len(paths) > max_paths:
        omitted = len(paths) - max_paths
        return "\n".join(paths[:max_paths]) + f"\n... ({omitted} more files)"
    return "\n".join(paths)
