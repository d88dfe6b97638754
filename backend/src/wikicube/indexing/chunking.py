"""Token-aware chunking of source files and wiki documents into passages.

Every passage is a context header followed by a slice of the original text.
Headers let a passage stand on its own once embedded (which file, which
imports, which topic and section it came from). The slices, concatenated in
emission order, reproduce the input exactly.
"""

from __future__ import annotations

import re
from collections import deque
from dataclasses import dataclass
from pathlib import PurePosixPath

from wikicube.constants import (
    CHUNK_TOKEN_BUDGET,
    MIN_SLICE_TOKENS,
    OVERVIEW_TITLE,
    SOURCE_TYPE_CODE,
    SOURCE_TYPE_DOCUMENT,
)
from wikicube.indexing.tokens import Tokenizer, TokenCounter


@dataclass(frozen=True)
class PassageDraft:
    """A budget-compliant passage ready for embedding.

    Attributes:
        content: Header followed by body; this is what gets embedded.
        header: Context header prepended to the body.
        body: Slice of the original text carried by this passage.
        source_type: "code" or "document".
        source_file: Repository path for code passages.
        topic_id: Owning topic, when the passage came from a topic page.
        symbol: Declaration name the code unit starts at, if any.
        section: Section heading for document passages, if any.
        token_count: Tokens in content.
    """

    content: str
    header: str
    body: str
    source_type: str
    source_file: str | None = None
    topic_id: int | None = None
    symbol: str | None = None
    section: str | None = None
    token_count: int = 0


def strip_nul(text: str) -> str:
    """Remove NUL characters, which SQLite text columns and JSON reject."""
    return text.replace("\x00", "")


# =============================================================================
# Boundary Patterns
# =============================================================================
# Matched against the stripped line. Each pattern captures the declared name in
# a group called "name". This is a line-prefix heuristic, not a parser.

_JS_TS = [
    r"^(?:export\s+)?(?:default\s+)?(?:async\s+)?function\*?\s+(?P<name>\w+)",
    r"^(?:export\s+)?(?:default\s+)?(?:abstract\s+)?class\s+(?P<name>\w+)",
    r"^(?:export\s+)?(?:declare\s+)?interface\s+(?P<name>\w+)",
    r"^(?:export\s+)?type\s+(?P<name>\w+)\s*(?:<[^>]*>)?\s*=",
    r"^(?:export\s+)?(?:const\s+)?enum\s+(?P<name>\w+)",
    r"^(?:export\s+)?(?:const|let|var)\s+(?P<name>\w+)\s*(?::[^=]+)?=\s*(?:async\s+)?"
    r"(?:function\b|\([^)]*\)\s*(?::[^=]+)?=>|\w+\s*=>)",
]

_PYTHON = [
    r"^(?:async\s+)?def\s+(?P<name>\w+)",
    r"^class\s+(?P<name>\w+)",
]

_RUST = [
    r"^(?:pub(?:\([^)]*\))?\s+)?(?:const\s+)?(?:async\s+)?(?:unsafe\s+)?"
    r"(?:extern\s+\"[^\"]*\"\s+)?fn\s+(?P<name>\w+)",
    r"^(?:pub(?:\([^)]*\))?\s+)?(?:struct|enum|trait|mod|union)\s+(?P<name>\w+)",
    r"^(?:unsafe\s+)?impl(?:<[^>]*>)?\s+(?:dyn\s+)?(?P<name>\w+)",
]

_GO = [
    r"^func\s+(?:\([^)]*\)\s*)?(?P<name>\w+)",
    r"^type\s+(?P<name>\w+)\s+(?:struct|interface)\b",
]

_RUBY = [
    r"^def\s+(?:self\.)?(?P<name>\w+[?!=]?)",
    r"^(?:class|module)\s+(?P<name>[\w:]+)",
]

_JVM = [
    r"^(?:(?:public|private|protected|internal|abstract|final|static|open|data|sealed|"
    r"enum|annotation|inner|value)\s+)*(?:class|interface|enum|object|record)\s+(?P<name>\w+)",
    r"^(?:(?:public|private|protected|internal|abstract|final|open|override|suspend|inline|"
    r"operator|infix|tailrec)\s+)*fun\s+(?:<[^>]*>\s*)?(?:\w+\.)?(?P<name>\w+)",
    r"^(?:public|private|protected)\s+(?:(?:static|final|abstract|synchronized|native|default)"
    r"\s+)*(?:<[^>]*>\s+)?[\w<>\[\],.?]+\s+(?P<name>\w+)\s*\(",
]

_FAMILIES: dict[str, list[str]] = {
    "js": _JS_TS,
    "python": _PYTHON,
    "rust": _RUST,
    "go": _GO,
    "ruby": _RUBY,
    "jvm": _JVM,
}

EXTENSION_FAMILIES: dict[str, str] = {
    ".js": "js",
    ".jsx": "js",
    ".mjs": "js",
    ".cjs": "js",
    ".ts": "js",
    ".tsx": "js",
    ".mts": "js",
    ".cts": "js",
    ".py": "python",
    ".pyi": "python",
    ".rs": "rust",
    ".go": "go",
    ".rb": "ruby",
    ".rake": "ruby",
    ".java": "jvm",
    ".kt": "jvm",
    ".kts": "jvm",
    ".scala": "jvm",
}

_COMPILED: dict[str, list[re.Pattern[str]]] = {
    family: [re.compile(p) for p in patterns] for family, patterns in _FAMILIES.items()
}
# Unknown extensions try every family
_ALL_PATTERNS = [p for patterns in _COMPILED.values() for p in patterns]


def boundary_patterns(path: str) -> list[re.Pattern[str]]:
    """Return the boundary patterns that apply to a file path."""
    family = EXTENSION_FAMILIES.get(PurePosixPath(path).suffix.lower())
    if family is None:
        return _ALL_PATTERNS
    return _COMPILED[family]


def match_boundary(line: str, patterns: list[re.Pattern[str]]) -> tuple[bool, str | None]:
    """Check whether a line opens a declaration.

    Args:
        line: Raw source line.
        patterns: Patterns from boundary_patterns().

    Returns:
        Tuple of (is_boundary, symbol_name). symbol_name is None when the
        matching pattern captured nothing.
    """
    stripped = line.strip()
    if not stripped:
        return False, None
    for pattern in patterns:
        match = pattern.match(stripped)
        if match:
            return True, match.groupdict().get("name")
    return False, None


# =============================================================================
# Import Blocks
# =============================================================================

_IMPORT_PREFIXES = (
    "import ",
    "from ",
    "require(",
    "use ",
    "package ",
    "#include",
    "#import",
    "using ",
    "extern crate ",
)
_COMMENT_PREFIXES = ("//", "#", "/*", "*")
_REQUIRE_ASSIGNMENT = re.compile(r"^(?:const|let|var)\s+.+=\s*require\(")


def extract_import_block(text: str) -> str:
    """Extract the leading import block of a source file.

    Takes lines from the top of the file while they are imports, blank lines
    or comments, stopping at the first line that is none of those.

    Returns:
        The import lines joined with newlines, or "" when the file does not
        open with any import.
    """
    kept: list[str] = []
    saw_import = False
    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith(_IMPORT_PREFIXES) or _REQUIRE_ASSIGNMENT.match(stripped):
            saw_import = True
            kept.append(line)
        elif not stripped or stripped.startswith(_COMMENT_PREFIXES):
            kept.append(line)
        else:
            break
    if not saw_import:
        return ""
    return "\n".join(kept).strip()


def code_header(path: str, imports: str = "") -> str:
    """Build the context header for a code passage."""
    if imports:
        return f"// File: {path}\n// Imports:\n{imports}\n\n"
    return f"// File: {path}\n\n"


def document_header(title: str, section: str | None = None) -> str:
    """Build the context header for a document passage."""
    if section:
        return f"[Feature: {title}] [Section: {section}]\n\n"
    return f"[Feature: {title}]\n\n"


# =============================================================================
# Logical Units
# =============================================================================


@dataclass(frozen=True)
class _Unit:
    body: str
    symbol: str | None = None
    is_header: bool = False


def split_code_units(path: str, text: str) -> list[_Unit]:
    """Split source text into declaration-sized units.

    Lines before the first boundary form the header unit. A pending block that
    holds only whitespace is folded into the next unit instead of being
    flushed on its own.
    """
    patterns = boundary_patterns(path)
    units: list[_Unit] = []
    pending: list[str] = []
    symbol: str | None = None
    in_header = True

    for line in text.splitlines(keepends=True):
        is_boundary, name = match_boundary(line, patterns)
        if is_boundary:
            if "".join(pending).strip():
                units.append(_Unit("".join(pending), symbol, in_header))
                pending = []
            symbol = name
            in_header = False
        pending.append(line)

    if pending:
        units.append(_Unit("".join(pending), symbol, in_header))
    return units


_SECTION_SPLIT = re.compile(r"^(?=## )", re.MULTILINE)


def split_sections(body: str) -> list[tuple[str | None, str]]:
    """Split markdown on level-two headings.

    Returns:
        (heading, text) pairs whose texts concatenate back to body. The text
        before the first heading has heading None.
    """
    sections: list[tuple[str | None, str]] = []
    carry = ""
    for part in _SECTION_SPLIT.split(body):
        if not part:
            continue
        if not part.strip():
            carry += part
            continue
        heading = None
        if part.startswith("## "):
            heading = part[3:].split("\n", 1)[0].strip() or None
        sections.append((heading, carry + part))
        carry = ""
    if carry and sections:
        heading, text = sections.pop()
        sections.append((heading, text + carry))
    return sections


# =============================================================================
# PassageChunker
# =============================================================================


class PassageChunker:
    """Split files and documents into passages within a token budget.

    The chunker is a pure function of its inputs: the same text always
    produces the same passages.
    """

    def __init__(
        self,
        tokenizer: Tokenizer | None = None,
        budget: int = CHUNK_TOKEN_BUDGET,
        min_slice_tokens: int = MIN_SLICE_TOKENS,
    ) -> None:
        """Initialize the chunker.

        Args:
            tokenizer: Token counter; defaults to tiktoken cl100k_base.
            budget: Maximum tokens per passage, header included.
            min_slice_tokens: Smallest body slice, guaranteeing progress when a
                header is very large.
        """
        if min_slice_tokens >= budget:
            raise ValueError("min_slice_tokens must be smaller than budget")
        self._tokenizer = tokenizer or TokenCounter()
        self._budget = budget
        self._floor = max(min_slice_tokens, 1)

    def chunk_code_file(self, path: str, text: str) -> list[PassageDraft]:
        """Chunk a source file at declaration boundaries.

        Args:
            path: Repository path of the file.
            text: Full file contents.

        Returns:
            Passages in file order; empty for empty or whitespace-only text.
        """
        if not text.strip():
            return []

        imports = extract_import_block(text)
        passages: list[PassageDraft] = []
        for unit in split_code_units(path, text):
            header = self._cap_header(code_header(path, "" if unit.is_header else imports))
            for body in self._fit(header, unit.body):
                passages.append(
                    self._draft(
                        header,
                        body,
                        SOURCE_TYPE_CODE,
                        source_file=path,
                        symbol=unit.symbol,
                    )
                )
        return passages

    def chunk_document(
        self,
        title: str,
        summary: str,
        body: str,
        topic_id: int | None = None,
    ) -> list[PassageDraft]:
        """Chunk a topic page into a summary passage plus section passages.

        The summary passage is always emitted first. Section passages carry
        the topic title and section heading in their header, and their bodies
        concatenate back to `body`.

        Args:
            title: Topic title.
            summary: One-paragraph topic summary.
            body: Generated markdown page.
            topic_id: Owning topic, stored on every passage.

        Returns:
            Passages in document order.
        """
        passages: list[PassageDraft] = []
        for piece in self._fit("", f"# {title}\n\n{summary}"):
            passages.append(self._draft("", piece, SOURCE_TYPE_DOCUMENT, topic_id=topic_id))
        passages.extend(self._chunk_sections(title, body, topic_id))
        return passages

    def chunk_overview(self, text: str) -> list[PassageDraft]:
        """Chunk the repository overview by section."""
        return self._chunk_sections(OVERVIEW_TITLE, text, None)

    def _chunk_sections(
        self, title: str, body: str, topic_id: int | None
    ) -> list[PassageDraft]:
        passages: list[PassageDraft] = []
        for heading, text in split_sections(body):
            header = self._cap_header(document_header(title, heading))
            for piece in self._fit(header, text):
                passages.append(
                    self._draft(
                        header,
                        piece,
                        SOURCE_TYPE_DOCUMENT,
                        topic_id=topic_id,
                        section=heading,
                    )
                )
        return passages

    def _cap_header(self, header: str) -> str:
        """Truncate a header so at least min_slice_tokens remain for the body."""
        limit = self._budget - self._floor
        while self._tokenizer.count(header) > limit:
            pieces = self._tokenizer.split(header, limit)
            header = pieces[0]
            limit -= 1
            if limit < 1:
                return ""
        return header

    def _fit(self, header: str, body: str) -> list[str]:
        """Slice body so that header + slice never exceeds the budget."""
        if self._tokenizer.count(header + body) <= self._budget:
            return [body]

        room = max(self._budget - self._tokenizer.count(header), self._floor)
        fitted: list[str] = []
        queue = deque(self._tokenizer.split(body, room))
        while queue:
            piece = queue.popleft()
            size = self._tokenizer.count(piece)
            overflow = self._tokenizer.count(header + piece) - self._budget
            if overflow <= 0 or size <= 1:
                fitted.append(piece)
                continue
            smaller = self._tokenizer.split(piece, max(size - overflow, 1))
            if len(smaller) == 1:
                fitted.append(piece)
                continue
            queue.extendleft(reversed(smaller))
        return fitted

    def _draft(self, header: str, body: str, source_type: str, **refs) -> PassageDraft:
        content = header + body
        token_count = self._tokenizer.count(content)
        assert token_count <= self._budget, (
            f"passage of {token_count} tokens exceeds budget {self._budget}"
        )
        return PassageDraft(
            content=content,
            header=header,
            body=body,
            source_type=source_type,
            token_count=token_count,
            **refs,
        )
