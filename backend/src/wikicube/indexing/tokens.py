"""Token counting and token-aligned splitting via tiktoken.

Uses cl100k_base encoding by default (matches the OpenAI embedding tokenizer).
"""

from typing import Protocol

import tiktoken

from wikicube.constants import TOKENIZER_ENCODING


class Tokenizer(Protocol):
    """What the chunker needs from a tokenizer."""

    def count(self, text: str) -> int: ...

    def split(self, text: str, max_tokens: int) -> list[str]: ...


class TokenCounter:
    """Count and split text using a tiktoken encoding."""

    def __init__(self, encoding_name: str = TOKENIZER_ENCODING):
        self._encoder = tiktoken.get_encoding(encoding_name)

    def count(self, text: str) -> int:
        """Return the number of tokens in text."""
        return len(self._encode(text))

    def split(self, text: str, max_tokens: int) -> list[str]:
        """Split text into consecutive pieces of at most max_tokens tokens.

        Cuts fall on token boundaries. A cut that would land inside a
        multi-byte character is moved back to the previous character
        boundary, so every piece is valid text and "".join(pieces) == text.

        Args:
            text: Text to split.
            max_tokens: Upper bound on tokens per piece (at least 1).

        Returns:
            Ordered pieces; empty list for empty text.
        """
        if not text:
            return []
        max_tokens = max(max_tokens, 1)
        tokens = self._encode(text)
        if len(tokens) <= max_tokens:
            return [text]

        token_bytes = [self._encoder.decode_single_token_bytes(t) for t in tokens]
        pieces: list[str] = []
        start = 0
        while start < len(token_bytes):
            cut = min(start + max_tokens, len(token_bytes))
            piece = _decode(token_bytes[start:cut])
            while piece is None and cut - start > 1:
                cut -= 1
                piece = _decode(token_bytes[start:cut])
            # A single character spanning several tokens: take all of them
            while piece is None:
                cut += 1
                piece = _decode(token_bytes[start:cut])
            pieces.append(piece)
            start = cut
        return pieces

    def _encode(self, text: str) -> list[int]:
        # Source files routinely contain strings like "<|endoftext|>"
        return self._encoder.encode(text, disallowed_special=())


def _decode(parts: list[bytes]) -> str | None:
    try:
        return b"".join(parts).decode("utf-8")
    except UnicodeDecodeError:
        return None
