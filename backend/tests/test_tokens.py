"""Token counting and splitting tests (tiktoken)."""

import pytest

from wikicube.indexing.chunking import PassageChunker
from wikicube.indexing.tokens import TokenCounter


@pytest.fixture(scope="module")
def counter():
    return TokenCounter()


def test_count_matches_encoding(counter):
    assert counter.count("") == 0
    assert counter.count("hello world") == 2


def test_special_token_text_is_counted_not_rejected(counter):
    """Source files may contain special-token strings verbatim."""
    assert counter.count("<|endoftext|>") > 1


def test_split_short_text_is_single_piece(counter):
    assert counter.split("hello world", 10) == ["hello world"]
    assert counter.split("", 10) == []


def test_split_respects_limit_and_reconstructs(counter):
    text = "def handler(event, context):\n    return {'status': 200}\n" * 40

    pieces = counter.split(text, 25)

    assert len(pieces) > 1
    assert "".join(pieces) == text
    assert all(counter.count(p) <= 27 for p in pieces)


def test_split_never_breaks_multibyte_characters(counter):
    text = "日本語のテキスト🙂" * 50

    pieces = counter.split(text, 3)

    assert "".join(pieces) == text
    assert all(piece for piece in pieces)


def test_chunker_with_real_tokenizer_stays_within_budget(counter):
    chunker = PassageChunker(tokenizer=counter, budget=128, min_slice_tokens=16)
    text = "import os\n\n" + "".join(f"def f{i}():\n    return {i} * 'abc'\n\n" for i in range(200))

    passages = chunker.chunk_code_file("gen.py", text)

    assert all(p.token_count <= 128 for p in passages)
    assert "".join(p.body for p in passages) == text
