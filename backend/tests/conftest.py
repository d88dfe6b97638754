"""Shared pytest fixtures for all tests.

These fixtures properly clean up resources to prevent file descriptor leaks.
"""

import gc

import pytest

from wikicube.db.connection import Database
from wikicube.db.migrations import run_migrations
from wikicube.db.wiki_store import WikiStore
from wikicube.vectorstore.store import VectorStore


class CharTokenizer:
    """One token per character, so budget arithmetic in tests is exact."""

    def count(self, text: str) -> int:
        return len(text)

    def split(self, text: str, max_tokens: int) -> list[str]:
        if not text:
            return []
        step = max(max_tokens, 1)
        return [text[i : i + step] for i in range(0, len(text), step)]


@pytest.fixture(autouse=True)
def cleanup_after_test():
    """Clean up resources after each test to prevent file descriptor leaks.

    This runs automatically after every test to help garbage collect
    any lingering ChromaDB or SQLite connections.
    """
    yield
    # Force garbage collection to release file handles
    gc.collect()


@pytest.fixture
def char_tokenizer():
    return CharTokenizer()


@pytest.fixture
def temp_vectorstore(tmp_path):
    """Create a temporary vector store that cleans up properly.

    This fixture should be used instead of creating VectorStore instances
    directly in tests to ensure ChromaDB connections are released.
    """
    index_path = tmp_path / "index"
    index_path.mkdir()
    store = VectorStore(index_path)
    yield store
    # Clean up to release file handles
    store.close()
    gc.collect()


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary migrated database that cleans up properly."""
    db = Database(tmp_path / "test.db")
    run_migrations(db)
    yield db
    # Clean up to release file handles
    db.close()
    gc.collect()


@pytest.fixture
def wiki_store(temp_db, temp_vectorstore):
    """WikiStore over a temporary database and vector store."""
    return WikiStore(temp_db, temp_vectorstore)


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    """Point WIKICUBE_DATA_DIR at a temp directory and clear cached settings."""
    from wikicube.api.deps import get_settings, get_tokenizer
    from wikicube.config import load_settings

    data_dir = tmp_path / "wikicube"
    data_dir.mkdir()
    monkeypatch.setenv("WIKICUBE_DATA_DIR", str(data_dir))
    for var in ("ACTIVE_PROVIDER", "ACTIVE_MODEL", "EMBEDDING_MODEL", "GITHUB_TOKEN"):
        monkeypatch.delenv(var, raising=False)

    load_settings.cache_clear()
    get_settings.cache_clear()
    get_tokenizer.cache_clear()
    yield data_dir
    load_settings.cache_clear()
    get_settings.cache_clear()
    get_tokenizer.cache_clear()
