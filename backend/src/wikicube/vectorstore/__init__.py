"""Vector store module for semantic search."""

from wikicube.vectorstore.store import VectorStore

__all__ = ["VectorStore"]
