"""ChromaDB vector store for passage embeddings."""

import gc
import logging
from pathlib import Path
from typing import Any

import chromadb
from chromadb.config import Settings

logger = logging.getLogger(__name__)


class VectorStore:
    """Vector store wrapper for ChromaDB.

    Vectors are computed by the embedding batcher and stored as-is; the
    collection never embeds text itself. The collection uses cosine space, so
    query distances convert to similarity as 1 - distance.
    """

    COLLECTION_NAME = "wikicube_passages"

    def __init__(self, persist_path: Path) -> None:
        """Initialize vector store with persistent storage.

        Args:
            persist_path: Directory path for ChromaDB persistence.
        """
        self._client = chromadb.PersistentClient(
            path=str(persist_path),
            settings=Settings(anonymized_telemetry=False),
        )
        self._collection = self._get_collection()

    def _get_collection(self) -> chromadb.Collection:
        return self._client.get_or_create_collection(
            name=self.COLLECTION_NAME,
            metadata={"hnsw:space": "cosine"},
            embedding_function=None,
        )

    def add_embeddings(
        self,
        ids: list[str],
        embeddings: list[list[float]],
        documents: list[str],
        metadatas: list[dict[str, Any]] | None = None,
    ) -> None:
        """Add pre-computed embeddings to the store.

        Args:
            ids: Unique identifiers, one per vector.
            embeddings: Vectors to store.
            documents: Text stored alongside each vector.
            metadatas: Optional metadata dictionaries, one per vector.
        """
        if not ids:
            return
        self._collection.add(
            ids=ids,
            embeddings=embeddings,  # type: ignore[arg-type]
            documents=documents,
            metadatas=metadatas,  # type: ignore[arg-type]
        )

    def query(
        self,
        query_embedding: list[float],
        n_results: int = 10,
        where: dict[str, Any] | None = None,
    ) -> list[tuple[str, float]]:
        """Query for the nearest stored vectors.

        Args:
            query_embedding: Query vector.
            n_results: Maximum number of results to return.
            where: Optional metadata filter.

        Returns:
            (id, cosine distance) pairs, nearest first.
        """
        if self._collection.count() == 0:
            return []
        result = self._collection.query(
            query_embeddings=[query_embedding],  # type: ignore[arg-type]
            n_results=n_results,
            where=where,
            include=["distances"],
        )
        ids = (result.get("ids") or [[]])[0]
        distances = (result.get("distances") or [[]])[0]
        return list(zip(ids, distances))

    def delete_where(self, where: dict[str, Any]) -> None:
        """Delete every vector whose metadata matches the filter."""
        self._collection.delete(where=where)

    def clear(self) -> None:
        """Clear all vectors from the collection."""
        # ChromaDB doesn't have a direct clear method, so we delete and recreate
        self._client.delete_collection(name=self.COLLECTION_NAME)
        self._collection = self._get_collection()

    def close(self) -> None:
        """Release the client so ChromaDB can close its file handles."""
        if self._client is not None:
            try:
                if hasattr(self._client, "_identifier_to_system"):
                    for system in list(self._client._identifier_to_system.values()):
                        if hasattr(system, "stop"):
                            system.stop()
            except Exception as e:
                logger.debug(f"Ignoring error while stopping ChromaDB systems: {e}")

        self._collection = None  # type: ignore[assignment]
        self._client = None  # type: ignore[assignment]

        # Force garbage collection to release file handles
        gc.collect()
