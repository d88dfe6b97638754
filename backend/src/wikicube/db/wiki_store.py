"""Persistence for analysis units, topics, passages and chat history.

Relational data lives in SQLite; passage vectors live in ChromaDB under the
passage id, with unit_id in their metadata so a whole unit can be searched or
wiped at once.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from itertools import islice
from typing import Any, Iterable, Iterator

from wikicube.constants import CHAT_PREVIEW_CHARS, PASSAGE_INSERT_BATCH_SIZE
from wikicube.db.connection import Database
from wikicube.indexing.chunking import PassageDraft, strip_nul
from wikicube.vectorstore.store import VectorStore

logger = logging.getLogger(__name__)


def _clean(text: str | None) -> str | None:
    return None if text is None else strip_nul(text)


def _batched(items: Iterable, n: int) -> Iterator[list]:
    it = iter(items)
    while batch := list(islice(it, n)):
        yield batch


@dataclass
class UnitRecord:
    """A stored analysis unit."""

    id: int
    owner: str
    name: str
    default_branch: str
    description: str | None
    status: str
    status_message: str | None
    overview: str | None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass
class TopicRecord:
    """A stored topic page."""

    id: int
    unit_id: int
    slug: str
    title: str
    summary: str
    markdown: str
    entry_points: list[dict[str, Any]] = field(default_factory=list)
    citations: list[dict[str, Any]] = field(default_factory=list)
    sort_order: int = 0


@dataclass
class PassageHit:
    """A passage returned by similarity search."""

    id: str
    content: str
    source_type: str
    source_file: str | None
    topic_id: int | None
    similarity: float


@dataclass
class ChatMessage:
    """One stored chat turn."""

    role: str
    content: str
    created_at: str | None = None


@dataclass
class ChatSession:
    """Summary of one chat session on a unit.

    Attributes:
        session_id: Client-chosen session identifier.
        preview: Start of the session's first question.
        last_activity: Timestamp of the newest message.
        message_count: Messages in the session, both roles.
    """

    session_id: str
    preview: str
    last_activity: str
    message_count: int


class WikiStore:
    """Store for everything an analysis run produces."""

    def __init__(self, db: Database, vectorstore: VectorStore) -> None:
        self._db = db
        self._vectors = vectorstore

    # =========================================================================
    # Units
    # =========================================================================

    def reset_unit(self, owner: str, name: str) -> int:
        """Create the unit, or reset an existing one for a fresh run.

        Resetting sets status back to pending, clears the overview and deletes
        every topic and passage of the unit. Chat history is kept.

        Returns:
            The unit id.
        """
        row = self._db.execute(
            "SELECT id FROM units WHERE owner = ? AND name = ?", (owner, name)
        ).fetchone()
        if row is None:
            with self._db.transaction():
                cursor = self._db.execute(
                    "INSERT INTO units (owner, name) VALUES (?, ?)", (owner, name)
                )
            unit_id = int(cursor.lastrowid)  # type: ignore[arg-type]
            logger.info(f"Created unit {unit_id} for {owner}/{name}")
            return unit_id

        unit_id = int(row["id"])
        # Vectors first: a crash after this point leaves rows that the next
        # reset deletes again
        self._vectors.delete_where({"unit_id": unit_id})
        with self._db.transaction():
            self._db.execute("DELETE FROM passages WHERE unit_id = ?", (unit_id,))
            self._db.execute("DELETE FROM topics WHERE unit_id = ?", (unit_id,))
            self._db.execute(
                """
                UPDATE units
                SET status = 'pending', status_message = NULL, overview = NULL,
                    updated_at = datetime('now')
                WHERE id = ?
                """,
                (unit_id,),
            )
        logger.info(f"Reset unit {unit_id} ({owner}/{name}) for regeneration")
        return unit_id

    def update_status(self, unit_id: int, status: str, message: str | None = None) -> None:
        with self._db.transaction():
            self._db.execute(
                """
                UPDATE units SET status = ?, status_message = ?, updated_at = datetime('now')
                WHERE id = ?
                """,
                (status, _clean(message), unit_id),
            )

    def update_metadata(self, unit_id: int, default_branch: str, description: str | None) -> None:
        with self._db.transaction():
            self._db.execute(
                "UPDATE units SET default_branch = ?, description = ? WHERE id = ?",
                (default_branch, _clean(description), unit_id),
            )

    def set_overview(self, unit_id: int, overview: str) -> None:
        with self._db.transaction():
            self._db.execute(
                "UPDATE units SET overview = ?, updated_at = datetime('now') WHERE id = ?",
                (_clean(overview), unit_id),
            )

    def get_unit(self, unit_id: int) -> UnitRecord | None:
        row = self._db.execute("SELECT * FROM units WHERE id = ?", (unit_id,)).fetchone()
        return self._unit_from_row(row) if row else None

    def find_unit(self, owner: str, name: str) -> UnitRecord | None:
        row = self._db.execute(
            "SELECT * FROM units WHERE owner = ? AND name = ?", (owner, name)
        ).fetchone()
        return self._unit_from_row(row) if row else None

    def list_units(self, status: str | None = None) -> list[UnitRecord]:
        """Units, most recently updated first, optionally filtered by status."""
        sql = "SELECT * FROM units"
        params: tuple[Any, ...] = ()
        if status is not None:
            sql += " WHERE status = ?"
            params = (status,)
        rows = self._db.execute(sql + " ORDER BY updated_at DESC, id DESC", params).fetchall()
        return [self._unit_from_row(row) for row in rows]

    @staticmethod
    def _unit_from_row(row) -> UnitRecord:
        return UnitRecord(
            id=row["id"],
            owner=row["owner"],
            name=row["name"],
            default_branch=row["default_branch"],
            description=row["description"],
            status=row["status"],
            status_message=row["status_message"],
            overview=row["overview"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # =========================================================================
    # Topics
    # =========================================================================

    def insert_topic(
        self,
        unit_id: int,
        slug: str,
        title: str,
        summary: str,
        markdown: str,
        entry_points: list[dict[str, Any]],
        citations: list[dict[str, Any]],
        sort_order: int,
    ) -> int:
        """Persist one generated topic page and return its id."""
        with self._db.transaction():
            cursor = self._db.execute(
                """
                INSERT INTO topics
                    (unit_id, slug, title, summary, markdown, entry_points, citations,
                     sort_order)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    unit_id,
                    slug,
                    _clean(title),
                    _clean(summary),
                    _clean(markdown),
                    _clean(json.dumps(entry_points)),
                    _clean(json.dumps(citations)),
                    sort_order,
                ),
            )
        return int(cursor.lastrowid)  # type: ignore[arg-type]

    def list_topics(self, unit_id: int) -> list[TopicRecord]:
        """Topics of a unit in sort order."""
        rows = self._db.execute(
            "SELECT * FROM topics WHERE unit_id = ? ORDER BY sort_order, id", (unit_id,)
        ).fetchall()
        return [self._topic_from_row(row) for row in rows]

    def get_topic_by_slug(self, unit_id: int, slug: str) -> TopicRecord | None:
        row = self._db.execute(
            "SELECT * FROM topics WHERE unit_id = ? AND slug = ?", (unit_id, slug)
        ).fetchone()
        return self._topic_from_row(row) if row else None

    @staticmethod
    def _topic_from_row(row) -> TopicRecord:
        return TopicRecord(
            id=row["id"],
            unit_id=row["unit_id"],
            slug=row["slug"],
            title=row["title"],
            summary=row["summary"],
            markdown=row["markdown"],
            entry_points=json.loads(row["entry_points"] or "[]"),
            citations=json.loads(row["citations"] or "[]"),
            sort_order=row["sort_order"],
        )

    # =========================================================================
    # Passages
    # =========================================================================

    def insert_passages(
        self,
        unit_id: int,
        passages: list[PassageDraft],
        vectors: list[list[float]],
    ) -> int:
        """Persist passages together with their vectors.

        Args:
            unit_id: Owning unit.
            passages: Passages to store.
            vectors: One vector per passage, aligned by position.

        Returns:
            Number of passages stored.

        Raises:
            ValueError: If passages and vectors differ in length.
        """
        if len(passages) != len(vectors):
            raise ValueError(
                f"{len(passages)} passages but {len(vectors)} vectors; refusing to misalign"
            )

        stored = 0
        for batch in _batched(zip(passages, vectors), PASSAGE_INSERT_BATCH_SIZE):
            ids = [uuid.uuid4().hex for _ in batch]
            contents = [_clean(p.content) or "" for p, _ in batch]
            with self._db.transaction():
                self._db.executemany(
                    """
                    INSERT INTO passages
                        (id, unit_id, topic_id, source_type, source_file, content, token_count)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            pid,
                            unit_id,
                            p.topic_id,
                            p.source_type,
                            p.source_file,
                            text,
                            p.token_count,
                        )
                        for pid, (p, _), text in zip(ids, batch, contents)
                    ],
                )
            self._vectors.add_embeddings(
                ids=ids,
                embeddings=[vector for _, vector in batch],
                documents=contents,
                metadatas=[self._passage_metadata(unit_id, p) for p, _ in batch],
            )
            stored += len(batch)
        return stored

    @staticmethod
    def _passage_metadata(unit_id: int, passage: PassageDraft) -> dict[str, Any]:
        # ChromaDB metadata values cannot be None
        metadata: dict[str, Any] = {"unit_id": unit_id, "source_type": passage.source_type}
        if passage.topic_id is not None:
            metadata["topic_id"] = passage.topic_id
        if passage.source_file:
            metadata["source_file"] = passage.source_file
        return metadata

    def count_passages(self, unit_id: int) -> int:
        row = self._db.execute(
            "SELECT COUNT(*) AS n FROM passages WHERE unit_id = ?", (unit_id,)
        ).fetchone()
        return int(row["n"])

    def similarity_search(
        self,
        unit_id: int,
        query_vector: list[float],
        k: int,
        threshold: float,
    ) -> list[PassageHit]:
        """Passages of a unit whose cosine similarity to the query exceeds threshold.

        Returns:
            Up to k hits, most similar first.
        """
        matches = [
            (pid, 1.0 - distance)
            for pid, distance in self._vectors.query(
                query_vector, n_results=k, where={"unit_id": unit_id}
            )
        ]
        matches = [(pid, sim) for pid, sim in matches if sim > threshold]
        if not matches:
            return []

        placeholders = ",".join("?" for _ in matches)
        rows = self._db.execute(
            f"SELECT * FROM passages WHERE id IN ({placeholders})",
            tuple(pid for pid, _ in matches),
        ).fetchall()
        by_id = {row["id"]: row for row in rows}

        hits = [
            PassageHit(
                id=pid,
                content=by_id[pid]["content"],
                source_type=by_id[pid]["source_type"],
                source_file=by_id[pid]["source_file"],
                topic_id=by_id[pid]["topic_id"],
                similarity=similarity,
            )
            for pid, similarity in matches
            if pid in by_id
        ]
        hits.sort(key=lambda hit: hit.similarity, reverse=True)
        return hits[:k]

    # =========================================================================
    # Chat
    # =========================================================================

    def add_chat_message(self, unit_id: int, session_id: str, role: str, content: str) -> None:
        with self._db.transaction():
            self._db.execute(
                "INSERT INTO chat_messages (unit_id, session_id, role, content)"
                " VALUES (?, ?, ?, ?)",
                (unit_id, session_id, role, _clean(content)),
            )

    def list_chat_messages(
        self, unit_id: int, session_id: str, limit: int | None = None
    ) -> list[ChatMessage]:
        """Most recent messages of a session, oldest first."""
        sql = (
            "SELECT role, content, created_at FROM chat_messages"
            " WHERE unit_id = ? AND session_id = ?"
        )
        params: tuple[Any, ...] = (unit_id, session_id)
        if limit is not None:
            sql += " ORDER BY id DESC LIMIT ?"
            params += (limit,)
            rows = list(reversed(self._db.execute(sql, params).fetchall()))
        else:
            rows = self._db.execute(sql + " ORDER BY id", params).fetchall()
        return [
            ChatMessage(role=row["role"], content=row["content"], created_at=row["created_at"])
            for row in rows
        ]

    def list_chat_sessions(self, unit_id: int) -> list[ChatSession]:
        """Chat sessions of a unit, most recently active first."""
        rows = self._db.execute(
            """
            SELECT
                session_id,
                COUNT(*) AS message_count,
                MAX(created_at) AS last_activity,
                (
                    SELECT first.content FROM chat_messages AS first
                    WHERE first.unit_id = m.unit_id
                      AND first.session_id = m.session_id
                      AND first.role = 'user'
                    ORDER BY first.id
                    LIMIT 1
                ) AS first_question
            FROM chat_messages AS m
            WHERE unit_id = ?
            GROUP BY session_id
            ORDER BY MAX(id) DESC
            """,
            (unit_id,),
        ).fetchall()
        return [
            ChatSession(
                session_id=row["session_id"],
                preview=(row["first_question"] or "")[:CHAT_PREVIEW_CHARS],
                last_activity=row["last_activity"],
                message_count=int(row["message_count"]),
            )
            for row in rows
        ]

    def close(self) -> None:
        self._db.close()
        self._vectors.close()
