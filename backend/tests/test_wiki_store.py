"""WikiStore persistence tests."""

import pytest

from wikicube.indexing.chunking import PassageDraft


def draft(content, source_type="code", source_file="a.py", topic_id=None):
    return PassageDraft(
        content=content,
        header="",
        body=content,
        source_type=source_type,
        source_file=source_file,
        topic_id=topic_id,
        token_count=len(content),
    )


def add_topic(store, unit_id: int, slug: str, sort_order: int = 0) -> int:
    return store.insert_topic(
        unit_id=unit_id,
        slug=slug,
        title=slug.title(),
        summary=f"{slug} summary",
        markdown=f"## {slug}\nbody",
        entry_points=[{"file": "a.py", "line": 3, "symbol": "main", "githubUrl": "u"}],
        citations=[],
        sort_order=sort_order,
    )


class TestUnits:
    def test_reset_creates_unit_once(self, wiki_store):
        first = wiki_store.reset_unit("acme", "widgets")
        second = wiki_store.reset_unit("acme", "widgets")

        assert first == second
        unit = wiki_store.get_unit(first)
        assert unit.full_name == "acme/widgets"
        assert unit.status == "pending"

    def test_reset_clears_previous_run_but_keeps_chat(self, wiki_store):
        unit_id = wiki_store.reset_unit("acme", "widgets")
        topic_id = add_topic(wiki_store, unit_id, "auth")
        wiki_store.insert_passages(unit_id, [draft("x", topic_id=topic_id)], [[1.0, 0.0]])
        wiki_store.set_overview(unit_id, "# Overview")
        wiki_store.update_status(unit_id, "done", "ok")
        wiki_store.add_chat_message(unit_id, "s1", "user", "hi")

        wiki_store.reset_unit("acme", "widgets")

        unit = wiki_store.get_unit(unit_id)
        assert unit.status == "pending"
        assert unit.overview is None
        assert wiki_store.list_topics(unit_id) == []
        assert wiki_store.count_passages(unit_id) == 0
        assert wiki_store.similarity_search(unit_id, [1.0, 0.0], 5, 0.0) == []
        assert len(wiki_store.list_chat_messages(unit_id, "s1")) == 1

    def test_status_and_metadata(self, wiki_store):
        unit_id = wiki_store.reset_unit("acme", "widgets")

        wiki_store.update_status(unit_id, "embedding", "Building search index...")
        wiki_store.update_metadata(unit_id, "trunk", "Widget factory")

        unit = wiki_store.find_unit("acme", "widgets")
        assert unit.status == "embedding"
        assert unit.status_message == "Building search index..."
        assert unit.default_branch == "trunk"
        assert unit.description == "Widget factory"

    def test_missing_unit(self, wiki_store):
        assert wiki_store.get_unit(999) is None
        assert wiki_store.find_unit("nobody", "nothing") is None

    def test_list_units_filters_by_status_newest_first(self, wiki_store, temp_db):
        older = wiki_store.reset_unit("acme", "older")
        newer = wiki_store.reset_unit("acme", "newer")
        pending = wiki_store.reset_unit("acme", "pending")
        for unit_id in (older, newer):
            wiki_store.update_status(unit_id, "done")
        with temp_db.transaction():
            temp_db.execute(
                "UPDATE units SET updated_at = ? WHERE id = ?", ("2026-01-01 00:00:00", older)
            )
            temp_db.execute(
                "UPDATE units SET updated_at = ? WHERE id = ?", ("2026-02-01 00:00:00", newer)
            )

        done = wiki_store.list_units(status="done")

        assert [u.id for u in done] == [newer, older]
        assert done[0].updated_at == "2026-02-01 00:00:00"
        assert done[0].created_at is not None
        assert {u.id for u in wiki_store.list_units()} == {older, newer, pending}


class TestTopics:
    def test_topics_listed_in_sort_order_with_json_fields(self, wiki_store):
        unit_id = wiki_store.reset_unit("acme", "widgets")
        add_topic(wiki_store, unit_id, "second", sort_order=1)
        add_topic(wiki_store, unit_id, "first", sort_order=0)

        topics = wiki_store.list_topics(unit_id)

        assert [t.slug for t in topics] == ["first", "second"]
        assert topics[0].entry_points[0]["githubUrl"] == "u"
        assert topics[0].citations == []

    def test_get_topic_by_slug(self, wiki_store):
        unit_id = wiki_store.reset_unit("acme", "widgets")
        add_topic(wiki_store, unit_id, "auth")

        assert wiki_store.get_topic_by_slug(unit_id, "auth").title == "Auth"
        assert wiki_store.get_topic_by_slug(unit_id, "missing") is None

    def test_nul_characters_are_stripped(self, wiki_store):
        unit_id = wiki_store.reset_unit("acme", "widgets")
        wiki_store.insert_topic(
            unit_id=unit_id,
            slug="bin",
            title="Bi\x00n",
            summary="s\x00",
            markdown="a\x00b",
            entry_points=[],
            citations=[],
            sort_order=0,
        )

        topic = wiki_store.list_topics(unit_id)[0]
        assert topic.title == "Bin"
        assert topic.markdown == "ab"


class TestPassages:
    def test_misaligned_vectors_are_rejected(self, wiki_store):
        unit_id = wiki_store.reset_unit("acme", "widgets")
        with pytest.raises(ValueError):
            wiki_store.insert_passages(unit_id, [draft("a"), draft("b")], [[1.0, 0.0]])

    def test_similarity_search_filters_threshold_and_ranks(self, wiki_store):
        unit_id = wiki_store.reset_unit("acme", "widgets")
        wiki_store.insert_passages(
            unit_id,
            [
                draft("exact"),
                draft("close", source_type="document", source_file=None),
                draft("far"),
            ],
            [[1.0, 0.0], [0.9, 0.1], [0.0, 1.0]],
        )

        hits = wiki_store.similarity_search(unit_id, [1.0, 0.0], k=5, threshold=0.5)

        assert [h.content for h in hits] == ["exact", "close"]
        assert hits[0].similarity == pytest.approx(1.0, abs=1e-4)
        assert hits[1].source_type == "document"
        assert hits[1].source_file is None

    def test_similarity_search_is_scoped_to_unit(self, wiki_store):
        mine = wiki_store.reset_unit("acme", "widgets")
        other = wiki_store.reset_unit("acme", "gadgets")
        wiki_store.insert_passages(other, [draft("theirs")], [[1.0, 0.0]])

        assert wiki_store.similarity_search(mine, [1.0, 0.0], 5, 0.0) == []
        assert len(wiki_store.similarity_search(other, [1.0, 0.0], 5, 0.0)) == 1

    def test_content_nul_characters_are_stripped(self, wiki_store):
        unit_id = wiki_store.reset_unit("acme", "widgets")
        wiki_store.insert_passages(unit_id, [draft("bin\x00ary")], [[1.0, 0.0]])

        hits = wiki_store.similarity_search(unit_id, [1.0, 0.0], 1, 0.0)
        assert hits[0].content == "binary"


class TestChat:
    def test_history_is_oldest_first_and_limited(self, wiki_store):
        unit_id = wiki_store.reset_unit("acme", "widgets")
        for i in range(5):
            wiki_store.add_chat_message(unit_id, "s1", "user", f"q{i}")
        wiki_store.add_chat_message(unit_id, "s2", "user", "other session")

        recent = wiki_store.list_chat_messages(unit_id, "s1", limit=2)

        assert [m.content for m in recent] == ["q3", "q4"]
        assert len(wiki_store.list_chat_messages(unit_id, "s1")) == 5

    def test_messages_carry_timestamps(self, wiki_store):
        unit_id = wiki_store.reset_unit("acme", "widgets")
        wiki_store.add_chat_message(unit_id, "s1", "user", "hello")

        (message,) = wiki_store.list_chat_messages(unit_id, "s1")

        assert message.created_at is not None

    def test_sessions_summarized_most_recent_first(self, wiki_store):
        unit_id = wiki_store.reset_unit("acme", "widgets")
        other_unit = wiki_store.reset_unit("acme", "gadgets")
        wiki_store.add_chat_message(unit_id, "s1", "user", "How does login work? " * 10)
        wiki_store.add_chat_message(unit_id, "s1", "assistant", "With tokens.")
        wiki_store.add_chat_message(unit_id, "s2", "user", "Where is billing?")
        wiki_store.add_chat_message(unit_id, "s1", "user", "And logout?")
        wiki_store.add_chat_message(other_unit, "s3", "user", "Unrelated")

        sessions = wiki_store.list_chat_sessions(unit_id)

        assert [s.session_id for s in sessions] == ["s1", "s2"]
        assert sessions[0].message_count == 3
        assert sessions[0].preview == ("How does login work? " * 10)[:80]
        assert sessions[0].last_activity is not None
        assert sessions[1].preview == "Where is billing?"
        assert sessions[1].message_count == 1

    def test_session_without_user_message_has_empty_preview(self, wiki_store):
        unit_id = wiki_store.reset_unit("acme", "widgets")
        wiki_store.add_chat_message(unit_id, "s1", "assistant", "Hello")

        assert wiki_store.list_chat_sessions(unit_id)[0].preview == ""
        assert wiki_store.list_chat_sessions(999) == []
