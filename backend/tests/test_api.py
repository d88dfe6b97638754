"""HTTP API tests: health, analysis stream, wiki reads, search and chat."""

import json

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import CharTokenizer
from wikicube.api.deps import (
    get_assembler,
    get_chat_service,
    get_orchestrator,
    get_settings,
    get_store,
)
from wikicube.config import Config
from wikicube.generation.errors import ContextGatherError
from wikicube.generation.status import EventType, ProgressEvent, UnitStatus
from wikicube.indexing.chunking import PassageDraft
from wikicube.main import app
from wikicube.qa.chat import ChatService
from wikicube.qa.retrieval import RetrievalAssembler


class ScriptedOrchestrator:
    """Emits a fixed run against the real store, optionally failing."""

    def __init__(self, store, fail: bool = False):
        self.store = store
        self.fail = fail
        self.runs = []

    async def run(self, repo, on_event=None, cancel_event=None):
        self.runs.append(repo)
        unit_id = self.store.reset_unit(repo.owner, repo.name)
        await on_event(
            ProgressEvent(
                type=EventType.STATUS,
                status=UnitStatus.FETCHING_TREE,
                message="Fetching repository structure...",
            )
        )
        if self.fail:
            self.store.update_status(unit_id, "error", "404 Not Found")
            await on_event(ProgressEvent(type=EventType.ERROR, message="404 Not Found"))
            raise ContextGatherError("404 Not Found")
        await on_event(ProgressEvent(type=EventType.TOPICS_LISTED, topics=["Auth"]))
        self.store.update_status(unit_id, "done")
        await on_event(ProgressEvent(type=EventType.DONE, unit_id=unit_id))
        return unit_id


class ScriptedLLM:
    async def generate_stream(self, prompt, system_prompt=None, temperature=None, history=None):
        for token in ["Login ", "uses ", "tokens."]:
            yield token

    async def embed(self, texts):
        return [[1.0, 0.0] for _ in texts]


def parse_sse(text: str) -> list[tuple[str, dict]]:
    events = []
    for block in text.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


@pytest.fixture
def finished_unit(wiki_store):
    unit_id = wiki_store.reset_unit("acme", "widgets")
    wiki_store.update_metadata(unit_id, "main", "Widget factory")
    wiki_store.set_overview(unit_id, "# Overview\n\nWidgets.")
    topic_id = wiki_store.insert_topic(
        unit_id=unit_id,
        slug="authentication",
        title="Authentication",
        summary="Signs users in.",
        markdown="## Flow\nLogin.",
        entry_points=[{"file": "src/auth.py", "line": 3, "symbol": "login", "githubUrl": "u"}],
        citations=[],
        sort_order=0,
    )
    wiki_store.insert_passages(
        unit_id,
        [
            PassageDraft(
                content="def login(): ...",
                header="",
                body="def login(): ...",
                source_type="code",
                source_file="src/auth.py",
                topic_id=topic_id,
            )
        ],
        [[1.0, 0.0]],
    )
    wiki_store.update_status(unit_id, "done")
    return unit_id


@pytest.fixture
def overrides(tmp_path, wiki_store):
    settings = Config(data_dir=tmp_path)
    orchestrator = ScriptedOrchestrator(wiki_store)
    llm = ScriptedLLM()
    assembler = RetrievalAssembler(wiki_store, llm.embed, tokenizer=CharTokenizer())
    chat_service = ChatService(wiki_store, assembler, llm)

    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_store] = lambda: wiki_store
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_assembler] = lambda: assembler
    app.dependency_overrides[get_chat_service] = lambda: chat_service
    yield {"orchestrator": orchestrator, "chat_service": chat_service}
    app.dependency_overrides.clear()


@pytest.fixture
async def client(overrides):
    """Create async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


# =============================================================================
# Analyze
# =============================================================================


async def test_analyze_streams_progress_events(client):
    response = await client.post(
        "/api/analyze", json={"repoUrl": "https://github.com/acme/widgets"}
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = parse_sse(response.text)
    assert [name for name, _ in events] == ["status", "features_list", "done"]
    assert events[0][1] == {
        "type": "status",
        "status": "fetching_tree",
        "message": "Fetching repository structure...",
    }
    assert events[1][1]["features"] == ["Auth"]
    assert isinstance(events[2][1]["wikiId"], int)


async def test_analyze_failure_ends_stream_with_error_event(client, overrides):
    overrides["orchestrator"].fail = True

    response = await client.post("/api/analyze", json={"repoUrl": "acme/widgets"})

    events = parse_sse(response.text)
    assert events[-1] == ("error", {"type": "error", "message": "404 Not Found"})


async def test_analyze_returns_cached_wiki(client, overrides, finished_unit):
    response = await client.post("/api/analyze", json={"repoUrl": "acme/widgets"})

    assert response.json() == {"wikiId": finished_unit, "status": "done", "cached": True}
    assert overrides["orchestrator"].runs == []


async def test_analyze_force_regenerates(client, overrides, finished_unit):
    response = await client.post("/api/analyze", json={"repoUrl": "acme/widgets", "force": True})

    assert parse_sse(response.text)[-1][0] == "done"
    assert len(overrides["orchestrator"].runs) == 1


async def test_analyze_rejects_invalid_repo(client):
    response = await client.post("/api/analyze", json={"repoUrl": "not a repo"})

    assert response.status_code == 400


# =============================================================================
# Wikis
# =============================================================================


async def test_get_wiki(client, finished_unit):
    response = await client.get("/api/wikis/acme/widgets")

    assert response.status_code == 200
    data = response.json()
    assert data["wiki"]["id"] == finished_unit
    assert data["wiki"]["defaultBranch"] == "main"
    assert data["features"][0]["slug"] == "authentication"
    assert data["features"][0]["entryPoints"][0]["githubUrl"] == "u"


async def test_get_wiki_not_found(client):
    response = await client.get("/api/wikis/nobody/nothing")

    assert response.status_code == 404


async def test_list_wikis_returns_finished_wikis_only(client, wiki_store, finished_unit):
    wiki_store.reset_unit("acme", "in-progress")

    response = await client.get("/api/wikis")

    assert response.status_code == 200
    wikis = response.json()
    assert [(w["id"], w["owner"], w["name"]) for w in wikis] == [
        (finished_unit, "acme", "widgets")
    ]
    assert wikis[0]["status"] == "done"
    assert wikis[0]["updatedAt"]


async def test_get_topic(client, finished_unit):
    response = await client.get("/api/wikis/acme/widgets/authentication")

    assert response.status_code == 200
    assert response.json()["title"] == "Authentication"
    assert (await client.get("/api/wikis/acme/widgets/missing")).status_code == 404


# =============================================================================
# Search and chat
# =============================================================================


async def test_search_returns_semantic_and_merged_results(client, finished_unit):
    response = await client.post(
        "/api/search", json={"wikiId": finished_unit, "query": "authentication"}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["results"][0]["sourceFile"] == "src/auth.py"
    assert data["results"][0]["featureSlug"] == "authentication"
    assert [hit["kind"] for hit in data["merged"]] == ["feature"]


async def test_search_requires_finished_wiki(client, wiki_store):
    unit_id = wiki_store.reset_unit("acme", "pending")

    response = await client.post("/api/search", json={"wikiId": unit_id, "query": "x"})

    assert response.status_code == 404


async def test_chat_streams_answer_and_stores_it(client, overrides, wiki_store, finished_unit):
    response = await client.post(
        "/api/chat",
        json={"wikiId": finished_unit, "sessionId": "s1", "question": "How does login work?"},
    )
    await overrides["chat_service"].wait_pending()

    assert response.status_code == 200
    assert response.text == "Login uses tokens."
    messages = wiki_store.list_chat_messages(finished_unit, "s1")
    assert [m.role for m in messages] == ["user", "assistant"]
    assert messages[1].content == "Login uses tokens."


async def test_chat_sessions_and_messages(client, wiki_store, finished_unit):
    wiki_store.add_chat_message(finished_unit, "s1", "user", "How does login work?")
    wiki_store.add_chat_message(finished_unit, "s1", "assistant", "With tokens.")
    wiki_store.add_chat_message(finished_unit, "s2", "user", "Where is billing?")

    sessions = await client.get("/api/chat/sessions", params={"wikiId": finished_unit})
    messages = await client.get(
        "/api/chat/sessions", params={"wikiId": finished_unit, "sessionId": "s1"}
    )

    assert sessions.status_code == 200
    assert [(s["sessionId"], s["messageCount"]) for s in sessions.json()] == [
        ("s2", 1),
        ("s1", 2),
    ]
    assert sessions.json()[1]["preview"] == "How does login work?"
    assert messages.status_code == 200
    assert [(m["role"], m["content"]) for m in messages.json()] == [
        ("user", "How does login work?"),
        ("assistant", "With tokens."),
    ]
    assert messages.json()[0]["createdAt"]


async def test_chat_sessions_unknown_wiki(client):
    response = await client.get("/api/chat/sessions", params={"wikiId": 999})

    assert response.status_code == 404


async def test_chat_sessions_requires_wiki_id(client):
    response = await client.get("/api/chat/sessions")

    assert response.status_code == 422
