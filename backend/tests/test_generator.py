"""Wiki generator tests: topic identification, page generation, overview."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from wikicube.generation import (
    OverviewSynthesisError,
    PageGenerationError,
    TopicIdentificationError,
    WikiGenerator,
)
from wikicube.generation.prompts import OVERVIEW_FALLBACK
from wikicube.generation.schemas import IdentifiedTopic, SchemaError, parse_page, parse_topics
from wikicube.llm.client import LLMError
from wikicube.repo.url_parser import RepoId

REPO = RepoId(owner="acme", name="widgets")


@pytest.fixture
def mock_llm_client():
    client = MagicMock()
    client.generate = AsyncMock()
    client.generate_with_json = AsyncMock()
    return client


@pytest.fixture
def generator(mock_llm_client):
    return WikiGenerator(llm_client=mock_llm_client)


# =============================================================================
# Schema parsing
# =============================================================================


def test_parse_topics_accepts_fenced_json():
    raw = '```json\n{"features": [{"id": "auth", "title": "Auth", "relevantFiles": ["a.py"]}]}\n```'

    result = parse_topics(raw)

    assert not isinstance(result, SchemaError)
    assert result.value.features[0].relevant_files == ["a.py"]


@pytest.mark.parametrize(
    "raw",
    [
        "not json at all",
        '{"topics": []}',
        '{"features": [{"summary": "no title"}]}',
    ],
)
def test_parse_topics_rejects_malformed_output(raw):
    assert isinstance(parse_topics(raw), SchemaError)


def test_parse_page_rejects_negative_lines():
    raw = json.dumps(
        {"markdownContent": "x", "citations": [{"file": "a.py", "startLine": -1, "endLine": 2}]}
    )
    assert isinstance(parse_page(raw), SchemaError)


# =============================================================================
# identify_topics
# =============================================================================


async def test_identify_topics_returns_parsed_topics(generator, mock_llm_client):
    mock_llm_client.generate_with_json.return_value = json.dumps(
        {
            "features": [
                {
                    "id": "auth",
                    "title": "Authentication",
                    "summary": "Logs in.",
                    "relevantFiles": [],
                },
                {"id": "billing", "title": "Billing", "summary": "Charges."},
            ]
        }
    )

    topics = await generator.identify_topics("acme/widgets", "src/a.py", "", "", "")

    assert [t.title for t in topics] == ["Authentication", "Billing"]
    prompt = mock_llm_client.generate_with_json.call_args.args[0]
    assert "acme/widgets" in prompt
    assert "src/a.py" in prompt


async def test_identify_topics_empty_list_is_an_error(generator, mock_llm_client):
    mock_llm_client.generate_with_json.return_value = '{"features": []}'

    with pytest.raises(TopicIdentificationError, match="No features"):
        await generator.identify_topics("acme/widgets", "", "", "", "")


async def test_identify_topics_malformed_response(generator, mock_llm_client):
    mock_llm_client.generate_with_json.return_value = "Sure! Here are the features:"

    with pytest.raises(TopicIdentificationError, match="Malformed"):
        await generator.identify_topics("acme/widgets", "", "", "", "")


async def test_identify_topics_llm_failure(generator, mock_llm_client):
    mock_llm_client.generate_with_json.side_effect = LLMError("provider down")

    with pytest.raises(TopicIdentificationError, match="provider down"):
        await generator.identify_topics("acme/widgets", "", "", "", "")


# =============================================================================
# generate_page
# =============================================================================


async def test_generate_page_fills_missing_urls(generator, mock_llm_client):
    mock_llm_client.generate_with_json.return_value = json.dumps(
        {
            "markdownContent": "## Overview\nAuth.",
            "entryPoints": [
                {"file": "src/auth.py", "line": 12, "symbol": "login"},
                {"file": "src/x.py", "line": 1, "githubUrl": "https://example.com/keep"},
            ],
            "citations": [{"file": "src/auth.py", "startLine": 10, "endLine": 20}],
        }
    )
    topic = IdentifiedTopic(title="Auth", summary="Logs in.")

    page = await generator.generate_page(REPO, "main", topic, {"src/auth.py": "def login(): ..."})

    assert page.body == "## Overview\nAuth."
    assert page.entry_points[0].url == "https://github.com/acme/widgets/blob/main/src/auth.py#L12"
    assert page.entry_points[1].url == "https://example.com/keep"
    assert page.citations[0].url == (
        "https://github.com/acme/widgets/blob/main/src/auth.py#L10-L20"
    )
    system_prompt = mock_llm_client.generate_with_json.call_args.kwargs["system_prompt"]
    assert "Auth" in system_prompt


async def test_generate_page_malformed_response(generator, mock_llm_client):
    mock_llm_client.generate_with_json.return_value = '{"entryPoints": []}'

    with pytest.raises(PageGenerationError):
        await generator.generate_page(REPO, "main", IdentifiedTopic(title="Auth"), {})


# =============================================================================
# synthesize_overview
# =============================================================================


async def test_overview_lists_topics_in_prompt(generator, mock_llm_client):
    mock_llm_client.generate.return_value = "# Widgets\n\nMakes widgets."

    overview = await generator.synthesize_overview(
        "acme/widgets", "", "", [("Auth", "Logs in."), ("Billing", "Charges.")]
    )

    assert overview == "# Widgets\n\nMakes widgets."
    prompt = mock_llm_client.generate.call_args.args[0]
    assert "1. **Auth**: Logs in." in prompt
    assert "2. **Billing**: Charges." in prompt


async def test_empty_overview_uses_placeholder(generator, mock_llm_client):
    mock_llm_client.generate.return_value = "   "

    assert await generator.synthesize_overview("acme/widgets", "", "", []) == OVERVIEW_FALLBACK


async def test_overview_llm_failure(generator, mock_llm_client):
    mock_llm_client.generate.side_effect = LLMError("timeout")

    with pytest.raises(OverviewSynthesisError):
        await generator.synthesize_overview("acme/widgets", "", "", [])
