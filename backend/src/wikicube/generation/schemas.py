"""Schemas for structured model output, and strict parsing into them.

Model responses are never trusted as-is: every JSON payload is validated
against a pydantic model and surfaced as either Parsed or SchemaError.
"""

import json
from dataclasses import dataclass
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

M = TypeVar("M", bound=BaseModel)


class IdentifiedTopic(BaseModel):
    """A feature of the repository proposed by topic identification."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field("", description="kebab-case identifier, used as the page slug")
    title: str = Field(..., min_length=1, description="Human readable title")
    summary: str = Field("", description="2-3 sentence description for users")
    relevant_files: list[str] = Field(
        default_factory=list,
        alias="relevantFiles",
        description="Repository paths that implement the feature",
    )


class TopicsResponse(BaseModel):
    """Top-level shape of the topic identification response."""

    features: list[IdentifiedTopic]


class EntryPoint(BaseModel):
    """A function, class or route a reader should start from."""

    model_config = ConfigDict(populate_by_name=True)

    file: str
    line: int = Field(0, ge=0)
    symbol: str = ""
    url: str = Field("", alias="githubUrl")


class Citation(BaseModel):
    """A line range backing a claim on the page."""

    model_config = ConfigDict(populate_by_name=True)

    file: str
    start_line: int = Field(0, ge=0, alias="startLine")
    end_line: int = Field(0, ge=0, alias="endLine")
    url: str = Field("", alias="githubUrl")


class GeneratedPage(BaseModel):
    """A generated topic page."""

    model_config = ConfigDict(populate_by_name=True)

    body: str = Field(..., alias="markdownContent")
    entry_points: list[EntryPoint] = Field(default_factory=list, alias="entryPoints")
    citations: list[Citation] = Field(default_factory=list)


@dataclass(frozen=True)
class Parsed(Generic[M]):
    """Successfully validated model output."""

    value: M


@dataclass(frozen=True)
class SchemaError:
    """Model output that is not valid JSON or does not match the schema."""

    details: str


def strip_code_fence(response: str) -> str:
    """Remove a markdown code fence wrapped around a JSON payload."""
    response = response.strip()
    if response.startswith("```json"):
        response = response[7:]
    if response.startswith("```"):
        response = response[3:]
    if response.endswith("```"):
        response = response[:-3]
    return response.strip()


def parse_model(raw: str, model: type[M]) -> Parsed[M] | SchemaError:
    """Parse a raw model response into a pydantic model."""
    try:
        data = json.loads(strip_code_fence(raw))
    except json.JSONDecodeError as e:
        return SchemaError(f"response is not valid JSON: {e}")
    try:
        return Parsed(model.model_validate(data))
    except ValidationError as e:
        return SchemaError(f"response does not match {model.__name__}: {e}")


def parse_topics(raw: str) -> Parsed[TopicsResponse] | SchemaError:
    """Parse a topic identification response."""
    return parse_model(raw, TopicsResponse)


def parse_page(raw: str) -> Parsed[GeneratedPage] | SchemaError:
    """Parse a page generation response."""
    return parse_model(raw, GeneratedPage)
