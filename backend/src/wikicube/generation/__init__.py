# backend/src/wikicube/generation/__init__.py
"""Analysis pipeline: topic identification, page generation and orchestration."""

from wikicube.generation.errors import (
    ContextGatherError,
    OverviewSynthesisError,
    PageGenerationError,
    PipelineCancelled,
    PipelineError,
    StatusTransitionError,
    TopicIdentificationError,
)
from wikicube.generation.generator import WikiGenerator
from wikicube.generation.orchestrator import (
    AnalysisOrchestrator,
    run_with_timeout,
    slugify,
)
from wikicube.generation.schemas import (
    GeneratedPage,
    IdentifiedTopic,
    Parsed,
    SchemaError,
)
from wikicube.generation.status import (
    EventType,
    ProgressCallback,
    ProgressEvent,
    UnitStatus,
)

__all__ = [
    # Orchestration
    "AnalysisOrchestrator",
    "run_with_timeout",
    "slugify",
    # Generator
    "WikiGenerator",
    # Status and events
    "EventType",
    "ProgressCallback",
    "ProgressEvent",
    "UnitStatus",
    # Schemas
    "GeneratedPage",
    "IdentifiedTopic",
    "Parsed",
    "SchemaError",
    # Errors
    "ContextGatherError",
    "OverviewSynthesisError",
    "PageGenerationError",
    "PipelineCancelled",
    "PipelineError",
    "StatusTransitionError",
    "TopicIdentificationError",
]
