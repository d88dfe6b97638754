"""Errors raised by the analysis pipeline."""


class PipelineError(Exception):
    """Base exception for analysis pipeline failures."""

    pass


class ContextGatherError(PipelineError):
    """Raised when repository metadata, tree or project context cannot be gathered."""

    pass


class TopicIdentificationError(PipelineError):
    """Raised when topic identification fails or finds nothing."""

    pass


class PageGenerationError(PipelineError):
    """Raised when a topic page cannot be generated or parsed."""

    pass


class OverviewSynthesisError(PipelineError):
    """Raised when the overview cannot be synthesized."""

    pass


class PipelineCancelled(PipelineError):
    """Raised when the caller cancels a run."""

    pass


class StatusTransitionError(PipelineError):
    """Raised on an attempt to move a unit's status backwards within a run."""

    pass
