"""Analysis unit status state machine and progress events."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Coroutine

from wikicube.generation.errors import StatusTransitionError


class UnitStatus(str, Enum):
    """Status of an analysis unit, in pipeline order."""

    PENDING = "pending"
    FETCHING_TREE = "fetching_tree"
    IDENTIFYING_FEATURES = "identifying_features"
    GENERATING_PAGES = "generating_pages"
    EMBEDDING = "embedding"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (UnitStatus.DONE, UnitStatus.ERROR)


STATUS_ORDER = [
    UnitStatus.PENDING,
    UnitStatus.FETCHING_TREE,
    UnitStatus.IDENTIFYING_FEATURES,
    UnitStatus.GENERATING_PAGES,
    UnitStatus.EMBEDDING,
    UnitStatus.DONE,
]


def check_transition(current: UnitStatus, new: UnitStatus) -> None:
    """Validate a status change within one run.

    Status only moves forward. ERROR is reachable from any non-terminal
    status. Nothing leaves a terminal status; a fresh run resets the unit
    instead.

    Raises:
        StatusTransitionError: If the change would move status backwards or
            out of a terminal state.
    """
    if current.is_terminal:
        raise StatusTransitionError(f"Unit is already {current.value}; cannot move to {new.value}")
    if new is UnitStatus.ERROR:
        return
    if STATUS_ORDER.index(new) < STATUS_ORDER.index(current):
        raise StatusTransitionError(f"Status cannot move back from {current.value} to {new.value}")


class EventType(str, Enum):
    """Kinds of progress events; values double as SSE event names."""

    STATUS = "status"
    TOPICS_LISTED = "features_list"
    TOPIC_STARTED = "feature_started"
    TOPIC_COMPLETED = "feature_done"
    ERROR = "error"
    DONE = "done"


PARTIAL_SUFFIX = " (partial)"


@dataclass
class ProgressEvent:
    """Progress notification emitted during an analysis run.

    Attributes:
        type: Kind of event.
        status: Unit status, for STATUS events.
        message: Human-readable message.
        topics: Identified topic titles, for TOPICS_LISTED events.
        topic_title: Topic the event is about, for topic events.
        partial: True when a topic failed and produced no page.
        unit_id: Analysis unit id, for DONE events.
        timestamp: Time the event was created.
    """

    type: EventType
    status: UnitStatus | None = None
    message: str = ""
    topics: list[str] = field(default_factory=list)
    topic_title: str | None = None
    partial: bool = False
    unit_id: int | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON payload sent to clients."""
        data: dict[str, Any] = {"type": self.type.value}
        if self.type is EventType.STATUS:
            data["status"] = self.status.value if self.status else None
            data["message"] = self.message
        elif self.type is EventType.TOPICS_LISTED:
            data["features"] = list(self.topics)
        elif self.type is EventType.TOPIC_STARTED:
            data["featureTitle"] = self.topic_title
        elif self.type is EventType.TOPIC_COMPLETED:
            title = self.topic_title or ""
            data["featureTitle"] = title + PARTIAL_SUFFIX if self.partial else title
            data["partial"] = self.partial
        elif self.type is EventType.ERROR:
            data["message"] = self.message
        elif self.type is EventType.DONE:
            data["wikiId"] = self.unit_id
        return data


# Type alias for progress callback
ProgressCallback = Callable[[ProgressEvent], Coroutine[Any, Any, None]]
