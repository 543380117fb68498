"""
Pydantic data models for the SpectraView capture pipeline.

Wire names are camelCase; Python attributes are snake_case. Dump with
``by_alias=True`` when building collector payloads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, JsonValue, field_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenWireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Viewport(FrozenWireModel):
    width: int
    height: int


class EventContext(FrozenWireModel):
    """Where an event was observed."""

    url: Optional[str] = None
    user_agent: Optional[str] = None
    viewport: Optional[Viewport] = None


class CustomEvent(FrozenWireModel):
    """Application-defined telemetry point with a sanitized payload.

    ``data`` must be a JSON value; anything else is rejected at capture time.
    """

    type: Literal["custom"] = "custom"
    event_type: str
    data: JsonValue = None
    timestamp: int
    session_id: str
    context: EventContext = EventContext()

    @field_validator("event_type")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("event_type must not be empty")
        return v


class ErrorType(str, Enum):
    """Error categories understood by the collector."""

    JAVASCRIPT_ERROR = "javascript_error"
    UNHANDLED_REJECTION = "unhandled_rejection"


class ErrorEvent(FrozenWireModel):
    """Uncaught error report. Delivery-urgent."""

    type: ErrorType
    message: str
    stack: Optional[str] = None
    filename: Optional[str] = None
    lineno: Optional[int] = None
    colno: Optional[int] = None
    timestamp: int
    session_id: str
    context: EventContext = EventContext()


class SessionStats(WireModel):
    event_count: int = 0
    error_count: int = 0
    click_count: int = 0


class Session(WireModel):
    """One recording lifetime."""

    session_id: str
    user_id: Optional[str] = None
    app_id: str
    start_time: int
    end_time: Optional[int] = None
    stats: SessionStats = Field(default_factory=SessionStats)

    @property
    def active(self) -> bool:
        return self.end_time is None


class EventRecord(WireModel):
    """Overflow record for one mirrored visual event."""

    event: Any
    session_id: str
    timestamp: int
    synced: bool = False


class BatchRecord(WireModel):
    """Overflow record for a batch whose delivery failed."""

    events: List[Any] = []
    custom_events: List[dict] = []
    errors: List[dict] = []
    session_id: str
    user_id: Optional[str] = None
    app_id: Optional[str] = None
    timestamp: int
    retry_count: int = 0

    @property
    def size(self) -> int:
        return len(self.events) + len(self.custom_events) + len(self.errors)


@dataclass
class Batch:
    """Snapshot of the three buffers taken by one flush attempt.

    Owned by exactly one flush attempt. ``event_keys`` and ``batch_keys`` are
    the overflow records mirrored for the events it carries. ``order`` ranks
    batches by the age of their oldest events (lower is older).
    """

    visual_events: List[Any]
    custom_events: List[CustomEvent]
    errors: List[ErrorEvent]
    created_at: int
    event_keys: List[str] = field(default_factory=list)
    batch_keys: List[str] = field(default_factory=list)
    order: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.visual_events or self.custom_events or self.errors)

    @property
    def size(self) -> int:
        return len(self.visual_events) + len(self.custom_events) + len(self.errors)
