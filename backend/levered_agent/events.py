"""Event model streamed from the agent process to subscribers.

Every event serializes to a flat JSON object with a ``type`` and a
``timestamp`` (epoch milliseconds) plus its type-specific fields:

    {"type": "tool_use", "timestamp": 1718000000000, "name": "Read", "input": {...}}

Events are frozen once built so the same instance can be pushed to any
number of subscribers.

An ``error`` event is not necessarily the end of a job: the agent can
report a recoverable error and carry on. Only the event the supervisor
emits when the process is gone is marked ``terminal``.
"""

import json
import time
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class EventType(str, Enum):
    """Wire names of the event variants."""

    CONNECTED = "connected"
    THINKING = "thinking"
    MESSAGE = "message"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    STATUS = "status"
    ERROR = "error"
    COMPLETED = "completed"


class BaseEvent(BaseModel):
    """Fields shared by every event."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: EventType
    timestamp: int = Field(default_factory=now_ms)
    # Set only on the one event that closes a job; never sent on the wire.
    terminal: bool = Field(default=False, exclude=True)

    @property
    def is_terminal(self) -> bool:
        """True for the event that ends a job."""
        return self.terminal

    def as_terminal(self) -> "BaseEvent":
        return self.model_copy(update={"terminal": True})

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict with wire field names and unset optionals omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_sse(self) -> str:
        """Format as a Server-Sent-Events frame."""
        return f"event: {self.type.value}\ndata: {json.dumps(self.to_wire())}\n\n"


class ConnectedEvent(BaseEvent):
    type: Literal[EventType.CONNECTED] = EventType.CONNECTED
    client_id: str = Field(alias="clientId")


class ThinkingEvent(BaseEvent):
    type: Literal[EventType.THINKING] = EventType.THINKING
    content: str


class MessageEvent(BaseEvent):
    type: Literal[EventType.MESSAGE] = EventType.MESSAGE
    content: str


class ToolUseEvent(BaseEvent):
    type: Literal[EventType.TOOL_USE] = EventType.TOOL_USE
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultEvent(BaseEvent):
    """Result of a tool call; ``content`` is passed through as the agent sent it."""

    type: Literal[EventType.TOOL_RESULT] = EventType.TOOL_RESULT
    content: Any = ""
    is_error: bool | None = None


class StatusEvent(BaseEvent):
    type: Literal[EventType.STATUS] = EventType.STATUS
    status: str
    detail: str | None = None


class ErrorEvent(BaseEvent):
    type: Literal[EventType.ERROR] = EventType.ERROR
    error: str
    detail: str | None = None


class CompletedEvent(BaseEvent):
    type: Literal[EventType.COMPLETED] = EventType.COMPLETED
    terminal: bool = Field(default=True, exclude=True)


Event = Union[
    ConnectedEvent,
    ThinkingEvent,
    MessageEvent,
    ToolUseEvent,
    ToolResultEvent,
    StatusEvent,
    ErrorEvent,
    CompletedEvent,
]
