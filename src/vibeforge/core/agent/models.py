"""
Agent data models.

Two event vocabularies meet in this package:

- AgentEvent: what the in-sandbox agent runtime prints, one JSON object
  per line (message, plan, question, progress, tool_use, result, ...).
- StreamEvent: what the orchestrator sends to clients, one JSON object per
  event (phase_change, thinking, plan, message, progress, file_change, ...).

The orchestrator translates the first into the second.
"""

import json
import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class Phase(str, Enum):
    """Orchestrator phase as reported to clients."""

    IDLE = "idle"
    PLANNING = "planning"
    PLAN_REVIEW = "plan_review"
    BUILDING = "building"
    READY = "ready"
    ERROR = "error"


class StreamEventType(str, Enum):
    """Client-facing event types."""

    PHASE_CHANGE = "phase_change"
    THINKING = "thinking"
    PLAN = "plan"
    MESSAGE = "message"
    PROGRESS = "progress"
    FILE_CHANGE = "file_change"
    TOOL_USE = "tool_use"
    CHECKPOINT = "checkpoint"
    PREVIEW_URL = "preview_url"
    ERROR = "error"
    DONE = "done"


def _now_ms() -> int:
    return int(time.time() * 1000)


class StreamEvent(BaseModel):
    """One event of an orchestrator stream."""

    type: StreamEventType
    content: str = ""
    phase: Phase | None = None
    metadata: dict[str, Any] | None = None
    timestamp: int = Field(default_factory=_now_ms, description="Milliseconds since the epoch")

    def to_wire(self) -> str:
        """Serialise as a single JSON object, omitting unset optional fields."""
        return self.model_dump_json(exclude_none=True)

    @classmethod
    def from_wire(cls, data: str) -> "StreamEvent":
        return cls.model_validate_json(data)


class AgentEventType(str, Enum):
    """Event types printed by the agent runtime."""

    MESSAGE = "message"
    PLAN = "plan"
    QUESTION = "question"
    PROGRESS = "progress"
    TOOL_USE = "tool_use"
    RESULT = "result"
    THINKING = "thinking"
    ERROR = "error"
    DONE = "done"


class AgentEvent(BaseModel):
    """One event from the agent backend."""

    type: AgentEventType
    content: str = ""
    metadata: dict[str, Any] | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _legacy_text_type(cls, value: Any) -> Any:
        # The runtime calls plain assistant text "text"
        if value == "text":
            return AgentEventType.MESSAGE
        return value

    @classmethod
    def from_line(cls, line: str) -> "AgentEvent":
        """
        Decode one line of runtime output.

        Lines that are not a JSON object with a known type become plain
        message events carrying the raw text.
        """
        try:
            data = json.loads(line)
        except ValueError:
            return cls(type=AgentEventType.MESSAGE, content=line)
        if not isinstance(data, dict):
            return cls(type=AgentEventType.MESSAGE, content=line)
        try:
            return cls.model_validate(data)
        except ValueError:
            return cls(type=AgentEventType.MESSAGE, content=line)


class PlanChange(BaseModel):
    """One user-visible change in a plan."""

    description: str
    files: list[str] | None = None


class Plan(BaseModel):
    """A plan awaiting approval."""

    summary: str = Field(min_length=1)
    changes: list[PlanChange] = Field(default_factory=list)
    considerations: str | None = None

    @field_validator("considerations", mode="before")
    @classmethod
    def _join_considerations(cls, value: Any) -> Any:
        if isinstance(value, list):
            return "\n".join(str(item) for item in value) or None
        return value


class KeyFile(BaseModel):
    path: str
    description: str = ""


class RepoContext(BaseModel):
    """Repository description used in planning prompts."""

    name: str
    description: str | None = None
    tech_stack: list[str] = Field(default_factory=list)
    conventions: list[str] = Field(default_factory=list)
    key_files: list[KeyFile] = Field(default_factory=list)
