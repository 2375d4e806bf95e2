"""
Chat Data Models

Data structures shared by the session controller, confirmation gate and
transport:
- Transcript messages and their tagged parts
- Per tool-call state and the single pending confirmation
- Stream events parsed from the model gateway
- Session events pushed to observers
All strongly typed with Pydantic for validation and serialization.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# ==============================================================================
# TRANSCRIPT
# ==============================================================================


class _WireModel(BaseModel):
    """Serializes with camelCase aliases, accepts either casing."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TextPart(_WireModel):
    type: Literal["text"] = "text"
    text: str


class FilePart(_WireModel):
    type: Literal["file"] = "file"
    url: str
    media_type: str
    filename: str | None = None


class ReasoningPart(_WireModel):
    type: Literal["reasoning"] = "reasoning"
    text: str


class ToolCallPart(_WireModel):
    """A tool invocation emitted by the model; ``output`` is set once resolved."""

    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    input: dict[str, Any] = Field(default_factory=dict)
    output: str | None = None

    @property
    def resolved(self) -> bool:
        return self.output is not None


Part = Annotated[
    TextPart | FilePart | ReasoningPart | ToolCallPart, Field(discriminator="type")
]


class Message(_WireModel):
    """One transcript entry. Part order is display order."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: Literal["user", "assistant", "system"]
    parts: list[Part] = Field(default_factory=list)

    @classmethod
    def user(cls, text: str, files: list[FilePart] | None = None) -> Message:
        parts: list[Part] = [*(files or []), TextPart(text=text)]
        return cls(role="user", parts=parts)

    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    def tool_calls(self) -> list[ToolCallPart]:
        return [p for p in self.parts if isinstance(p, ToolCallPart)]

    def find_tool_call(self, tool_call_id: str) -> ToolCallPart | None:
        for part in self.tool_calls():
            if part.tool_call_id == tool_call_id:
                return part
        return None


# ==============================================================================
# CONTEXT & TOOL CONFIGURATION
# ==============================================================================


class FlagConfig(BaseModel):
    """Immutable set of named boolean flags, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="forbid"
    )

    @classmethod
    def field_for(cls, key: str) -> str | None:
        """Resolve a snake_case name or camelCase alias to a field name."""
        for name, info in cls.model_fields.items():
            if key in (name, info.alias):
                return name
        return None

    def enabled(self) -> set[str]:
        return {name for name, value in self if value}

    def with_flags(self, names: set[str]) -> Self:
        """Copy with every field in ``names`` switched on."""
        return self.model_copy(update=dict.fromkeys(names, True))

    def to_wire(self) -> dict[str, bool]:
        return self.model_dump(by_alias=True)


class ContextConfig(FlagConfig):
    """Background knowledge sections included in the model's system context."""

    writings: bool = False
    portfolio_projects: bool = False
    skills: bool = False
    work_experience: bool = False
    education: bool = False
    journal_entries: bool = False
    linear_projects: bool = False
    linear_issues: bool = False
    linear_include_completed: bool = False
    slite_notes: bool = False


class ToolAvailabilityConfig(FlagConfig):
    """Tool categories the model may call."""

    journal: bool = False
    repository: bool = False
    linear: bool = False
    git: bool = False
    media: bool = False
    image_generation: bool = False
    web_search: bool = False
    slite: bool = False


class ModelConfig(BaseModel):
    model: str
    reasoning_enabled: bool = True


# ==============================================================================
# TOOL STATE & CONFIRMATION
# ==============================================================================


class ToolState(BaseModel):
    """Execution state of one tool call, keyed by tool_call_id."""

    is_loading: bool = False
    pending_confirmation: bool = False
    completed: bool = False
    interrupted: bool = False
    error: str | None = None
    output: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class PendingToolAction(BaseModel):
    """The single mutating tool call awaiting a user decision."""

    id: str
    tool_call_id: str
    tool_name: str
    args: dict[str, Any]
    description: str
    formatted_args: dict[str, str]
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    preview: str | None = None


class ConversationStatus(str, Enum):
    IDLE = "idle"
    SUBMITTED = "submitted"
    STREAMING = "streaming"
    ERROR = "error"


# ==============================================================================
# STREAM EVENTS (model gateway -> session)
# ==============================================================================


class TextDelta(BaseModel):
    type: Literal["text-delta"] = "text-delta"
    delta: str


class ReasoningDelta(BaseModel):
    type: Literal["reasoning-delta"] = "reasoning-delta"
    delta: str


class ToolCallRequest(BaseModel):
    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    input: dict[str, Any] = Field(default_factory=dict)


class StreamFinish(BaseModel):
    type: Literal["finish"] = "finish"
    finish_reason: str | None = None


StreamEvent = TextDelta | ReasoningDelta | ToolCallRequest | StreamFinish


# ==============================================================================
# SESSION EVENTS (session -> observers)
# ==============================================================================

SessionEventType = Literal[
    "status",
    "message",
    "tool_state",
    "pending_action",
    "conversation",
    "config",
    "error",
]


class SessionEvent(BaseModel):
    """Notification emitted by the session controller."""

    type: SessionEventType
    data: dict[str, Any] = Field(default_factory=dict)
