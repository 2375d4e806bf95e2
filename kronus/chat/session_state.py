"""
Session State

The single mutable record of one conversation, owned by the session
controller and handed to the components it orchestrates.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .models import (
    ContextConfig,
    ConversationStatus,
    Message,
    ModelConfig,
    ToolCallPart,
    ToolState,
)


@dataclass
class SessionState:
    model: ModelConfig
    conversation_id: int | None = None
    title: str | None = None
    messages: list[Message] = field(default_factory=list)
    status: ConversationStatus = ConversationStatus.IDLE
    error: str | None = None
    tool_states: dict[str, ToolState] = field(default_factory=dict)
    locked_context_config: ContextConfig | None = None
    # Bumped on every transcript mutation; autosave compares against saved_revision
    revision: int = 0
    saved_revision: int = 0

    def touch(self) -> None:
        self.revision += 1

    @property
    def dirty(self) -> bool:
        return self.revision != self.saved_revision

    def mark_saved(self) -> None:
        self.saved_revision = self.revision

    def last_message(self) -> Message | None:
        return self.messages[-1] if self.messages else None

    def find_tool_call(self, tool_call_id: str) -> ToolCallPart | None:
        for message in reversed(self.messages):
            part = message.find_tool_call(tool_call_id)
            if part is not None:
                return part
        return None

    def unresolved_tool_calls(self) -> list[ToolCallPart]:
        return [
            part
            for message in self.messages
            for part in message.tool_calls()
            if not part.resolved
        ]

    def reset(self) -> None:
        """Forget the conversation; the model selection survives."""
        self.conversation_id = None
        self.title = None
        self.messages = []
        self.status = ConversationStatus.IDLE
        self.error = None
        self.tool_states = {}
        self.locked_context_config = None
        self.revision = 0
        self.saved_revision = 0
