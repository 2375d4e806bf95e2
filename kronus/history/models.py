#!/usr/bin/env python3
"""
Conversation History Data Models

This module contains all Pydantic models for saved conversations, their
summaries and compression results.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(UTC)


# ---------- Saved conversations ----------


class SavedConversation(BaseModel):
    id: int
    title: str
    summary: str | None = None
    summary_updated_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    message_count: int = 0
    is_compressed: bool = False
    compression_summary: CompressionSummary | None = None

    @property
    def summary_is_stale(self) -> bool:
        """True when there is no summary or the transcript changed after it."""
        if self.summary is None or self.summary_updated_at is None:
            return True
        return self.updated_at > self.summary_updated_at


class ConversationPage(BaseModel):
    conversations: list[SavedConversation]
    total: int


# ---------- Summaries ----------


class SummaryDraft(BaseModel):
    """Title and living summary proposed by the gateway."""

    title: str
    summary: str


class SummaryResult(BaseModel):
    id: int
    summary: str
    title: str | None = None
    summary_updated_at: datetime | None = None
    regenerated: bool = False


# ---------- Compression ----------


class CompressionSummary(BaseModel):
    """Structured digest that stands in for the compressed part of a transcript."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    overview: str = Field(alias="conversationOverview")
    topics: list[str] = Field(default_factory=list, alias="topicsDiscussed")
    decisions: list[dict[str, Any]] = Field(default_factory=list)
    tasks: list[dict[str, Any]] = Field(default_factory=list)
    code_artifacts: list[dict[str, Any]] = Field(
        default_factory=list, alias="codeArtifacts"
    )
    technical_context: dict[str, Any] = Field(
        default_factory=dict, alias="technicalContext"
    )
    user_preferences: list[str] = Field(default_factory=list, alias="userPreferences")
    open_questions: list[str] = Field(default_factory=list, alias="openQuestions")
    metadata: dict[str, Any] = Field(default_factory=dict)

    def render(self) -> str:
        """Markdown rendering placed in the system message of a compressed transcript."""
        lines = ["## Conversation summary (compressed)", "", self.overview]
        if self.topics:
            lines += ["", "**Topics:** " + ", ".join(self.topics)]
        if self.decisions:
            lines += ["", "**Decisions:**"]
            for decision in self.decisions:
                text = decision.get("decision") or decision.get("summary") or str(decision)
                rationale = decision.get("rationale")
                lines.append(f"- {text}" + (f" ({rationale})" if rationale else ""))
        if self.tasks:
            lines += ["", "**Tasks:**"]
            for task in self.tasks:
                text = task.get("task") or task.get("description") or str(task)
                status = task.get("status")
                lines.append(f"- {text}" + (f" [{status}]" if status else ""))
        if self.code_artifacts:
            lines += ["", "**Files:**"]
            for artifact in self.code_artifacts:
                path = artifact.get("path") or artifact.get("file") or str(artifact)
                action = artifact.get("action")
                lines.append(f"- {path}" + (f" ({action})" if action else ""))
        technologies = self.technical_context.get("technologies")
        if technologies:
            lines += ["", "**Technologies:** " + ", ".join(technologies)]
        if self.user_preferences:
            lines += ["", "**User preferences:**"]
            lines += [f"- {pref}" for pref in self.user_preferences]
        if self.open_questions:
            lines += ["", "**Open questions:**"]
            lines += [f"- {question}" for question in self.open_questions]
        return "\n".join(lines)


SavedConversation.model_rebuild()
