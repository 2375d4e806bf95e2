#!/usr/bin/env python3
"""
Conversation Repository Interface

This module defines the persistence protocol used by the session controller,
its errors, and the summary flow shared by every storage backend.
"""

from __future__ import annotations

import logging
from typing import Protocol

from kronus.chat.models import Message

from .models import (
    CompressionSummary,
    ConversationPage,
    SavedConversation,
    SummaryDraft,
    SummaryResult,
    utc_now,
)

logger = logging.getLogger(__name__)


class ConversationNotFoundError(LookupError):
    def __init__(self, conversation_id: int):
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id


class CompressionError(Exception):
    """The transcript cannot be compressed (too short, or no gain)."""


class ConversationSummarizer(Protocol):
    """Gateway side of summary generation and transcript compression."""

    async def summarize_conversation(self, messages: list[Message]) -> SummaryDraft: ...

    async def compress_transcript(self, messages: list[Message]) -> CompressionSummary: ...


# ---------- Repository interface ----------


class ConversationRepository(Protocol):
    """Protocol defining the interface for conversation storage backends."""

    async def list_conversations(
        self, offset: int = 0, limit: int = 50
    ) -> ConversationPage: ...

    async def get_conversation(self, conversation_id: int) -> SavedConversation: ...

    async def get_messages(self, conversation_id: int) -> list[Message]: ...

    async def create(self, title: str, messages: list[Message]) -> int: ...

    async def update(
        self,
        conversation_id: int,
        title: str | None = None,
        messages: list[Message] | None = None,
    ) -> None:
        """Title-only updates leave ``updated_at`` unchanged."""
        ...

    async def delete(self, conversation_id: int) -> None: ...

    async def generate_summary(
        self, conversation_id: int, force: bool = False
    ) -> SummaryResult: ...

    async def replace_with_compression(
        self,
        conversation_id: int,
        messages: list[Message],
        summary: CompressionSummary,
    ) -> None: ...

    async def close(self) -> None: ...


class SummaryMixin:
    """
    Summary flow shared by storage backends.

    Backends provide ``get_conversation``, ``get_messages``, ``update`` and
    ``_store_summary``; an existing summary is returned unless ``force`` is set.
    """

    summarizer: ConversationSummarizer | None

    async def generate_summary(
        self, conversation_id: int, force: bool = False
    ) -> SummaryResult:
        conversation = await self.get_conversation(conversation_id)  # type: ignore[attr-defined]
        if conversation.summary and not force:
            return SummaryResult(
                id=conversation.id,
                summary=conversation.summary,
                summary_updated_at=conversation.summary_updated_at,
            )
        if self.summarizer is None:
            raise RuntimeError("No summarizer configured for this repository")

        messages = await self.get_messages(conversation_id)  # type: ignore[attr-defined]
        if not any(m.text().strip() for m in messages if m.role in ("user", "assistant")):
            raise ValueError("No valid messages to summarize")

        draft = await self.summarizer.summarize_conversation(messages)
        updated_at = utc_now()
        await self.update(conversation_id, title=draft.title)  # type: ignore[attr-defined]
        await self._store_summary(conversation_id, draft.summary, updated_at)  # type: ignore[attr-defined]
        logger.info("← Repository: regenerated summary for conversation %d", conversation_id)
        return SummaryResult(
            id=conversation_id,
            summary=draft.summary,
            title=draft.title,
            summary_updated_at=updated_at,
            regenerated=True,
        )
