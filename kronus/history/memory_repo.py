#!/usr/bin/env python3
"""
In-Memory Conversation Repository Implementation

Fast in-memory storage for session-only conversations.

CONFIG: chat.storage.type = "memory"
PURPOSE: Development/testing - all data lost on restart
"""

from __future__ import annotations

import logging
from datetime import datetime

from kronus.chat.models import Message

from .models import CompressionSummary, ConversationPage, SavedConversation, utc_now
from .repository import ConversationNotFoundError, ConversationSummarizer, SummaryMixin

logger = logging.getLogger(__name__)


class InMemoryRepo(SummaryMixin):
    """Fast in-memory storage - configure with type='memory'. Data lost on restart."""

    def __init__(self, summarizer: ConversationSummarizer | None = None):
        self.summarizer = summarizer
        self._conversations: dict[int, SavedConversation] = {}
        self._messages: dict[int, list[Message]] = {}
        self._next_id = 1

    def _require(self, conversation_id: int) -> SavedConversation:
        try:
            return self._conversations[conversation_id]
        except KeyError:
            raise ConversationNotFoundError(conversation_id) from None

    @staticmethod
    def _copy(messages: list[Message]) -> list[Message]:
        # Stored transcripts must not alias the session's live objects
        return [m.model_copy(deep=True) for m in messages]

    async def list_conversations(
        self, offset: int = 0, limit: int = 50
    ) -> ConversationPage:
        ordered = sorted(
            self._conversations.values(),
            key=lambda c: (c.updated_at, c.id),
            reverse=True,
        )
        return ConversationPage(
            conversations=[c.model_copy() for c in ordered[offset : offset + limit]],
            total=len(ordered),
        )

    async def get_conversation(self, conversation_id: int) -> SavedConversation:
        return self._require(conversation_id).model_copy()

    async def get_messages(self, conversation_id: int) -> list[Message]:
        self._require(conversation_id)
        return self._copy(self._messages[conversation_id])

    async def create(self, title: str, messages: list[Message]) -> int:
        conversation_id = self._next_id
        self._next_id += 1
        self._conversations[conversation_id] = SavedConversation(
            id=conversation_id, title=title, message_count=len(messages)
        )
        self._messages[conversation_id] = self._copy(messages)
        return conversation_id

    async def update(
        self,
        conversation_id: int,
        title: str | None = None,
        messages: list[Message] | None = None,
    ) -> None:
        conversation = self._require(conversation_id)
        if title is not None:
            conversation.title = title
        if messages is not None:
            self._messages[conversation_id] = self._copy(messages)
            conversation.message_count = len(messages)
            conversation.updated_at = utc_now()

    async def delete(self, conversation_id: int) -> None:
        self._require(conversation_id)
        del self._conversations[conversation_id]
        del self._messages[conversation_id]

    async def _store_summary(
        self, conversation_id: int, summary: str, updated_at: datetime
    ) -> None:
        conversation = self._require(conversation_id)
        conversation.summary = summary
        conversation.summary_updated_at = updated_at

    async def replace_with_compression(
        self,
        conversation_id: int,
        messages: list[Message],
        summary: CompressionSummary,
    ) -> None:
        conversation = self._require(conversation_id)
        self._messages[conversation_id] = self._copy(messages)
        conversation.message_count = len(messages)
        conversation.is_compressed = True
        conversation.compression_summary = summary
        conversation.updated_at = utc_now()

    async def close(self) -> None:
        self._conversations.clear()
        self._messages.clear()
