#!/usr/bin/env python3
"""
Conversation History Module

Conversation persistence with SQLite and in-memory storage backends.
"""

from __future__ import annotations

from .compression import TranscriptCompressor
from .factory import create_repository
from .memory_repo import InMemoryRepo
from .models import (
    CompressionSummary,
    ConversationPage,
    SavedConversation,
    SummaryDraft,
    SummaryResult,
)
from .repository import (
    CompressionError,
    ConversationNotFoundError,
    ConversationRepository,
    ConversationSummarizer,
)
from .sqlite_repo import SQLiteRepo

__all__ = [
    "CompressionError",
    "CompressionSummary",
    "ConversationNotFoundError",
    "ConversationPage",
    "ConversationRepository",
    "ConversationSummarizer",
    "InMemoryRepo",
    "SQLiteRepo",
    "SavedConversation",
    "SummaryDraft",
    "SummaryResult",
    "TranscriptCompressor",
    "create_repository",
]
