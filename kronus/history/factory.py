#!/usr/bin/env python3
"""
Repository Factory

Factory function to create appropriate repository based on configuration.
"""

from __future__ import annotations

import logging

from kronus.config import Configuration

from .memory_repo import InMemoryRepo
from .repository import ConversationRepository, ConversationSummarizer
from .sqlite_repo import SQLiteRepo

logger = logging.getLogger(__name__)


def create_repository(
    configuration: Configuration,
    summarizer: ConversationSummarizer | None = None,
) -> ConversationRepository:
    """Create the conversation repository selected by ``chat.storage.type``."""
    storage = configuration.get_chat_storage_config()
    storage_type = storage.get("type", "sqlite")

    if storage_type == "memory":
        logger.info("Using in-memory conversation storage (data lost on restart)")
        return InMemoryRepo(summarizer=summarizer)
    if storage_type == "sqlite":
        db_path = storage.get("db_path", "kronus_chat.db")
        logger.info("Using SQLite conversation storage at %s", db_path)
        return SQLiteRepo(db_path, summarizer=summarizer)
    raise ValueError(f"Unknown chat.storage.type: {storage_type!r}")
