#!/usr/bin/env python3
"""
SQLite Conversation Repository Implementation

One row per conversation; the transcript is stored as a JSON array of
messages so tool-call parts keep their outputs across save and load.

CONFIG: chat.storage.type = "sqlite", chat.storage.db_path
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any

import aiosqlite
from pydantic import TypeAdapter

from kronus.chat.models import Message

from .models import (
    CompressionSummary,
    ConversationPage,
    SavedConversation,
    utc_now,
)
from .repository import ConversationNotFoundError, ConversationSummarizer, SummaryMixin

logger = logging.getLogger(__name__)

_MESSAGES = TypeAdapter(list[Message])

_SUMMARY_COLUMNS = (
    "id, title, summary, summary_updated_at, created_at, updated_at, "
    "message_count, is_compressed, compression_summary"
)


class SQLiteRepo(SummaryMixin):
    """Persistent conversation storage - configure with type='sqlite'."""

    def __init__(
        self,
        db_path: str = "kronus_chat.db",
        summarizer: ConversationSummarizer | None = None,
    ):
        self.db_path = db_path
        self.summarizer = summarizer
        self._lock = asyncio.Lock()
        self._initialized = False

    async def _ensure_initialized(self) -> None:
        """Initialize database schema if not already done."""
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("PRAGMA journal_mode=WAL")
                await db.execute("PRAGMA synchronous=NORMAL")

                await db.execute("""
                    CREATE TABLE IF NOT EXISTS conversations (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        title TEXT NOT NULL,
                        messages TEXT NOT NULL,
                        message_count INTEGER NOT NULL DEFAULT 0,
                        summary TEXT,
                        summary_updated_at TEXT,
                        is_compressed INTEGER NOT NULL DEFAULT 0,
                        compression_summary TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE INDEX IF NOT EXISTS idx_conversations_updated
                    ON conversations(updated_at)
                """)
                await db.commit()

            self._initialized = True

    @staticmethod
    def _serialize_messages(messages: list[Message]) -> str:
        return _MESSAGES.dump_json(messages, by_alias=True).decode()

    @staticmethod
    def _deserialize_conversation(row: dict[str, Any]) -> SavedConversation:
        compression = row["compression_summary"]
        return SavedConversation(
            id=row["id"],
            title=row["title"],
            summary=row["summary"],
            summary_updated_at=(
                datetime.fromisoformat(row["summary_updated_at"])
                if row["summary_updated_at"]
                else None
            ),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            message_count=row["message_count"],
            is_compressed=bool(row["is_compressed"]),
            compression_summary=(
                CompressionSummary.model_validate(json.loads(compression))
                if compression
                else None
            ),
        )

    async def list_conversations(
        self, offset: int = 0, limit: int = 50
    ) -> ConversationPage:
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT COUNT(*) FROM conversations") as cursor:
                row = await cursor.fetchone()
                total = row[0] if row else 0
            async with db.execute(
                f"SELECT {_SUMMARY_COLUMNS} FROM conversations "
                "ORDER BY updated_at DESC, id DESC LIMIT ? OFFSET ?",
                (limit, offset),
            ) as cursor:
                rows = await cursor.fetchall()

        return ConversationPage(
            conversations=[self._deserialize_conversation(dict(r)) for r in rows],
            total=total,
        )

    async def get_conversation(self, conversation_id: int) -> SavedConversation:
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"SELECT {_SUMMARY_COLUMNS} FROM conversations WHERE id = ?",
                (conversation_id,),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            raise ConversationNotFoundError(conversation_id)
        return self._deserialize_conversation(dict(row))

    async def get_messages(self, conversation_id: int) -> list[Message]:
        await self._ensure_initialized()

        async with (
            aiosqlite.connect(self.db_path) as db,
            db.execute(
                "SELECT messages FROM conversations WHERE id = ?", (conversation_id,)
            ) as cursor,
        ):
            row = await cursor.fetchone()
        if row is None:
            raise ConversationNotFoundError(conversation_id)
        return _MESSAGES.validate_json(row[0])

    async def create(self, title: str, messages: list[Message]) -> int:
        await self._ensure_initialized()

        now = utc_now().isoformat()
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "INSERT INTO conversations "
                "(title, messages, message_count, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (title, self._serialize_messages(messages), len(messages), now, now),
            )
            await db.commit()
            conversation_id = cursor.lastrowid

        logger.info("← Repository: created conversation %s (%r)", conversation_id, title)
        return int(conversation_id)

    async def update(
        self,
        conversation_id: int,
        title: str | None = None,
        messages: list[Message] | None = None,
    ) -> None:
        await self._ensure_initialized()

        assignments: list[str] = []
        params: list[Any] = []
        if title is not None:
            assignments.append("title = ?")
            params.append(title)
        if messages is not None:
            assignments += ["messages = ?", "message_count = ?", "updated_at = ?"]
            params += [
                self._serialize_messages(messages),
                len(messages),
                utc_now().isoformat(),
            ]
        if not assignments:
            return

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                f"UPDATE conversations SET {', '.join(assignments)} WHERE id = ?",
                [*params, conversation_id],
            )
            await db.commit()
            if cursor.rowcount == 0:
                raise ConversationNotFoundError(conversation_id)

    async def delete(self, conversation_id: int) -> None:
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM conversations WHERE id = ?", (conversation_id,)
            )
            await db.commit()
            if cursor.rowcount == 0:
                raise ConversationNotFoundError(conversation_id)
        logger.info("← Repository: deleted conversation %d", conversation_id)

    async def _store_summary(
        self, conversation_id: int, summary: str, updated_at: datetime
    ) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "UPDATE conversations SET summary = ?, summary_updated_at = ? WHERE id = ?",
                (summary, updated_at.isoformat(), conversation_id),
            )
            await db.commit()

    async def replace_with_compression(
        self,
        conversation_id: int,
        messages: list[Message],
        summary: CompressionSummary,
    ) -> None:
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "UPDATE conversations SET messages = ?, message_count = ?, "
                "is_compressed = 1, compression_summary = ?, updated_at = ? "
                "WHERE id = ?",
                (
                    self._serialize_messages(messages),
                    len(messages),
                    summary.model_dump_json(by_alias=True),
                    utc_now().isoformat(),
                    conversation_id,
                ),
            )
            await db.commit()
            if cursor.rowcount == 0:
                raise ConversationNotFoundError(conversation_id)

    async def close(self) -> None:
        """Connections are opened per operation; nothing to release."""
        return None
