"""
Transcript Compression

Replaces a stored transcript with a summary system message followed by the
most recent messages, shrinking the conversation's share of the token budget.
"""

from __future__ import annotations

import logging

from kronus.chat.logging_utils import log_performance
from kronus.chat.models import Message, TextPart

from .models import CompressionSummary
from .repository import CompressionError, ConversationRepository, ConversationSummarizer

logger = logging.getLogger(__name__)


def transcript_chars(messages: list[Message]) -> int:
    return sum(len(m.text()) for m in messages)


class TranscriptCompressor:
    def __init__(
        self,
        repository: ConversationRepository,
        summarizer: ConversationSummarizer,
        keep_recent_messages: int = 2,
    ):
        if keep_recent_messages < 0:
            raise ValueError("keep_recent_messages must be >= 0")
        self.repository = repository
        self.summarizer = summarizer
        self.keep_recent_messages = keep_recent_messages

    def build_compressed(
        self, messages: list[Message], summary: CompressionSummary
    ) -> list[Message]:
        recent = messages[-self.keep_recent_messages :] if self.keep_recent_messages else []
        header = Message(role="system", parts=[TextPart(text=summary.render())])
        return [header, *recent]

    async def compress(self, conversation_id: int) -> CompressionSummary:
        """
        Compress a saved conversation in place.

        Raises:
            CompressionError: Fewer than two messages, or the compressed
                transcript would not be shorter than the original
            ConversationNotFoundError: Unknown conversation id
        """
        messages = await self.repository.get_messages(conversation_id)
        if len(messages) < 2:
            raise CompressionError("Conversation too short to compress")

        async with log_performance(f"Compressing conversation {conversation_id}"):
            summary = await self.summarizer.compress_transcript(messages)

        compressed = self.build_compressed(messages, summary)
        before, after = transcript_chars(messages), transcript_chars(compressed)
        if after >= before:
            raise CompressionError(
                "Compressed transcript is not shorter than the original"
            )

        summary.metadata.setdefault("originalMessageCount", len(messages))
        await self.repository.replace_with_compression(conversation_id, compressed, summary)
        logger.info(
            "← Repository: compressed conversation %d (%d → %d chars, %d → %d messages)",
            conversation_id, before, after, len(messages), len(compressed),
        )
        return summary
