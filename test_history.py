#!/usr/bin/env python3
"""
Tests for conversation persistence, summaries and transcript compression.
"""

import asyncio

import pytest

from conftest import StubSummarizer
from kronus.chat.models import Message, TextPart, ToolCallPart
from kronus.history import (
    CompressionError,
    CompressionSummary,
    ConversationNotFoundError,
    InMemoryRepo,
    SQLiteRepo,
    TranscriptCompressor,
    create_repository,
)
from kronus.history.compression import transcript_chars


def _transcript() -> list[Message]:
    return [
        Message.user("Rename issue X-1 please"),
        Message(
            role="assistant",
            parts=[
                TextPart(text="Renaming it now."),
                ToolCallPart(
                    tool_call_id="c1",
                    tool_name="linear_update_issue",
                    input={"issueId": "X-1", "title": "New"},
                    output="✅ Updated issue: X-1",
                ),
            ],
        ),
    ]


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "memory":
        return InMemoryRepo(summarizer=StubSummarizer())
    return SQLiteRepo(str(tmp_path / "chat.db"), summarizer=StubSummarizer())


async def test_round_trip_keeps_tool_outputs(repo):
    original = _transcript()

    conversation_id = await repo.create("Rename", original)
    loaded = await repo.get_messages(conversation_id)

    assert loaded == original
    call = loaded[1].find_tool_call("c1")
    assert call.output == "✅ Updated issue: X-1"
    assert call.input == {"issueId": "X-1", "title": "New"}


async def test_stored_messages_do_not_alias_caller(repo):
    messages = _transcript()
    conversation_id = await repo.create("Rename", messages)

    messages[0].parts[0] = TextPart(text="changed")

    assert (await repo.get_messages(conversation_id))[0].text() == "Rename issue X-1 please"


async def test_update_messages_bumps_updated_at_but_title_does_not(repo):
    conversation_id = await repo.create("Rename", _transcript())
    before = await repo.get_conversation(conversation_id)

    await asyncio.sleep(0.01)
    await repo.update(conversation_id, title="Renamed")
    after_title = await repo.get_conversation(conversation_id)
    assert after_title.title == "Renamed"
    assert after_title.updated_at == before.updated_at

    await asyncio.sleep(0.01)
    await repo.update(conversation_id, messages=[*_transcript(), Message.user("thanks")])
    after_messages = await repo.get_conversation(conversation_id)
    assert after_messages.updated_at > before.updated_at
    assert after_messages.message_count == 3


async def test_listing_is_most_recent_first(repo):
    first = await repo.create("First", _transcript())
    await asyncio.sleep(0.01)
    second = await repo.create("Second", _transcript())
    await asyncio.sleep(0.01)
    await repo.update(first, messages=_transcript())

    page = await repo.list_conversations()
    assert [c.id for c in page.conversations] == [first, second]
    assert page.total == 2

    page = await repo.list_conversations(offset=1, limit=1)
    assert [c.id for c in page.conversations] == [second]


async def test_missing_conversation_raises(repo):
    with pytest.raises(ConversationNotFoundError):
        await repo.get_conversation(99)
    with pytest.raises(ConversationNotFoundError):
        await repo.get_messages(99)
    with pytest.raises(ConversationNotFoundError):
        await repo.update(99, messages=[])
    with pytest.raises(ConversationNotFoundError):
        await repo.delete(99)


async def test_delete(repo):
    conversation_id = await repo.create("Gone", _transcript())

    await repo.delete(conversation_id)

    assert (await repo.list_conversations()).total == 0


async def test_generate_summary_and_reuse(repo):
    conversation_id = await repo.create("Rename", _transcript())

    result = await repo.generate_summary(conversation_id)
    assert result.regenerated
    assert result.title == "Generated Title"
    conversation = await repo.get_conversation(conversation_id)
    assert conversation.title == "Generated Title"
    assert conversation.summary == "A generated summary."
    assert not conversation.summary_is_stale

    cached = await repo.generate_summary(conversation_id)
    assert not cached.regenerated
    assert cached.summary == "A generated summary."


async def test_summary_goes_stale_after_new_messages(repo):
    conversation_id = await repo.create("Rename", _transcript())
    await repo.generate_summary(conversation_id)

    await asyncio.sleep(0.01)
    await repo.update(conversation_id, messages=[*_transcript(), Message.user("more")])

    assert (await repo.get_conversation(conversation_id)).summary_is_stale


async def test_summary_needs_text_and_summarizer():
    repo = InMemoryRepo(summarizer=StubSummarizer())
    empty = await repo.create("Empty", [Message(role="assistant", parts=[])])
    with pytest.raises(ValueError):
        await repo.generate_summary(empty)

    bare = InMemoryRepo()
    conversation_id = await bare.create("No summarizer", _transcript())
    with pytest.raises(RuntimeError):
        await bare.generate_summary(conversation_id)


async def test_compression_replaces_transcript(repo):
    long_transcript = [Message.user("x" * 500) for _ in range(4)] + _transcript()
    conversation_id = await repo.create("Long", long_transcript)
    compressor = TranscriptCompressor(repo, StubSummarizer(), keep_recent_messages=2)

    summary = await compressor.compress(conversation_id)

    messages = await repo.get_messages(conversation_id)
    assert len(messages) == 3
    assert messages[0].role == "system"
    assert messages[0].text().startswith("## Conversation summary (compressed)")
    assert messages[1:] == long_transcript[-2:]
    assert messages[2].find_tool_call("c1").output == "✅ Updated issue: X-1"
    conversation = await repo.get_conversation(conversation_id)
    assert conversation.is_compressed
    assert conversation.compression_summary.overview == "Short recap."
    assert summary.metadata["originalMessageCount"] == 6
    assert transcript_chars(messages) < transcript_chars(long_transcript)


async def test_compression_rejects_short_or_unprofitable(repo):
    compressor = TranscriptCompressor(repo, StubSummarizer(overview="y" * 1000))

    short = await repo.create("Short", [Message.user("hi")])
    with pytest.raises(CompressionError):
        await compressor.compress(short)

    brief = await repo.create("Brief", [Message.user("hi"), Message.user("there")])
    with pytest.raises(CompressionError):
        await compressor.compress(brief)
    assert not (await repo.get_conversation(brief)).is_compressed


def test_compression_summary_accepts_gateway_keys():
    summary = CompressionSummary.model_validate(
        {
            "conversationOverview": "Worked on the tracker.",
            "topicsDiscussed": ["linear"],
            "decisions": [{"decision": "Use labels", "rationale": "searchable"}],
            "tasks": [{"task": "Close X-1", "status": "done"}],
            "openQuestions": ["Who owns X-2?"],
        }
    )

    rendered = summary.render()
    assert "**Topics:** linear" in rendered
    assert "- Use labels (searchable)" in rendered
    assert "- Close X-1 [done]" in rendered
    assert "- Who owns X-2?" in rendered


def test_factory_selects_backend(configuration, tmp_path):
    configuration.update_setting(["chat", "storage"], {"type": "memory"})
    assert isinstance(create_repository(configuration), InMemoryRepo)

    configuration.update_setting(
        ["chat", "storage"], {"type": "sqlite", "db_path": str(tmp_path / "x.db")}
    )
    assert isinstance(create_repository(configuration), SQLiteRepo)

    configuration.update_setting(["chat", "storage"], {"type": "postgres"})
    with pytest.raises(ValueError):
        create_repository(configuration)
