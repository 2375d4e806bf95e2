#!/usr/bin/env python3
"""
Tests for the gateway client: SSE parsing, failure mapping, companion calls.
"""

import json

import httpx
import pytest

from kronus.chat.models import (
    ContextConfig,
    Message,
    ReasoningDelta,
    StreamFinish,
    TextDelta,
    ToolAvailabilityConfig,
    ToolCallRequest,
)
from kronus.clients.llm_client import (
    ChatRequest,
    LLMClient,
    TransportError,
    parse_stream_event,
)


def _sse(*chunks) -> bytes:
    lines = []
    for chunk in chunks:
        data = chunk if isinstance(chunk, str) else json.dumps(chunk)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode()


def _request() -> ChatRequest:
    return ChatRequest(
        messages=[Message.user("hello")],
        context_config=ContextConfig(writings=True),
        tool_availability_config=ToolAvailabilityConfig(journal=True),
        model_selection="gemini-3-pro",
        active_skill_slugs=["writing"],
    )


def _client(configuration, handler) -> LLMClient:
    http = httpx.AsyncClient(
        base_url="http://gateway.test", transport=httpx.MockTransport(handler)
    )
    return LLMClient(configuration, http_client=http)


async def _collect(client: LLMClient) -> list:
    return [event async for event in client.stream(_request())]


def test_payload_uses_wire_names():
    payload = _request().to_payload()

    assert set(payload) == {
        "messages",
        "contextConfig",
        "toolAvailabilityConfig",
        "modelSelection",
        "reasoningEnabled",
        "activeSkillSlugs",
    }
    assert payload["contextConfig"]["writings"] is True
    assert payload["messages"][0]["parts"] == [{"type": "text", "text": "hello"}]


@pytest.mark.parametrize(
    "chunk, expected",
    [
        ({"type": "text-delta", "delta": "Hi"}, TextDelta(delta="Hi")),
        ({"type": "reasoning-delta", "delta": "hm"}, ReasoningDelta(delta="hm")),
        (
            {"type": "tool-input-available", "toolCallId": "c1", "toolName": "git_read_file", "input": {"path": "a"}},
            ToolCallRequest(tool_call_id="c1", tool_name="git_read_file", input={"path": "a"}),
        ),
        ({"type": "finish", "finishReason": "stop"}, StreamFinish(finish_reason="stop")),
        ({"type": "start-step"}, None),
        ({"type": "data-usage", "data": {}}, None),
    ],
)
def test_parse_stream_event(chunk, expected):
    assert parse_stream_event(chunk) == expected


@pytest.mark.parametrize(
    "chunk",
    [
        {"type": "error", "errorText": "rate limited"},
        {"type": "tool-call", "toolName": "x"},
        {"type": "mystery"},
        [1, 2],
        "text",
        None,
    ],
)
def test_parse_stream_event_failures(chunk):
    with pytest.raises(TransportError):
        parse_stream_event(chunk)


async def test_stream_yields_events_in_order(configuration):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = _sse(
            {"type": "start"},
            {"type": "text-delta", "delta": "Hel"},
            {"type": "text-delta", "delta": "lo"},
            {"type": "tool-call", "toolCallId": "c1", "toolName": "linear_list_issues"},
            {"type": "finish"},
            "[DONE]",
        )
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    client = _client(configuration, handler)
    events = await _collect(client)

    assert [type(e) for e in events] == [TextDelta, TextDelta, ToolCallRequest, StreamFinish]
    assert seen[0].url.path == "/api/chat"
    assert seen[0].headers["accept"] == "text/event-stream"
    assert json.loads(seen[0].content)["activeSkillSlugs"] == ["writing"]
    await client.close()


async def test_error_event_raises(configuration):
    def handler(request):
        return httpx.Response(
            200,
            content=_sse({"type": "text-delta", "delta": "x"}, {"type": "error", "errorText": "boom"}),
        )

    client = _client(configuration, handler)
    with pytest.raises(TransportError, match="boom"):
        await _collect(client)
    await client.close()


async def test_non_object_chunk_raises(configuration):
    def handler(request):
        return httpx.Response(200, content=_sse({"type": "text-delta", "delta": "hi"}, [1, 2]))

    client = _client(configuration, handler)
    with pytest.raises(TransportError, match="not an object"):
        await _collect(client)
    assert client._active_streams == 0
    await client.close()


async def test_non_200_raises_with_body(configuration):
    client = _client(configuration, lambda request: httpx.Response(502, text="bad gateway"))

    with pytest.raises(TransportError, match="502: bad gateway"):
        await _collect(client)
    await client.close()


async def test_empty_stream_raises(configuration):
    client = _client(configuration, lambda request: httpx.Response(200, content=b""))

    with pytest.raises(TransportError, match="No streaming chunks"):
        await _collect(client)
    await client.close()


async def test_network_failure_becomes_transport_error(configuration):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = _client(configuration, handler)
    with pytest.raises(TransportError):
        await _collect(client)
    assert client._active_streams == 0
    await client.close()


async def test_summarize_and_compress(configuration):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/conversations/summarize":
            return httpx.Response(200, json={"title": "Tracker work", "summary": "Renamed X-1."})
        return httpx.Response(
            200, json={"summary": {"conversationOverview": "Renamed X-1.", "topicsDiscussed": ["linear"]}}
        )

    client = _client(configuration, handler)
    messages = [Message.user("rename X-1")]

    draft = await client.summarize_conversation(messages)
    compressed = await client.compress_transcript(messages)

    assert draft.title == "Tracker work"
    assert compressed.overview == "Renamed X-1."
    assert compressed.topics == ["linear"]
    await client.close()


async def test_invalid_summary_response(configuration):
    client = _client(configuration, lambda request: httpx.Response(200, json={"nope": 1}))

    with pytest.raises(TransportError):
        await client.summarize_conversation([Message.user("x")])
    await client.close()


async def test_owned_client_rebuilds_on_connection_change(configuration):
    client = LLMClient(configuration)
    original = client.client

    configuration.update_setting(["llm", "base_url"], "http://elsewhere.test")
    for task in list(client._background_tasks):
        await task

    assert client.client is not original
    assert str(client.client.base_url).startswith("http://elsewhere.test")
    await client.close()
