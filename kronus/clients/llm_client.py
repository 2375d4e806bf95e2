"""
Event-driven model gateway client that automatically updates when configuration changes.

The gateway owns prompting and the provider call. This client posts the
transcript plus the composed configuration and parses the server-sent event
stream into typed StreamEvents. Summaries and transcript compression are
requested from companion endpoints.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from kronus.chat.logging_utils import log_directional_flow, should_log_feature
from kronus.chat.models import (
    ContextConfig,
    Message,
    ReasoningDelta,
    StreamEvent,
    StreamFinish,
    TextDelta,
    ToolAvailabilityConfig,
    ToolCallRequest,
)
from kronus.config import Configuration
from kronus.history.models import CompressionSummary, SummaryDraft

logger = logging.getLogger(__name__)

TOOL_CALL_EVENTS = ("tool-input-available", "tool-call")
IGNORED_EVENTS = (
    "start",
    "start-step",
    "finish-step",
    "text-start",
    "text-end",
    "reasoning-start",
    "reasoning-end",
    "tool-input-start",
    "tool-input-delta",
    "tool-output-available",
)


class TransportError(Exception):
    """The gateway was unreachable or produced a malformed stream."""


class ChatRequest(BaseModel):
    """One logical call per turn: the transcript plus composition state."""

    model_config = ConfigDict(protected_namespaces=())

    messages: list[Message]
    context_config: ContextConfig
    tool_availability_config: ToolAvailabilityConfig
    model_selection: str
    reasoning_enabled: bool = True
    active_skill_slugs: list[str] = []

    def to_payload(self) -> dict[str, Any]:
        return {
            "messages": [m.model_dump(mode="json", by_alias=True) for m in self.messages],
            "contextConfig": self.context_config.to_wire(),
            "toolAvailabilityConfig": self.tool_availability_config.to_wire(),
            "modelSelection": self.model_selection,
            "reasoningEnabled": self.reasoning_enabled,
            "activeSkillSlugs": self.active_skill_slugs,
        }


class ChatTransport(Protocol):
    def stream(self, request: ChatRequest) -> AsyncGenerator[StreamEvent, None]: ...


def parse_stream_event(chunk: Any) -> StreamEvent | None:
    """
    Convert one decoded SSE chunk into a StreamEvent.

    Returns:
        The typed event, or None for bookkeeping chunks the session ignores.

    Raises:
        TransportError: On an ``error`` chunk, a chunk that is not a JSON
            object, or an unknown/invalid chunk.
    """
    if not isinstance(chunk, dict):
        raise TransportError(f"Stream chunk is not an object: {chunk!r:.100}")
    event_type = chunk.get("type")
    try:
        if event_type == "text-delta":
            return TextDelta(delta=chunk.get("delta", ""))
        if event_type == "reasoning-delta":
            return ReasoningDelta(delta=chunk.get("delta", ""))
        if event_type in TOOL_CALL_EVENTS:
            return ToolCallRequest(
                tool_call_id=chunk["toolCallId"],
                tool_name=chunk["toolName"],
                input=chunk.get("input") or {},
            )
    except (KeyError, ValidationError) as e:
        raise TransportError(f"Malformed {event_type} chunk: {e}") from e
    if event_type == "finish":
        return StreamFinish(finish_reason=chunk.get("finishReason"))
    if event_type == "error":
        raise TransportError(chunk.get("errorText") or "Model gateway reported an error")
    if event_type in IGNORED_EVENTS or (event_type or "").startswith("data-"):
        return None
    raise TransportError(f"Unknown stream chunk type: {event_type!r}")


class LLMClient:
    """
    Gateway HTTP client that automatically updates when configuration changes.

    Client replacement is deferred while streams are active.
    """

    def __init__(
        self,
        configuration: Configuration,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.configuration = configuration
        self._current_config: dict[str, Any] = configuration.get_llm_config()
        self._current_api_key = configuration.llm_api_key
        self._owns_client = http_client is None
        self.client: httpx.AsyncClient = http_client or self._build_client()
        self._active_streams = 0
        self._pending_rebuild = False
        self._background_tasks: set[asyncio.Task[Any]] = set()

        if self._owns_client:
            self.configuration.subscribe_to_changes(self._on_config_change)

    def _build_client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self._current_api_key:
            headers["Authorization"] = f"Bearer {self._current_api_key}"
        return httpx.AsyncClient(
            base_url=self._current_config["base_url"],
            headers=headers,
            timeout=self._current_config.get("timeout_seconds", 120),
            http2=bool(self._current_config.get("http2", False)),
            trust_env=False,
        )

    @property
    def config(self) -> dict[str, Any]:
        """Get current gateway configuration (cached, no I/O)."""
        return self._current_config

    def _on_config_change(self, new_config: dict[str, Any]) -> None:
        """Event handler for configuration changes."""
        new_llm_config = new_config.get("llm", {})
        new_api_key = self.configuration.llm_api_key
        if new_llm_config == self._current_config and new_api_key == self._current_api_key:
            return

        breaking = [
            key
            for key in ("base_url", "timeout_seconds", "http2")
            if new_llm_config.get(key) != self._current_config.get(key)
        ]
        if new_api_key != self._current_api_key:
            breaking.append("api_key")

        self._current_config = new_llm_config
        self._current_api_key = new_api_key
        if not breaking:
            logger.info("⚡ Gateway settings updated without client replacement")
            return

        logger.info("🔄 Gateway connection settings changed: %s", breaking)
        if self._active_streams > 0:
            logger.warning(
                "⏸️  Deferring client replacement due to %d active stream(s)",
                self._active_streams,
            )
            self._pending_rebuild = True
            return
        self._schedule(self._replace_client())

    def _schedule(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _replace_client(self) -> None:
        old_client = self.client
        self.client = self._build_client()
        self._pending_rebuild = False
        await old_client.aclose()
        logger.info("✅ New gateway HTTP client created")

    async def stream(self, request: ChatRequest) -> AsyncGenerator[StreamEvent, None]:
        """
        Stream one turn from the gateway.

        Args:
            request: Transcript and composition state for this turn

        Yields:
            Text, reasoning and tool-call events in emission order

        Raises:
            TransportError: Non-200 status, network failure, malformed or
                empty stream, or an error event
        """
        path = self._current_config.get("chat_path", "/api/chat")
        self._active_streams += 1
        log_directional_flow(
            "→", "Gateway", "streaming %d messages (model=%s)",
            len(request.messages), request.model_selection,
        )

        try:
            async with self.client.stream(
                "POST",
                path,
                json=request.to_payload(),
                headers={"Accept": "text/event-stream", "Accept-Encoding": "identity"},
            ) as response:
                if response.status_code != 200:
                    error_text = (await response.aread()).decode(errors="replace")
                    raise TransportError(
                        f"Gateway error {response.status_code}: {error_text[:500]}"
                    )

                chunk_count = 0
                async for line in response.aiter_lines():
                    if not line.startswith("data: "):
                        continue
                    data = line[6:].strip()
                    if data == "[DONE]":
                        break
                    try:
                        chunk = json.loads(data)
                    except json.JSONDecodeError as e:
                        raise TransportError(f"Invalid JSON in stream chunk: {e}") from e
                    chunk_count += 1

                    if should_log_feature("clients", "sse_chunks"):
                        logger.debug("← Gateway chunk: %s", data[:200])

                    event = parse_stream_event(chunk)
                    if event is not None:
                        yield event

                if chunk_count == 0:
                    raise TransportError("No streaming chunks received from gateway")

            log_directional_flow("←", "Gateway", "stream complete (%d chunks)", chunk_count)

        except httpx.HTTPError as e:
            logger.error(f"HTTP error during streaming: {type(e).__name__}: {e}")
            raise TransportError(f"HTTP error: {e!s}") from e
        finally:
            self._active_streams -= 1
            if self._active_streams == 0 and self._pending_rebuild:
                self._schedule(self._replace_client())

    async def _post_json(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self.client.post(path, json=body)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Gateway request to {path} failed: {e}")
            raise TransportError(f"HTTP error: {e!s}") from e
        except ValueError as e:
            raise TransportError(f"Gateway returned invalid JSON from {path}") from e
        if not isinstance(data, dict):
            raise TransportError(f"Unexpected response shape from {path}")
        return data

    async def summarize_conversation(self, messages: list[Message]) -> SummaryDraft:
        """Ask the gateway for a short summary (and suggested title) of a transcript."""
        data = await self._post_json(
            self._current_config.get("summarize_path", "/api/conversations/summarize"),
            {"messages": [m.model_dump(mode="json", by_alias=True) for m in messages]},
        )
        try:
            return SummaryDraft.model_validate(data)
        except ValidationError as e:
            raise TransportError(f"Invalid summary response: {e}") from e

    async def compress_transcript(self, messages: list[Message]) -> CompressionSummary:
        """Ask the gateway to condense a transcript into a structured summary."""
        data = await self._post_json(
            self._current_config.get("compress_path", "/api/conversations/compress"),
            {"messages": [m.model_dump(mode="json", by_alias=True) for m in messages]},
        )
        try:
            return CompressionSummary.model_validate(data.get("summary", data))
        except ValidationError as e:
            raise TransportError(f"Invalid compression response: {e}") from e

    async def close(self) -> None:
        """Close the HTTP client and unsubscribe from config changes."""
        self.configuration.unsubscribe_from_changes(self._on_config_change)
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> LLMClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
