"""Shared fixtures: scripted gateway, recorded tool services, session factory."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncGenerator, Callable
from typing import Any

import httpx
import pytest

from kronus.chat.context_composer import ContextComposer
from kronus.chat.models import StreamEvent, TextDelta, ToolAvailabilityConfig, ToolCallRequest
from kronus.chat.session_controller import SessionController
from kronus.chat.skill_registry import SkillConfig, SkillInfo, SkillRegistry
from kronus.chat.token_budget import TokenBudgetEstimator
from kronus.clients.llm_client import ChatRequest
from kronus.config import Configuration
from kronus.history.compression import TranscriptCompressor
from kronus.history.memory_repo import InMemoryRepo
from kronus.history.models import CompressionSummary, SummaryDraft
from kronus.tool_router import ToolDispatchRouter
from kronus.tools import ServiceClient, registry


class ScriptedTransport:
    """Plays back one list of events (or an exception) per request."""

    def __init__(self, rounds: list[list[StreamEvent] | Exception] | None = None):
        self.rounds = list(rounds or [])
        self.payloads: list[dict[str, Any]] = []

    def add_round(self, *events: StreamEvent) -> None:
        self.rounds.append(list(events))

    async def stream(self, request: ChatRequest) -> AsyncGenerator[StreamEvent, None]:
        self.payloads.append(json.loads(json.dumps(request.to_payload())))
        script = self.rounds.pop(0) if self.rounds else [TextDelta(delta="ok")]
        if isinstance(script, Exception):
            raise script
        for event in script:
            await asyncio.sleep(0)
            yield event


class StubSummarizer:
    def __init__(self, overview: str = "Short recap."):
        self.overview = overview
        self.compress_calls = 0

    async def summarize_conversation(self, messages):
        return SummaryDraft(title="Generated Title", summary="A generated summary.")

    async def compress_transcript(self, messages):
        self.compress_calls += 1
        return CompressionSummary(overview=self.overview, topics=["testing"])


class ServiceRecorder:
    """httpx.MockTransport handler that records every tool-service request."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response] | None = None):
        self.requests: list[httpx.Request] = []
        self._respond = respond or (lambda request: httpx.Response(200, json={}))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._respond(request)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def client(self) -> ServiceClient:
        return ServiceClient(
            httpx.AsyncClient(
                base_url="http://services.test", transport=httpx.MockTransport(self)
            )
        )


def tool_call(call_id: str, name: str, **args: Any) -> ToolCallRequest:
    return ToolCallRequest(tool_call_id=call_id, tool_name=name, input=args)


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def configuration(tmp_path) -> Configuration:
    return Configuration(runtime_config_path=str(tmp_path / "runtime_config.yaml"))


@pytest.fixture
def skill_registry() -> SkillRegistry:
    return SkillRegistry(
        [
            SkillInfo(
                slug="writing",
                title="Writing",
                priority=10,
                content="Help with long-form writing.",
                config=SkillConfig(soul={"writings": True}, tools={"media": True}),
            ),
            SkillInfo(
                slug="tracker",
                title="Tracker",
                priority=20,
                content="Keep the issue tracker tidy.",
                config=SkillConfig(
                    soul={"linearProjects": True, "linearIssues": True},
                    tools={"linear": True},
                ),
            ),
        ]
    )


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def services() -> ServiceRecorder:
    return ServiceRecorder()


@pytest.fixture
def repository() -> InMemoryRepo:
    return InMemoryRepo(summarizer=StubSummarizer())


@pytest.fixture
def make_session(configuration, transport, skill_registry, services, repository):
    created: list[SessionController] = []

    def _make(
        *,
        context_limits: dict[str, int] | None = None,
        summarizer: StubSummarizer | None = None,
        repo: Any = None,
        tools: ToolAvailabilityConfig | None = None,
    ) -> SessionController:
        repo = repo or repository
        limits = context_limits or configuration.get_model_context_limits()
        estimator = TokenBudgetEstimator(
            limits,
            default_limit=configuration.get_default_context_limit(),
            warning_threshold=0.7,
            compress_threshold=0.85,
        )
        session = SessionController(
            configuration,
            transport,
            ContextComposer(skill_registry),
            ToolDispatchRouter(registry, services.client()),
            repo,
            estimator,
            TranscriptCompressor(repo, summarizer or StubSummarizer(), keep_recent_messages=2),
        )
        if tools is not None:
            session.set_tools_config(tools)
        created.append(session)
        return session

    yield _make

    for session in created:
        task = session._turn_task
        if task is not None and not task.done():
            task.cancel()
