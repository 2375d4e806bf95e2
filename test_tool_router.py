#!/usr/bin/env python3
"""
Tests for the tool dispatch router, the handler catalog and the executor.
"""

import asyncio
import json

import httpx
import pytest

from conftest import ServiceRecorder
from kronus.chat.confirmation_gate import REJECTED_BY_USER, ConfirmationGate
from kronus.chat.models import ToolAvailabilityConfig, ToolCallPart, ToolState
from kronus.chat.tool_executor import INTERRUPTED_OUTPUT, ToolExecutor
from kronus.tool_router import ToolDispatchRouter, ToolRegistry, ToolSpec
from kronus.tools import TOOL_CATALOG, ToolServiceError, registry


async def _noop(ctx, args):
    return ""


def test_catalog_has_exactly_one_handler_per_tool():
    names = [name for names in TOOL_CATALOG.values() for name in names]

    assert len(names) == len(set(names))
    assert registry.verify_catalog(names) == []


def test_catalog_categories_match_handlers():
    for category, names in TOOL_CATALOG.items():
        for name in names:
            assert registry.get(name).category == category


def test_verify_catalog_reports_problems():
    local = ToolRegistry()
    local.register(ToolSpec("thing_create", "journal", _noop))

    problems = local.verify_catalog(["thing_list"])

    assert "missing handler for 'thing_list'" in problems
    assert "handler 'thing_create' is not catalogued" in problems
    assert "mutating handler 'thing_create' bypasses confirmation" in problems


def test_verify_catalog_reports_gated_tools_without_handlers():
    local = ToolRegistry()
    local.register(ToolSpec("slite_create_note", "slite", _noop))
    local.register(ToolSpec("thing_list_updates", "linear", _noop))

    problems = local.verify_catalog(["slite_create_note", "thing_list_updates"])

    assert "confirmation-gated tool 'slite_update_note' has no handler" in problems
    assert "confirmation-gated tool 'slite_create_note' has no handler" not in problems
    # "updates" is a noun here, not a verb
    assert not any("thing_list_updates" in problem for problem in problems)


def test_duplicate_or_uncategorised_registration_fails():
    local = ToolRegistry()
    local.register(ToolSpec("a_get", "git", _noop))

    with pytest.raises(ValueError):
        local.register(ToolSpec("a_get", "git", _noop))
    with pytest.raises(ValueError):
        local.register(ToolSpec("b_get", "weather", _noop))


def test_names_follow_tool_availability():
    router = ToolDispatchRouter(registry, ServiceRecorder().client())
    tools = ToolAvailabilityConfig(git=True)

    assert set(router.tool_names_for(tools)) == set(TOOL_CATALOG["git"])
    assert router.is_available("git_read_file", tools)
    assert not router.is_available("linear_update_issue", tools)
    # Unknown names fall through to the "Unknown tool" result
    assert router.is_available("does_not_exist", tools)


async def test_unknown_tool_is_plain_result():
    router = ToolDispatchRouter(registry, ServiceRecorder().client())

    outcome = await router.dispatch("does_not_exist", {}, "c1")

    assert outcome.output == "Unknown tool: does_not_exist"


async def test_dispatch_calls_service():
    services = ServiceRecorder(
        lambda request: httpx.Response(200, json={"issues": [{"identifier": "X-1"}]})
    )
    router = ToolDispatchRouter(registry, services.client())

    outcome = await router.dispatch("linear_list_issues", {"query": "bug", "showAll": True}, "c1")

    (request,) = services.requests
    assert request.url.path == "/api/integrations/linear/issues"
    assert request.url.params["query"] == "bug"
    assert request.url.params["showAll"] == "true"
    assert outcome.output.startswith("Found 1 issues:")


async def test_service_error_raises_tool_service_error():
    services = ServiceRecorder(
        lambda request: httpx.Response(404, json={"error": "Entry not found", "details": "abc"})
    )
    router = ToolDispatchRouter(registry, services.client())

    with pytest.raises(ToolServiceError) as excinfo:
        await router.dispatch("journal_get_entry", {"commit_hash": "abc"}, "c1")

    assert excinfo.value.status_code == 404
    assert "Details: abc" in str(excinfo.value)


async def test_none_arguments_are_dropped_from_body():
    services = ServiceRecorder(lambda request: httpx.Response(200, json={"identifier": "X-1"}))
    router = ToolDispatchRouter(registry, services.client())

    await router.dispatch("linear_update_issue", {"issueId": "X-1", "title": "T", "description": None}, "c1")

    assert json.loads(services.requests[0].content) == {"title": "T"}


async def test_generated_images_land_in_payload():
    def respond(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/replicate/generate-image":
            return httpx.Response(200, json={"images": ["https://img/1.png"], "model": "m"})
        return httpx.Response(200, json={"id": 7, "filename": "generated.png"})

    router = ToolDispatchRouter(registry, ServiceRecorder(respond).client())

    outcome = await router.dispatch("replicate_generate_image", {"prompt": "a cat"}, "c1")

    assert outcome.payload["images"] == ["https://img/1.png"]
    assert outcome.payload["saved_asset_ids"] == [7]
    assert "Saved to Media Library" in outcome.output


@pytest.fixture
def executor(configuration):
    services = ServiceRecorder(lambda request: httpx.Response(200, json={"identifier": "X-1"}))
    gate = ConfirmationGate()
    return ToolExecutor(ToolDispatchRouter(registry, services.client()), gate, configuration), services


async def test_executor_captures_handler_errors(executor):
    tool_executor, services = executor
    call = ToolCallPart(tool_call_id="c1", tool_name="journal_get_entry", input={})
    states: dict[str, ToolState] = {}

    result = await tool_executor.execute(call, states)

    assert result == "Error: Missing required argument 'commit_hash'"
    assert states["c1"].error == "Missing required argument 'commit_hash'"
    assert services.requests == []


async def test_executor_rejection_skips_dispatch(executor):
    tool_executor, services = executor
    call = ToolCallPart(tool_call_id="c1", tool_name="linear_update_issue", input={"issueId": "X-1"})
    states: dict[str, ToolState] = {}
    seen: list[ToolState] = []

    async def decide():
        while tool_executor.gate.pending is None:
            await asyncio.sleep(0)
        tool_executor.gate.reject()

    decider = asyncio.create_task(decide())
    result = await tool_executor.execute(call, states, lambda _id, state: seen.append(state))
    await decider

    assert result == REJECTED_BY_USER
    assert call.output == REJECTED_BY_USER
    assert seen[0].pending_confirmation
    assert states["c1"].completed
    assert services.requests == []


def test_interrupt_settles_only_unresolved(executor):
    tool_executor, _ = executor
    done = ToolCallPart(tool_call_id="a", tool_name="x", output="fine")
    open_call = ToolCallPart(tool_call_id="b", tool_name="x")
    states: dict[str, ToolState] = {}

    tool_executor.interrupt([done, open_call], states)

    assert done.output == "fine"
    assert open_call.output == INTERRUPTED_OUTPUT
    assert states == {"b": ToolState(interrupted=True, output=INTERRUPTED_OUTPUT)}


def test_hop_limit(executor, configuration):
    tool_executor, _ = executor
    configuration.update_setting(["chat", "service", "max_tool_hops"], 2)

    assert tool_executor.check_tool_hop_limit(1) == (False, None)
    stop, warning = tool_executor.check_tool_hop_limit(2)
    assert stop and "(2)" in warning


async def test_executor_refuses_disabled_category(executor):
    tool_executor, services = executor
    call = ToolCallPart(tool_call_id="c1", tool_name="linear_update_issue", input={"issueId": "X-1"})
    states: dict[str, ToolState] = {}

    result = await tool_executor.execute(
        call, states, tools_config=ToolAvailabilityConfig(journal=True)
    )

    assert result == "Unavailable tool: linear_update_issue is not enabled for this conversation"
    assert states["c1"] == ToolState(completed=True, output=result)
    assert tool_executor.gate.pending is None
    assert services.requests == []


async def test_portfolio_project_defaults():
    services = ServiceRecorder(lambda request: httpx.Response(200, json={"id": "p1"}))
    router = ToolDispatchRouter(registry, services.client())

    outcome = await router.dispatch(
        "repository_create_portfolio_project", {"title": "Kronus", "category": "tools"}, "c1"
    )

    (request,) = services.requests
    assert request.url.path == "/api/portfolio-projects"
    assert json.loads(request.content) == {
        "title": "Kronus",
        "category": "tools",
        "status": "active",
        "featured": False,
        "technologies": [],
        "tags": [],
    }
    assert outcome.output == "✅ Created portfolio project: **Kronus** (tools)"


async def test_project_update_checks_health():
    services = ServiceRecorder(lambda request: httpx.Response(200, json={"health": "atRisk"}))
    router = ToolDispatchRouter(registry, services.client())
    args = {"projectId": "p1", "body": "Blocked on review"}

    with pytest.raises(ValueError):
        await router.dispatch("linear_create_project_update", {**args, "health": "fine"}, "c1")
    assert services.requests == []

    outcome = await router.dispatch("linear_create_project_update", {**args, "health": "atRisk"}, "c2")

    (request,) = services.requests
    assert request.url.path == "/api/integrations/linear/projects/p1/updates"
    assert json.loads(request.content) == {"body": "Blocked on review", "health": "atRisk"}
    assert outcome.output.startswith("✅ Posted project update (atRisk)")


async def test_regenerate_entry_uses_edit_mode():
    services = ServiceRecorder(lambda request: httpx.Response(200, json={}))
    router = ToolDispatchRouter(registry, services.client())

    outcome = await router.dispatch(
        "journal_regenerate_entry", {"commit_hash": "abcdef123", "new_context": "fixed typo"}, "c1"
    )

    assert json.loads(services.requests[0].content) == {
        "commit_hash": "abcdef123",
        "new_context": "fixed typo",
        "edit_mode": True,
    }
    assert outcome.output == "Regenerated entry abcdef1"
