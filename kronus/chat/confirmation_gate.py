"""
Confirmation Gate

Withholds mutating tool calls until the user decides:
- ``requires_confirmation`` is a static predicate over WRITE_TOOLS
- ``ConfirmationGate.request`` exposes one PendingToolAction and suspends on a
  one-shot future until confirm / reject / dismiss resolves it
- Resolution sentinels are a string contract shared with the model prompt
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from typing import Any

from .logging_utils import log_confirmation_requested, log_confirmation_resolved
from .models import PendingToolAction

logger = logging.getLogger(__name__)

CONFIRMED = "CONFIRMED"
REJECTED_PREFIX = "REJECTED:"
REJECTED_BY_USER = "REJECTED: User rejected the action"
REJECTED_CANCELLED = "REJECTED: User cancelled the action"

WRITE_TOOLS = frozenset(
    {
        # Journal
        "journal_create_entry",
        "journal_edit_entry",
        "journal_regenerate_entry",
        "journal_upsert_project_summary",
        # Repository documents
        "repository_create_document",
        "repository_update_document",
        # Repository CV
        "repository_create_skill",
        "repository_update_skill",
        "repository_create_experience",
        "repository_update_experience",
        "repository_create_education",
        "repository_update_education",
        "repository_create_portfolio_project",
        "repository_update_portfolio_project",
        # Media
        "save_image",
        "update_media",
        # Linear
        "linear_create_issue",
        "linear_update_issue",
        "linear_create_project",
        "linear_update_project",
        "linear_create_project_update",
        # Slite
        "slite_create_note",
        "slite_update_note",
    }
)

# Tool families that get a structured diff-view preview
PREVIEW_FAMILIES = ("journal", "linear", "document", "slite", "media", "image")

DIFFABLE_FIELDS = (
    "content",
    "description",
    "body",
    "summary",
    "notes",
    "raw_agent_report",
    "context",
    "text",
    "markdown",
)


def requires_confirmation(tool_name: str) -> bool:
    return tool_name in WRITE_TOOLS


def is_rejection(resolution: str) -> bool:
    return resolution.startswith(REJECTED_PREFIX)


def _short_hash(value: Any) -> str:
    return str(value)[:7] if value is not None else "undefined"


_DESCRIPTIONS: dict[str, Callable[[dict[str, Any]], str]] = {
    "journal_create_entry": lambda a: (
        f"Create journal entry for commit {_short_hash(a.get('commit_hash'))} "
        f"in {a.get('repository')}"
    ),
    "journal_edit_entry": lambda a: f"Edit journal entry {_short_hash(a.get('commit_hash'))}",
    "journal_regenerate_entry": lambda a: (
        f"Regenerate journal entry {_short_hash(a.get('commit_hash'))} with AI"
    ),
    "journal_upsert_project_summary": lambda a: (
        f"Update project summary for {a.get('repository')}"
    ),
    "repository_create_document": lambda a: (
        f'Create new {a.get("type") or "document"}: "{a.get("title")}"'
    ),
    "repository_update_document": lambda a: (
        f"Update document #{a.get('id')}"
        + (f': "{a["title"]}"' if a.get("title") else "")
    ),
    "repository_create_skill": lambda a: f"Add new skill: {a.get('name')} ({a.get('category')})",
    "repository_update_skill": lambda a: f"Update skill: {a.get('id')}",
    "repository_create_experience": lambda a: (
        f"Add work experience: {a.get('title')} at {a.get('company')}"
    ),
    "repository_update_experience": lambda a: f"Update experience: {a.get('id')}",
    "repository_create_education": lambda a: (
        f"Add education: {a.get('degree')} at {a.get('institution')}"
    ),
    "repository_update_education": lambda a: f"Update education: {a.get('id')}",
    "repository_create_portfolio_project": lambda a: (
        f'Create portfolio project: "{a.get("title")}"'
    ),
    "repository_update_portfolio_project": lambda a: f"Update portfolio project #{a.get('id')}",
    "save_image": lambda a: f"Save image: {a.get('filename')}",
    "update_media": lambda a: f"Update media #{a.get('id')}",
    "linear_create_issue": lambda a: f'Create Linear issue: "{a.get("title")}"',
    "linear_update_issue": lambda a: f"Update Linear issue {a.get('issueId')}",
    "linear_create_project": lambda a: f'Create Linear project: "{a.get("name")}"',
    "linear_update_project": lambda a: f"Update Linear project {a.get('projectId')}",
    "linear_create_project_update": lambda a: (
        f"Post project update ({a.get('health')}) to Linear project {a.get('projectId')}"
    ),
    "slite_create_note": lambda a: f'Create Slite note: "{a.get("title")}"',
    "slite_update_note": lambda a: f"Update Slite note {a.get('noteId')}",
}


def describe_tool_action(tool_name: str, args: dict[str, Any]) -> str:
    """Human-readable one-liner for the confirmation surface."""
    describe = _DESCRIPTIONS.get(tool_name)
    if describe is None:
        return f"Execute {tool_name}"
    return describe(args)


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def format_tool_args(args: dict[str, Any]) -> dict[str, str]:
    """Compact key -> display string table; None values are skipped."""
    display: dict[str, str] = {}
    for key, value in args.items():
        if value is None:
            continue
        if isinstance(value, list):
            if len(value) > 3:
                head = ", ".join(_scalar(v) for v in value[:3])
                display[key] = f"[{head}...+{len(value) - 3}]"
            else:
                display[key] = f"[{', '.join(_scalar(v) for v in value)}]"
        elif isinstance(value, str):
            display[key] = value[:200] + "..." if len(value) > 200 else value
        elif isinstance(value, dict):
            display[key] = json.dumps(value)[:100]
        else:
            display[key] = _scalar(value)
    return display


def get_diffable_content(tool_name: str, args: dict[str, Any]) -> str | None:
    """The long-form field of a write call that benefits from a diff view."""
    if "document" in tool_name:
        return args.get("content") or args.get("body") or None
    if "journal" in tool_name:
        return (
            args.get("raw_agent_report")
            or args.get("summary")
            or args.get("description")
            or None
        )
    if any(family in tool_name for family in ("portfolio", "experience", "education")):
        return args.get("description") or None
    if "linear" in tool_name:
        return args.get("description") or args.get("body") or None

    for field in DIFFABLE_FIELDS:
        value = args.get(field)
        if isinstance(value, str) and len(value) > 50:
            return value
    return None


def format_args_for_diff_view(tool_name: str, args: dict[str, Any]) -> str:
    """Pseudo-code rendering of a write call's arguments."""
    if "create" in tool_name:
        operation = "CREATE"
    elif "update" in tool_name or "edit" in tool_name:
        operation = "UPDATE"
    else:
        operation = "EXECUTE"
    lines = [f"// {operation}: {tool_name}", ""]

    for key, value in args.items():
        if value is None:
            continue
        if isinstance(value, list):
            if not value:
                lines.append(f"{key}: []")
            elif isinstance(value[0], dict):
                lines.append(f"{key}: [")
                for i, item in enumerate(value):
                    comma = "," if i < len(value) - 1 else ""
                    lines.append(f"  {json.dumps(item)}{comma}")
                lines.append("]")
            else:
                lines.append(f"{key}: [{', '.join(json.dumps(v) for v in value)}]")
        elif isinstance(value, dict):
            rendered = json.dumps(value, indent=2).replace("\n", "\n  ")
            lines.append(f"{key}: {rendered}")
        elif isinstance(value, str) and len(value) > 100:
            lines.extend([f'{key}: """', value, '"""'])
        elif isinstance(value, str):
            lines.append(f'{key}: "{value}"')
        else:
            lines.append(f"{key}: {_scalar(value)}")

    return "\n".join(lines)


def build_preview(tool_name: str, args: dict[str, Any]) -> str | None:
    if not any(family in tool_name for family in PREVIEW_FAMILIES):
        return None
    return format_args_for_diff_view(tool_name, args)


def create_pending_action(
    tool_call_id: str, tool_name: str, args: dict[str, Any]
) -> PendingToolAction:
    return PendingToolAction(
        id=f"{tool_name}-{int(time.time() * 1000)}",
        tool_call_id=tool_call_id,
        tool_name=tool_name,
        args=args,
        description=describe_tool_action(tool_name, args),
        formatted_args=format_tool_args(args),
        preview=build_preview(tool_name, args),
    )


class ConfirmationGate:
    """
    Single-slot suspension point for mutating tool calls.

    At most one PendingToolAction is exposed at a time. A second ``request``
    waits on the guard lock until the first one settles.
    """

    def __init__(
        self, on_change: Callable[[PendingToolAction | None], None] | None = None
    ) -> None:
        self._on_change = on_change
        self._guard = asyncio.Lock()
        self._pending: PendingToolAction | None = None
        self._future: asyncio.Future[str] | None = None

    @property
    def pending(self) -> PendingToolAction | None:
        return self._pending

    async def request(
        self, tool_call_id: str, tool_name: str, args: dict[str, Any]
    ) -> str:
        """
        Expose a pending action and wait for the user's decision.

        Args:
            tool_call_id: Identifier of the call emitted by the model
            tool_name: Name of the mutating tool
            args: Raw tool arguments

        Returns:
            CONFIRMED or one of the REJECTED sentinels
        """
        async with self._guard:
            action = create_pending_action(tool_call_id, tool_name, args)
            future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
            self._pending = action
            self._future = future
            log_confirmation_requested(tool_name, action.description)
            self._notify()
            try:
                resolution = await future
            finally:
                # Cancelled waiters leave nothing behind
                if self._future is future:
                    self._clear()
            log_confirmation_resolved(tool_name, resolution)
            return resolution

    def confirm(self) -> bool:
        return self._resolve(CONFIRMED)

    def reject(self) -> bool:
        return self._resolve(REJECTED_BY_USER)

    def dismiss(self) -> bool:
        return self._resolve(REJECTED_CANCELLED)

    def force_reject(self) -> bool:
        """Settle any dangling confirmation before the conversation changes."""
        resolved = self._resolve(REJECTED_CANCELLED)
        if resolved:
            logger.info("Force-rejected dangling confirmation")
        return resolved

    def _resolve(self, resolution: str) -> bool:
        future = self._future
        if future is None or future.done():
            return False
        future.set_result(resolution)
        self._clear()
        return True

    def _clear(self) -> None:
        self._pending = None
        self._future = None
        self._notify()

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self._pending)
