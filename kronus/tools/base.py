"""Shared registry instance and formatting helpers for tool handlers."""

from __future__ import annotations

import json
from typing import Any

from kronus.tool_router import ToolRegistry

registry = ToolRegistry()


def pretty_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


def short_hash(commit_hash: Any) -> str:
    return str(commit_hash)[:7]


def require(args: dict[str, Any], *names: str) -> None:
    """Raise ValueError naming the first missing required argument."""
    for name in names:
        if args.get(name) in (None, ""):
            raise ValueError(f"Missing required argument '{name}'")
