"""Tool Dispatch Router

This module maps tool names to handler functions:
- A registry table filled by the ``@registry.tool(...)`` decorator
- Category lookup so the tool surface follows the ToolAvailabilityConfig
- Dispatch that turns unknown names into a plain result string

Handlers are independent: each performs one unit of work against an external
service and returns the display string shown to the user and fed back to the
model. Side payloads (e.g. generated image URLs) go in ``ctx.payload``.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from kronus.chat.confirmation_gate import WRITE_TOOLS

if TYPE_CHECKING:
    from kronus.chat.models import ToolAvailabilityConfig
    from kronus.tools.service_client import ServiceClient

logger = logging.getLogger(__name__)

# Name tokens that mark a handler as changing external state
MUTATING_VERBS = frozenset({"create", "update", "edit", "save", "upsert", "regenerate"})

TOOL_CATEGORIES = (
    "journal",
    "repository",
    "linear",
    "git",
    "media",
    "image_generation",
    "web_search",
    "slite",
)


@dataclass
class ToolContext:
    """Per-invocation context handed to a handler."""

    services: ServiceClient
    tool_call_id: str
    payload: dict[str, Any] = field(default_factory=dict)


ToolHandler = Callable[[ToolContext, dict[str, Any]], Awaitable[str]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    category: str
    handler: ToolHandler
    description: str = ""

    @property
    def mutating(self) -> bool:
        return self.name in WRITE_TOOLS


@dataclass
class ToolOutcome:
    output: str
    payload: dict[str, Any] = field(default_factory=dict)


class ToolRegistry:
    """Name -> handler table with exactly one handler per name."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def register(self, spec: ToolSpec) -> None:
        if spec.category not in TOOL_CATEGORIES:
            raise ValueError(f"Unknown tool category '{spec.category}' for {spec.name}")
        if spec.name in self._tools:
            raise ValueError(f"Tool '{spec.name}' already has a handler")
        self._tools[spec.name] = spec

    def tool(
        self, name: str, category: str, description: str = ""
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator registering ``handler`` under ``name``."""

        def decorator(handler: ToolHandler) -> ToolHandler:
            self.register(ToolSpec(name, category, handler, description))
            return handler

        return decorator

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return sorted(self._tools)

    def specs(self) -> list[ToolSpec]:
        return [self._tools[name] for name in self.names()]

    def names_for(self, tools_config: ToolAvailabilityConfig) -> list[str]:
        """Tool names whose category is enabled."""
        enabled = tools_config.enabled()
        return [spec.name for spec in self.specs() if spec.category in enabled]

    def verify_catalog(self, catalog: Iterable[str]) -> list[str]:
        """
        Check the registry against a catalog of tool names.

        Returns:
            Problems found; empty when every catalogued name has exactly one
            handler, nothing extra is registered, every mutating handler
            is gated and every gated name has a handler.
        """
        catalog_names = set(catalog)
        problems = [
            f"missing handler for '{name}'"
            for name in sorted(catalog_names - self._tools.keys())
        ]
        problems.extend(
            f"handler '{name}' is not catalogued"
            for name in sorted(self._tools.keys() - catalog_names)
        )
        problems.extend(
            f"confirmation-gated tool '{name}' has no handler"
            for name in sorted(WRITE_TOOLS - self._tools.keys())
        )
        for spec in self.specs():
            name = spec.name
            looks_mutating = not MUTATING_VERBS.isdisjoint(name.split("_"))
            if looks_mutating and not spec.mutating:
                problems.append(f"mutating handler '{name}' bypasses confirmation")
        return problems


class ToolDispatchRouter:
    """Dispatches validated tool calls to registered handlers."""

    def __init__(self, registry: ToolRegistry, services: ServiceClient) -> None:
        self.registry = registry
        self.services = services

    def tool_names_for(self, tools_config: ToolAvailabilityConfig) -> list[str]:
        """Names the model may call under ``tools_config``."""
        return self.registry.names_for(tools_config)

    def is_available(self, tool_name: str, tools_config: ToolAvailabilityConfig) -> bool:
        """False only for a registered tool whose category is switched off."""
        spec = self.registry.get(tool_name)
        return spec is None or spec.category in tools_config.enabled()

    async def dispatch(
        self, tool_name: str, args: dict[str, Any], tool_call_id: str
    ) -> ToolOutcome:
        """
        Run the handler for ``tool_name``.

        Args:
            tool_name: Registered tool name
            args: Tool arguments as emitted by the model
            tool_call_id: Identifier of the call

        Returns:
            ToolOutcome with the display string and any side payload

        Raises:
            Exception: Whatever the handler raises, for the executor to capture
        """
        spec = self.registry.get(tool_name)
        if spec is None:
            logger.warning("Unknown tool requested: %s", tool_name)
            return ToolOutcome(output=f"Unknown tool: {tool_name}")

        ctx = ToolContext(services=self.services, tool_call_id=tool_call_id)
        output = await spec.handler(ctx, args)
        return ToolOutcome(output=output, payload=ctx.payload)
