"""
Chat Logging Utilities

Shared logging helpers with per-module feature flags.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

logger = logging.getLogger(__name__)

# module -> feature -> enabled, populated from the logging config at startup
_MODULE_FEATURES: dict[str, dict[str, bool]] = {}


def configure_features(module_features: dict[str, dict[str, bool]]) -> None:
    """Replace the feature flag table used by ``should_log_feature``."""
    _MODULE_FEATURES.clear()
    _MODULE_FEATURES.update(module_features)


def should_log_feature(module: str, feature: str) -> bool:
    """Check if a specific logging feature should be enabled."""
    return _MODULE_FEATURES.get(module, {}).get(feature, False)


def _truncate(value: Any, limit: int) -> str:
    text = str(value)
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def log_tool_execution_start(tool_name: str, tool_call_id: str) -> None:
    """
    Log the start of tool execution with consistent formatting.

    Args:
        tool_name: Name of the tool being executed
        tool_call_id: Identifier of the call emitted by the model
    """
    logger.info("→ Tool[%s]: executing call %s", tool_name, tool_call_id)


def log_tool_execution_success(tool_name: str, content_length: int) -> None:
    """
    Log successful tool execution with content length.

    Args:
        tool_name: Name of the executed tool
        content_length: Length of the returned content
    """
    logger.info("← Tool[%s]: success, content length: %d", tool_name, content_length)


def log_tool_execution_error(tool_name: str, error_msg: str) -> None:
    """
    Log tool execution error with consistent formatting.

    Args:
        tool_name: Name of the tool that failed
        error_msg: Error message describing the failure
    """
    logger.error("← Tool[%s]: failed with error: %s", tool_name, error_msg)


def log_tool_arguments(
    tool_name: str, arguments: dict[str, Any], truncate_length: int = 500
) -> None:
    """Log tool arguments when the ``tools.tool_arguments`` feature is on."""
    if not should_log_feature("tools", "tool_arguments"):
        return
    logger.info("→ Tool[%s]: arguments: %s", tool_name, _truncate(arguments, truncate_length))


def log_tool_results(tool_name: str, results: Any, truncate_length: int = 200) -> None:
    """Log tool results when the ``tools.tool_results`` feature is on."""
    if not should_log_feature("tools", "tool_results"):
        return
    logger.info("← Tool[%s]: results: %s", tool_name, _truncate(results, truncate_length))


def log_confirmation_requested(tool_name: str, description: str) -> None:
    if should_log_feature("tools", "confirmations"):
        logger.info("⏸ Gate[%s]: awaiting confirmation: %s", tool_name, description)


def log_confirmation_resolved(tool_name: str, resolution: str) -> None:
    if should_log_feature("tools", "confirmations"):
        logger.info("▶ Gate[%s]: resolved with %s", tool_name, resolution)


def log_directional_flow(
    direction: str, component: str, message: str, *args: Any
) -> None:
    """
    Log directional flow messages with consistent arrow formatting.

    Args:
        direction: Either "→" (outgoing) or "←" (incoming/completed)
        component: Component name (e.g., "Gateway", "Repository", "Frontend")
        message: Message template with optional format placeholders
        *args: Arguments for message formatting
    """
    formatted_msg = message % args if args else message
    logger.info(f"{direction} {component}: {formatted_msg}")


@asynccontextmanager
async def log_performance(operation_name: str) -> AsyncIterator[None]:
    """Context manager to log performance metrics for operations."""
    start_time = time.monotonic()
    try:
        yield
    finally:
        elapsed_ms = (time.monotonic() - start_time) * 1000
        logger.info(f"⏱️ {operation_name} completed in {elapsed_ms:.2f}ms")
