"""
Tool Execution Handler

Runs one model-emitted tool call through the confirmation gate and the
dispatch router:
- Mutating calls wait on the gate; rejections short-circuit dispatch
- Handler failures are captured per call as "Error: ..." results
- ToolState transitions are reported through a callback
- Tool hop limit checks for automatic follow-up requests
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from kronus.chat.confirmation_gate import (
    ConfirmationGate,
    is_rejection,
    requires_confirmation,
)
from kronus.chat.logging_utils import (
    log_tool_arguments,
    log_tool_execution_error,
    log_tool_execution_start,
    log_tool_execution_success,
    log_tool_results,
)
from kronus.chat.models import ToolCallPart, ToolState

if TYPE_CHECKING:
    from kronus.chat.models import ToolAvailabilityConfig
    from kronus.config import Configuration
    from kronus.tool_router import ToolDispatchRouter

logger = logging.getLogger(__name__)

INTERRUPTED_OUTPUT = "Interrupted: tool call was cancelled"

ToolStateListener = Callable[[str, ToolState], None]


class ToolExecutor:
    """Executes tool calls in the order they are handed over."""

    def __init__(
        self,
        router: ToolDispatchRouter,
        gate: ConfirmationGate,
        configuration: Configuration,
    ):
        self.router = router
        self.gate = gate
        self.configuration = configuration

    async def execute(
        self,
        call: ToolCallPart,
        tool_states: dict[str, ToolState],
        on_update: ToolStateListener | None = None,
        tools_config: ToolAvailabilityConfig | None = None,
    ) -> str:
        """
        Execute a single tool call and record its result on the part.

        The flow mirrors the confirmation state machine:
        1. Tools outside ``tools_config`` get an "Unavailable tool" result
        2. Mutating tools are marked pending and wait on the gate
        3. A rejection sentinel becomes the result; nothing is dispatched
        4. Otherwise the router runs the handler
        5. Handler exceptions become an "Error: <msg>" result

        Args:
            call: Tool-call part from the transcript (``output`` is set here)
            tool_states: The session's ToolState map (updated in place)
            on_update: Called with (tool_call_id, state) after each transition
            tools_config: Tool categories offered for this request; None skips
                the availability check

        Returns:
            The result string that is fed back to the model
        """
        call_id = call.tool_call_id
        tool_name = call.tool_name

        def transition(state: ToolState) -> None:
            tool_states[call_id] = state
            if on_update is not None:
                on_update(call_id, state)

        if tools_config is not None and not self.router.is_available(tool_name, tools_config):
            logger.warning("Tool %s called while its category is disabled", tool_name)
            call.output = f"Unavailable tool: {tool_name} is not enabled for this conversation"
            transition(ToolState(completed=True, output=call.output))
            return call.output

        if requires_confirmation(tool_name):
            transition(ToolState(is_loading=True, pending_confirmation=True))
            resolution = await self.gate.request(call_id, tool_name, call.input)
            if is_rejection(resolution):
                logger.info("Tool %s rejected by user, skipping dispatch", tool_name)
                call.output = resolution
                transition(ToolState(completed=True, output=resolution))
                return resolution

        transition(ToolState(is_loading=True))
        log_tool_arguments(tool_name, call.input)
        log_tool_execution_start(tool_name, call_id)

        try:
            outcome = await self.router.dispatch(tool_name, call.input, call_id)
        except Exception as e:
            error_msg = str(e) or type(e).__name__
            log_tool_execution_error(tool_name, error_msg)
            call.output = f"Error: {error_msg}"
            transition(ToolState(error=error_msg, output=call.output))
            return call.output

        log_tool_execution_success(tool_name, len(outcome.output))
        log_tool_results(tool_name, outcome.output)
        call.output = outcome.output
        transition(
            ToolState(completed=True, output=outcome.output, payload=outcome.payload)
        )
        return outcome.output

    def interrupt(
        self,
        calls: list[ToolCallPart],
        tool_states: dict[str, ToolState],
        on_update: ToolStateListener | None = None,
    ) -> None:
        """Settle unresolved calls after cancellation so nothing stays loading."""
        unresolved = [call for call in calls if not call.resolved]
        for call in unresolved:
            call.output = INTERRUPTED_OUTPUT
            state = ToolState(interrupted=True, output=INTERRUPTED_OUTPUT)
            tool_states[call.tool_call_id] = state
            if on_update is not None:
                on_update(call.tool_call_id, state)
        if unresolved:
            logger.info("Marked %d unresolved tool call(s) as interrupted", len(unresolved))

    def check_tool_hop_limit(self, hops: int) -> tuple[bool, str | None]:
        """
        Check if tool call hop limit has been reached.

        Returns:
            tuple: (should_stop, warning_message)
        """
        max_tool_hops = self.configuration.get_max_tool_hops()
        if hops >= max_tool_hops:
            warning_msg = (
                f"⚠️ Reached maximum tool call limit ({max_tool_hops}). "
                "Stopping to prevent infinite recursion."
            )
            logger.warning("Maximum tool hops (%d) reached, stopping recursion", max_tool_hops)
            return True, warning_msg
        return False, None
