"""
Session Controller

Main coordination layer for one chat session:
1. Takes the user's message and locks the context configuration
2. Streams the model response and runs tool calls in emission order
3. Resubmits automatically after tool rounds, up to the hop limit
4. Autosaves the transcript once the turn is over

Observers subscribe to SessionEvents; the websocket server is one of them.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from kronus.clients.llm_client import ChatRequest, ChatTransport, TransportError
from kronus.history.repository import CompressionError, ConversationRepository

from .confirmation_gate import ConfirmationGate
from .logging_utils import should_log_feature
from .models import (
    ContextConfig,
    ConversationStatus,
    FilePart,
    Message,
    ModelConfig,
    PendingToolAction,
    ReasoningDelta,
    ReasoningPart,
    SessionEvent,
    TextDelta,
    TextPart,
    ToolAvailabilityConfig,
    ToolCallPart,
    ToolCallRequest,
    ToolState,
)
from .session_state import SessionState
from .token_budget import FALLBACK_CONTEXT_STATS, ContextStats, TokenBudget
from .tool_executor import ToolExecutor

if TYPE_CHECKING:
    from kronus.config import Configuration
    from kronus.history.compression import TranscriptCompressor
    from kronus.history.models import CompressionSummary
    from kronus.tool_router import ToolDispatchRouter

    from .context_composer import ContextComposer
    from .token_budget import TokenBudgetEstimator

logger = logging.getLogger(__name__)

UNTITLED_CONVERSATION = "Untitled Conversation"

SessionListener = Callable[[SessionEvent], None]


class SessionBusyError(RuntimeError):
    """An operation that needs an idle session was attempted mid-turn or after a failed turn."""


def derive_title(messages: Iterable[Message], max_chars: int = 50) -> str:
    """Title from the first user message, cut to ``max_chars`` and stripped."""
    for message in messages:
        if message.role == "user":
            title = message.text()[:max_chars].strip()
            return title or UNTITLED_CONVERSATION
    return UNTITLED_CONVERSATION


def rebuild_tool_states(messages: Iterable[Message]) -> dict[str, ToolState]:
    """ToolState map for a transcript loaded from storage."""
    states: dict[str, ToolState] = {}
    for message in messages:
        for call in message.tool_calls():
            if call.resolved:
                states[call.tool_call_id] = ToolState(completed=True, output=call.output)
    return states


class SessionController:
    """
    Orchestrates turns for a single conversation.

    Only one turn runs at a time. Confirmation commands, skill toggles and
    config edits stay available while a turn is suspended on the gate.
    """

    def __init__(
        self,
        configuration: Configuration,
        transport: ChatTransport,
        composer: ContextComposer,
        router: ToolDispatchRouter,
        repository: ConversationRepository,
        estimator: TokenBudgetEstimator,
        compressor: TranscriptCompressor | None = None,
    ):
        self.configuration = configuration
        self.transport = transport
        self.composer = composer
        self.repository = repository
        self.estimator = estimator
        self.compressor = compressor

        self.gate = ConfirmationGate(on_change=self._on_pending_change)
        self.executor = ToolExecutor(router, self.gate, configuration)

        default_model = configuration.get_default_model()
        self.state = SessionState(
            model=ModelConfig(
                model=default_model,
                reasoning_enabled=configuration.model_reasoning_enabled(default_model),
            )
        )
        self._turn_task: asyncio.Task[None] | None = None
        self._listeners: list[SessionListener] = []

    # ---------- Observers ----------

    def subscribe(self, listener: SessionListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event_type: str, **data: Any) -> None:
        event = SessionEvent(type=event_type, data=data)
        if should_log_feature("chat", "session_events"):
            logger.debug("Session event: %s", event_type)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Session listener failed on {event_type}: {e}")

    def _emit_message(self, message: Message) -> None:
        self._emit("message", message=message.model_dump(mode="json", by_alias=True))

    def _emit_conversation(self) -> None:
        self._emit(
            "conversation",
            conversationId=self.state.conversation_id,
            title=self.state.title,
            messages=[
                m.model_dump(mode="json", by_alias=True) for m in self.state.messages
            ],
            toolStates={
                k: v.model_dump(mode="json") for k, v in self.state.tool_states.items()
            },
        )

    def _emit_config(self) -> None:
        self._emit("config", **self.config_snapshot())

    def _on_tool_state(self, tool_call_id: str, state: ToolState) -> None:
        self._emit("tool_state", toolCallId=tool_call_id, state=state.model_dump(mode="json"))

    def _on_pending_change(self, pending: PendingToolAction | None) -> None:
        self._emit(
            "pending_action",
            action=pending.model_dump(mode="json") if pending else None,
        )

    def _set_status(self, status: ConversationStatus) -> None:
        self.state.status = status
        self._emit("status", status=status.value, error=self.state.error)

    # ---------- Read-only views ----------

    @property
    def status(self) -> ConversationStatus:
        return self.state.status

    @property
    def messages(self) -> list[Message]:
        return self.state.messages

    @property
    def pending_action(self) -> PendingToolAction | None:
        return self.gate.pending

    @property
    def is_busy(self) -> bool:
        return self._turn_task is not None and not self._turn_task.done()

    @property
    def effective_context_config(self) -> ContextConfig:
        """The locked snapshot once a message was sent, else the live config."""
        return self.state.locked_context_config or self.composer.context_config

    def config_snapshot(self) -> dict[str, Any]:
        locked = self.state.locked_context_config
        return {
            "mode": self.composer.mode,
            "activeSkillSlugs": self.composer.active_skill_slugs,
            "manualOverride": self.composer.manual_override,
            "contextConfig": self.composer.context_config.to_wire(),
            "toolsConfig": self.composer.tools_config.to_wire(),
            "lockedContextConfig": locked.to_wire() if locked else None,
            "model": self.state.model.model,
            "reasoningEnabled": self.state.model.reasoning_enabled,
        }

    def budget(self, stats: ContextStats = FALLBACK_CONTEXT_STATS) -> TokenBudget:
        return self.estimator.estimate(
            self.effective_context_config,
            self.state.messages,
            self.state.model.model,
            stats,
        )

    # ---------- Turns ----------

    def _require_idle(self, *, allow_error: bool = True) -> None:
        if self.is_busy:
            raise SessionBusyError("A response is still in progress")
        if not allow_error and self.state.status == ConversationStatus.ERROR:
            raise SessionBusyError("The last response failed; retry or start over first")

    def submit(self, text: str, files: Iterable[FilePart] = ()) -> asyncio.Task[None]:
        """
        Append a user message and start a turn.

        Returns:
            The turn task; await it to wait for the response and autosave

        Raises:
            SessionBusyError: A turn is already running
        """
        self._require_idle()
        message = Message.user(text, list(files))
        self.state.messages.append(message)
        self.state.touch()
        self._emit_message(message)
        return self._start_turn()

    def edit_message(self, message_id: str, text: str) -> asyncio.Task[None]:
        """Replace a user message's text and resubmit from that point."""
        self._require_idle(allow_error=False)
        index = self._index_of(message_id)
        message = self.state.messages[index]
        if message.role != "user":
            raise ValueError("Only user messages can be edited")
        files = [p for p in message.parts if isinstance(p, FilePart)]
        message.parts = [*files, TextPart(text=text)]
        self._truncate_after(index)
        return self._start_turn()

    def regenerate(self) -> asyncio.Task[None]:
        """Discard the response to the last user message and ask again."""
        self._require_idle(allow_error=False)
        self._truncate_after(self._last_user_index())
        logger.info("Regenerating response")
        return self._start_turn()

    def retry(self) -> asyncio.Task[None]:
        """Resubmit after a failed turn; partial output of that turn is dropped."""
        self._require_idle()
        self._truncate_after(self._last_user_index())
        logger.info("Retrying after status %s", self.state.status.value)
        return self._start_turn()

    def cancel(self) -> bool:
        """Cancel the running turn. Unresolved tool calls become interrupted."""
        if not self.is_busy:
            return False
        assert self._turn_task is not None
        self._turn_task.cancel()
        return True

    def _index_of(self, message_id: str) -> int:
        for i, message in enumerate(self.state.messages):
            if message.id == message_id:
                return i
        raise KeyError(f"Message {message_id} not found")

    def _last_user_index(self) -> int:
        for i in range(len(self.state.messages) - 1, -1, -1):
            if self.state.messages[i].role == "user":
                return i
        raise ValueError("No user message to respond to")

    def _truncate_after(self, index: int) -> None:
        self.state.messages = self.state.messages[: index + 1]
        live_ids = {
            call.tool_call_id for m in self.state.messages for call in m.tool_calls()
        }
        self.state.tool_states = {
            k: v for k, v in self.state.tool_states.items() if k in live_ids
        }
        self.state.touch()
        self._emit_conversation()

    def _start_turn(self) -> asyncio.Task[None]:
        if self.state.locked_context_config is None:
            self.state.locked_context_config = self.composer.context_config
            logger.info(
                "Locked context config: %s",
                sorted(self.state.locked_context_config.enabled()),
            )
            self._emit_config()
        self.state.error = None
        self._set_status(ConversationStatus.SUBMITTED)
        self._turn_task = asyncio.create_task(self._run_turn())
        return self._turn_task

    def _auto_respond(self) -> bool:
        return bool(
            self.configuration.get_chat_service_config().get(
                "auto_respond_after_tools", True
            )
        )

    async def _run_turn(self) -> None:
        hops = 0
        try:
            while True:
                calls = await self._stream_round()
                if not calls or not self._auto_respond():
                    break
                if not all(call.resolved for call in calls):
                    break
                should_stop, warning = self.executor.check_tool_hop_limit(hops)
                if should_stop:
                    assistant = self._assistant_message()
                    assistant.parts.append(TextPart(text=f"\n\n{warning}"))
                    self.state.touch()
                    self._emit_message(assistant)
                    break
                hops += 1
                logger.info("Auto-responding after tool round (hop %d)", hops)
        except asyncio.CancelledError:
            self._interrupt_unresolved()
            self._set_status(ConversationStatus.IDLE)
            logger.info("Turn cancelled")
            raise
        except TransportError as e:
            logger.error(f"Turn failed: {e}")
            self._fail_turn(str(e))
            return
        except Exception as e:
            logger.exception("Turn failed unexpectedly")
            self._fail_turn(f"Unexpected error: {type(e).__name__}: {e}")
            return

        self._set_status(ConversationStatus.IDLE)
        await self._autosave()

    def _fail_turn(self, message: str) -> None:
        self._interrupt_unresolved()
        self.state.error = message
        self._set_status(ConversationStatus.ERROR)
        self._emit("error", message=message)

    def _interrupt_unresolved(self) -> None:
        unresolved = self.state.unresolved_tool_calls()
        if unresolved:
            self.executor.interrupt(unresolved, self.state.tool_states, self._on_tool_state)
            self.state.touch()

    def _build_request(self) -> ChatRequest:
        return ChatRequest(
            messages=self.state.messages,
            context_config=self.effective_context_config,
            tool_availability_config=self.composer.tools_config,
            model_selection=self.state.model.model,
            reasoning_enabled=self.state.model.reasoning_enabled,
            active_skill_slugs=self.composer.active_skill_slugs,
        )

    def _assistant_message(self) -> Message:
        """The trailing assistant message; continuation rounds extend it."""
        last = self.state.last_message()
        if last is not None and last.role == "assistant":
            return last
        message = Message(role="assistant")
        self.state.messages.append(message)
        return message

    async def _stream_round(self) -> list[ToolCallPart]:
        """Stream one model response into the transcript, running tools inline."""
        request = self._build_request()
        assistant = self._assistant_message()
        calls: list[ToolCallPart] = []

        async with contextlib.aclosing(self.transport.stream(request)) as events:
            async for event in events:
                if self.state.status == ConversationStatus.SUBMITTED:
                    self._set_status(ConversationStatus.STREAMING)
                if should_log_feature("chat", "stream_events"):
                    logger.debug("← Gateway event: %s", event.type)

                if isinstance(event, TextDelta):
                    self._extend(assistant, TextPart, event.delta)
                elif isinstance(event, ReasoningDelta):
                    self._extend(assistant, ReasoningPart, event.delta)
                elif isinstance(event, ToolCallRequest):
                    call = ToolCallPart(
                        tool_call_id=event.tool_call_id,
                        tool_name=event.tool_name,
                        input=event.input,
                    )
                    assistant.parts.append(call)
                    calls.append(call)
                    self.state.touch()
                    self._emit_message(assistant)
                    await self.executor.execute(
                        call,
                        self.state.tool_states,
                        self._on_tool_state,
                        tools_config=request.tool_availability_config,
                    )
                    self.state.touch()
                    self._emit_message(assistant)

        return calls

    def _extend(
        self, message: Message, part_type: type[TextPart] | type[ReasoningPart], delta: str
    ) -> None:
        if not delta:
            return
        last = message.parts[-1] if message.parts else None
        if isinstance(last, part_type):
            last.text += delta
        else:
            message.parts.append(part_type(text=delta))
        self.state.touch()
        self._emit_message(message)

    # ---------- Persistence ----------

    async def _autosave(self) -> None:
        """Save once per completed turn; failures are retried at the next one."""
        state = self.state
        last = state.last_message()
        if (
            state.status != ConversationStatus.IDLE
            or last is None
            or last.role != "assistant"
            or not state.dirty
        ):
            return

        revision = state.revision
        try:
            if state.conversation_id is None:
                max_chars = self.configuration.get_chat_service_config().get(
                    "title_max_chars", 50
                )
                title = derive_title(state.messages, max_chars)
                state.conversation_id = await self.repository.create(title, state.messages)
                state.title = title
            else:
                await self.repository.update(state.conversation_id, messages=state.messages)
        except Exception as e:
            logger.error(f"Autosave failed, will retry after the next turn: {e}")
            return

        state.saved_revision = revision
        if should_log_feature("history", "autosave"):
            logger.info(
                "← Repository: autosaved conversation %s (%d messages)",
                state.conversation_id,
                len(state.messages),
            )
        self._emit(
            "conversation",
            conversationId=state.conversation_id,
            title=state.title,
            saved=True,
        )

    async def _abort_turn(self) -> None:
        self.gate.force_reject()
        task = self._turn_task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._turn_task = None

    async def new_conversation(self) -> None:
        """Start over: no transcript, no locked config, no active skills."""
        await self._abort_turn()
        self.state.reset()
        self.composer.clear_skills()
        self._emit("status", status=self.state.status.value, error=None)
        self._emit_conversation()
        self._emit_config()

    async def load_conversation(self, conversation_id: int) -> None:
        """
        Replace the session with a saved conversation.

        Raises:
            ConversationNotFoundError: Unknown conversation id
        """
        await self._abort_turn()
        conversation = await self.repository.get_conversation(conversation_id)
        messages = await self.repository.get_messages(conversation_id)

        self.state.reset()
        self.state.conversation_id = conversation.id
        self.state.title = conversation.title
        self.state.messages = messages
        self.state.tool_states = rebuild_tool_states(messages)
        # Calls saved mid-flight can never finish now
        self.executor.interrupt(self.state.unresolved_tool_calls(), self.state.tool_states)
        self.state.mark_saved()

        logger.info(
            "Loaded conversation %d (%d messages)", conversation.id, len(messages)
        )
        self._emit("status", status=self.state.status.value, error=None)
        self._emit_conversation()
        self._emit_config()

    async def compress_context(
        self, stats: ContextStats = FALLBACK_CONTEXT_STATS
    ) -> CompressionSummary:
        """
        Compress the saved transcript and reload it.

        Raises:
            SessionBusyError: A turn is running
            CompressionError: Not saved, below the threshold, or no gain
        """
        self._require_idle()
        if self.compressor is None:
            raise CompressionError("Compression is not configured")
        conversation_id = self.state.conversation_id
        if conversation_id is None or self.state.dirty:
            raise CompressionError("Conversation must be saved before compression")
        if not self.budget(stats).compression_eligible:
            raise CompressionError("Context usage is below the compression threshold")

        summary = await self.compressor.compress(conversation_id)
        messages = await self.repository.get_messages(conversation_id)
        self.state.messages = messages
        self.state.tool_states = rebuild_tool_states(messages)
        self.state.touch()
        self.state.mark_saved()
        self._emit_conversation()
        return summary

    # ---------- Confirmation ----------

    def confirm_pending(self) -> bool:
        return self.gate.confirm()

    def reject_pending(self) -> bool:
        return self.gate.reject()

    def dismiss_pending(self) -> bool:
        return self.gate.dismiss()

    # ---------- Configuration ----------

    def toggle_skill(self, slug: str) -> bool:
        active = self.composer.toggle_skill(slug)
        self._emit_config()
        return active

    def set_context_config(self, config: ContextConfig) -> None:
        self.composer.set_context_config(config)
        self._emit_config()

    def set_tools_config(self, config: ToolAvailabilityConfig) -> None:
        self.composer.set_tools_config(config)
        self._emit_config()

    def set_model(self, model: str, reasoning_enabled: bool | None = None) -> None:
        if model not in self.configuration.get_model_context_limits():
            raise ValueError(f"Unknown model: {model}")
        if reasoning_enabled is None:
            reasoning_enabled = self.configuration.model_reasoning_enabled(model)
        self.state.model = ModelConfig(model=model, reasoning_enabled=reasoning_enabled)
        self._emit_config()

    async def close(self) -> None:
        await self._abort_turn()
        self._listeners.clear()
