"""
WebSocket Server for the Kronus chat backend

This module provides a thin communication layer between the frontend and the
session controller. It handles WebSocket connections, command routing and a
few REST endpoints over saved conversations, skills and models.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
from typing import Any, Literal

import uvicorn
from fastapi import APIRouter, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from kronus.chat.context_composer import ContextComposer
from kronus.chat.models import (
    ContextConfig,
    FilePart,
    SessionEvent,
    ToolAvailabilityConfig,
)
from kronus.chat.session_controller import SessionBusyError, SessionController
from kronus.chat.skill_registry import SkillRegistry
from kronus.chat.token_budget import TokenBudgetEstimator
from kronus.clients.context_stats import ContextStatsClient
from kronus.clients.llm_client import ChatTransport, TransportError
from kronus.config import Configuration
from kronus.history.compression import TranscriptCompressor
from kronus.history.repository import (
    CompressionError,
    ConversationNotFoundError,
    ConversationRepository,
)
from kronus.tool_router import ToolDispatchRouter

logger = logging.getLogger(__name__)

CommandAction = Literal[
    "submit",
    "edit",
    "regenerate",
    "retry",
    "cancel",
    "confirm",
    "reject",
    "dismiss",
    "toggle_skill",
    "set_context_config",
    "set_tools_config",
    "set_model",
    "new_conversation",
    "load_conversation",
    "compress",
    "budget",
]

# Errors a command can raise that are reported to the client, not logged as crashes
COMMAND_ERRORS = (
    SessionBusyError,
    CompressionError,
    ConversationNotFoundError,
    TransportError,
    ValidationError,
    ValueError,
    KeyError,
)


# Pydantic models for WebSocket message validation
class ClientCommand(BaseModel):
    """Command sent by the frontend; accepts snake_case or camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    action: CommandAction
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    text: str | None = None
    files: list[FilePart] = Field(default_factory=list)
    message_id: str | None = None
    slug: str | None = None
    config: dict[str, bool] | None = None
    model: str | None = None
    reasoning_enabled: bool | None = None
    conversation_id: int | None = None

    def require(self, field: str) -> Any:
        value = getattr(self, field)
        if value is None:
            raise ValueError(f"'{field}' is required for action '{self.action}'")
        return value


class WebSocketResponse(BaseModel):
    """WebSocket response structure."""

    request_id: str
    status: str  # "event", "completed", "error"
    chunk: dict[str, Any] = Field(default_factory=dict)


class SummaryRequest(BaseModel):
    force: bool = False


class WebSocketServer:
    """
    Pure WebSocket communication server.

    This class only handles:
    - WebSocket connections, one SessionController each
    - Command parsing and routing
    - Forwarding session events to the socket

    All business logic is delegated to the session controller.
    """

    def __init__(
        self,
        configuration: Configuration,
        transport: ChatTransport,
        skills: SkillRegistry,
        router: ToolDispatchRouter,
        repository: ConversationRepository,
        stats_client: ContextStatsClient,
        compressor: TranscriptCompressor | None = None,
    ):
        self.configuration = configuration
        self.transport = transport
        self.skills = skills
        self.router = router
        self.repository = repository
        self.stats_client = stats_client
        self.compressor = compressor
        self.sessions: dict[WebSocket, SessionController] = {}
        self.app = self._create_app()

    def create_session(self) -> SessionController:
        budget = self.configuration.get_token_budget_config()
        estimator = TokenBudgetEstimator(
            self.configuration.get_model_context_limits(),
            default_limit=self.configuration.get_default_context_limit(),
            warning_threshold=budget["warning_threshold"],
            compress_threshold=budget["compress_threshold"],
            chars_per_token=budget["chars_per_token"],
        )
        return SessionController(
            self.configuration,
            self.transport,
            ContextComposer(self.skills),
            self.router,
            self.repository,
            estimator,
            self.compressor,
        )

    def _create_app(self) -> FastAPI:
        """Create and configure FastAPI app."""
        app = FastAPI(title="Kronus Chat Server")
        router = APIRouter()

        app.add_middleware(
            CORSMiddleware,
            allow_origins=self.configuration.get_websocket_config().get(
                "allow_origins", ["*"]
            ),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @app.websocket("/ws/chat")
        async def websocket_endpoint(websocket: WebSocket):  # type: ignore
            await self._handle_websocket_connection(websocket)

        @app.get("/")
        async def root():  # type: ignore
            return {"message": "Kronus Chat Server"}

        @app.get("/health")
        async def health():  # type: ignore
            return {"status": "healthy", "sessions": len(self.sessions)}

        @router.get("/conversations")
        async def list_conversations(offset: int = 0, limit: int = 50):  # type: ignore
            page = await self.repository.list_conversations(offset=offset, limit=limit)
            return {
                "conversations": [
                    {**c.model_dump(mode="json"), "summary_is_stale": c.summary_is_stale}
                    for c in page.conversations
                ],
                "total": page.total,
            }

        @router.get("/conversations/{conversation_id}")
        async def get_conversation(conversation_id: int):  # type: ignore
            try:
                conversation = await self.repository.get_conversation(conversation_id)
                messages = await self.repository.get_messages(conversation_id)
            except ConversationNotFoundError as e:
                raise HTTPException(status_code=404, detail=str(e)) from e
            return {
                "conversation": conversation.model_dump(mode="json"),
                "messages": [m.model_dump(mode="json", by_alias=True) for m in messages],
            }

        @router.delete("/conversations/{conversation_id}")
        async def delete_conversation(conversation_id: int):  # type: ignore
            try:
                await self.repository.delete(conversation_id)
            except ConversationNotFoundError as e:
                raise HTTPException(status_code=404, detail=str(e)) from e
            return {"deleted": conversation_id}

        @router.post("/conversations/{conversation_id}/summary")
        async def generate_summary(  # type: ignore
            conversation_id: int, body: SummaryRequest | None = None
        ):
            force = body.force if body else False
            try:
                result = await self.repository.generate_summary(conversation_id, force)
            except ConversationNotFoundError as e:
                raise HTTPException(status_code=404, detail=str(e)) from e
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e)) from e
            except TransportError as e:
                raise HTTPException(status_code=502, detail=str(e)) from e
            return result.model_dump(mode="json")

        @router.get("/skills")
        async def list_skills():  # type: ignore
            return [
                skill.model_dump(mode="json", exclude={"content"})
                for skill in self.skills.skills()
            ]

        @router.get("/models")
        async def list_models():  # type: ignore
            limits = self.configuration.get_model_context_limits()
            return {
                "default": self.configuration.get_default_model(),
                "models": {
                    name: {
                        "contextLimit": limit,
                        "reasoningEnabled": self.configuration.model_reasoning_enabled(name),
                    }
                    for name, limit in limits.items()
                },
            }

        # Prevent static analyzers from marking route handlers as unused
        __keep_for_pyright = (
            list_conversations,
            get_conversation,
            delete_conversation,
            generate_summary,
            list_skills,
            list_models,
        )
        del __keep_for_pyright

        app.include_router(router)

        return app

    async def _handle_websocket_connection(self, websocket: WebSocket):
        """Handle a WebSocket connection."""
        session = await self._connect_websocket(websocket)
        outbox: asyncio.Queue[SessionEvent] = asyncio.Queue()
        session.subscribe(outbox.put_nowait)
        sender = asyncio.create_task(self._forward_events(websocket, outbox))

        try:
            await self._send_init(websocket, session)
            while True:
                data = await websocket.receive_text()
                await self._handle_command(websocket, session, data)

        except WebSocketDisconnect:
            logger.info("WebSocket disconnected")
        except Exception as e:
            logger.error(f"WebSocket error: {e}")
            with contextlib.suppress(Exception):
                await self._send_error_response(websocket, "unknown", f"Server error: {e!s}")
        finally:
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sender
            await self._disconnect_websocket(websocket)

    async def _forward_events(
        self, websocket: WebSocket, outbox: asyncio.Queue[SessionEvent]
    ) -> None:
        while True:
            event = await outbox.get()
            response = WebSocketResponse(
                request_id="event",
                status="event",
                chunk={"type": event.type, "data": event.data},
            )
            await websocket.send_text(response.model_dump_json())

    async def _send_init(self, websocket: WebSocket, session: SessionController) -> None:
        response = WebSocketResponse(
            request_id=str(uuid.uuid4()),
            status="init",
            chunk={
                "config": session.config_snapshot(),
                "skills": [
                    s.model_dump(mode="json", exclude={"content"})
                    for s in self.skills.skills()
                ],
            },
        )
        await websocket.send_text(response.model_dump_json())

    async def _handle_command(
        self, websocket: WebSocket, session: SessionController, data: str
    ) -> None:
        """Validate one command and route it to the session."""
        try:
            command = ClientCommand.model_validate(json.loads(data))
        except (json.JSONDecodeError, ValidationError) as e:
            await self._send_error_response(websocket, "unknown", f"Invalid message format: {e}")
            return

        try:
            result = await self._dispatch(session, command)
        except COMMAND_ERRORS as e:
            logger.warning("Command %s failed: %s", command.action, e)
            await self._send_error_response(websocket, command.request_id, str(e))
            return

        response = WebSocketResponse(
            request_id=command.request_id,
            status="completed",
            chunk={"action": command.action, **(result or {})},
        )
        await websocket.send_text(response.model_dump_json())

    async def _dispatch(
        self, session: SessionController, command: ClientCommand
    ) -> dict[str, Any] | None:
        action = command.action

        # Turn starters return immediately; progress arrives as session events
        if action == "submit":
            session.submit(command.require("text"), command.files)
        elif action == "edit":
            session.edit_message(command.require("message_id"), command.require("text"))
        elif action == "regenerate":
            session.regenerate()
        elif action == "retry":
            session.retry()
        elif action == "cancel":
            return {"cancelled": session.cancel()}
        elif action == "confirm":
            return {"resolved": session.confirm_pending()}
        elif action == "reject":
            return {"resolved": session.reject_pending()}
        elif action == "dismiss":
            return {"resolved": session.dismiss_pending()}
        elif action == "toggle_skill":
            return {"active": session.toggle_skill(command.require("slug"))}
        elif action == "set_context_config":
            session.set_context_config(ContextConfig.model_validate(command.require("config")))
        elif action == "set_tools_config":
            session.set_tools_config(
                ToolAvailabilityConfig.model_validate(command.require("config"))
            )
        elif action == "set_model":
            session.set_model(command.require("model"), command.reasoning_enabled)
        elif action == "new_conversation":
            await session.new_conversation()
        elif action == "load_conversation":
            await session.load_conversation(command.require("conversation_id"))
        elif action == "compress":
            stats = await self.stats_client.get_stats()
            summary = await session.compress_context(stats)
            return {
                "summary": summary.model_dump(mode="json", by_alias=True),
                "budget": session.budget(stats).model_dump(),
            }
        elif action == "budget":
            stats = await self.stats_client.get_stats()
            budget = session.budget(stats)
            return {"budget": {**budget.model_dump(), "usagePercent": budget.usage_percent}}
        return None

    async def _send_error_response(
        self, websocket: WebSocket, request_id: str, error_message: str
    ):
        """Send error response using Pydantic model."""
        response = WebSocketResponse(
            request_id=request_id, status="error", chunk={"error": error_message}
        )
        await websocket.send_text(response.model_dump_json())

    async def _connect_websocket(self, websocket: WebSocket) -> SessionController:
        """Accept a WebSocket and give it a fresh session."""
        logger.info(f"WebSocket connection attempt from {websocket.client}")
        await websocket.accept()
        session = self.create_session()
        self.sessions[websocket] = session
        logger.info(
            f"WebSocket connection established. Total connections: {len(self.sessions)}"
        )
        return session

    async def _disconnect_websocket(self, websocket: WebSocket):
        """Disconnect a WebSocket and stop its session."""
        session = self.sessions.pop(websocket, None)
        if session is not None:
            await session.close()
        logger.info(f"WebSocket connection closed. Total connections: {len(self.sessions)}")

    async def start_server(self):
        """Start the WebSocket server with comprehensive cleanup."""
        websocket_config = self.configuration.get_websocket_config()
        host = websocket_config.get("host", "localhost")
        port = websocket_config.get("port", 8000)

        logger.info(f"Starting WebSocket server on {host}:{port}")

        server_config = uvicorn.Config(self.app, host=host, port=port, log_level="info")
        server = uvicorn.Server(server_config)

        try:
            await server.serve()
        except KeyboardInterrupt:
            logger.info("Received shutdown signal, cleaning up...")
        except Exception as e:
            logger.error(f"WebSocket server error: {e}")
            raise
        finally:
            logger.info("Shutting down WebSocket server and cleaning up resources...")
            for websocket in list(self.sessions):
                await self._disconnect_websocket(websocket)
            try:
                await self.repository.close()
            except Exception as e:
                logger.error(f"Error during repository cleanup: {e}")


async def run_websocket_server(
    configuration: Configuration,
    transport: ChatTransport,
    skills: SkillRegistry,
    router: ToolDispatchRouter,
    repository: ConversationRepository,
    stats_client: ContextStatsClient,
    compressor: TranscriptCompressor | None = None,
) -> None:
    """Run the WebSocket server."""
    server = WebSocketServer(
        configuration, transport, skills, router, repository, stats_client, compressor
    )
    await server.start_server()
