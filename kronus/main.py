"""
Main application entry point - WebSocket interface with graceful shutdown handling.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from typing import Any

import httpx

from kronus.chat.logging_utils import configure_features
from kronus.chat.skill_registry import load_skill_registry
from kronus.clients.context_stats import ContextStatsClient
from kronus.clients.llm_client import LLMClient
from kronus.config import Configuration
from kronus.history import TranscriptCompressor, create_repository
from kronus.tool_router import ToolDispatchRouter
from kronus.tools import TOOL_CATALOG, ServiceClient, registry
from kronus.websocket_server import run_websocket_server

LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# logging.modules.<name> -> loggers it controls
MODULE_LOGGERS = {
    "chat": ["kronus.chat", "kronus.websocket_server"],
    "tools": ["kronus.tools", "kronus.tool_router", "kronus.chat.tool_executor"],
    "history": ["kronus.history"],
    "clients": ["kronus.clients", "httpx"],
}


def _configure_logging(logging_config: dict[str, Any]) -> None:
    """
    Logging configuration with hierarchical loggers and feature control.

    Levels are set on parent loggers so children inherit them; feature flags
    are handed to ``should_log_feature``.
    """
    global_level = logging_config.get("level", "WARNING")
    logging.getLogger().setLevel(LEVEL_MAP.get(global_level, logging.WARNING))

    features: dict[str, dict[str, bool]] = {}
    for module_name, module_config in (logging_config.get("modules") or {}).items():
        if not isinstance(module_config, dict):
            continue

        if module_config.get("enabled", True):
            level_value = LEVEL_MAP.get(module_config.get("level", global_level), logging.WARNING)
        else:
            level_value = logging.CRITICAL
        for logger_name in MODULE_LOGGERS.get(module_name, []):
            logging.getLogger(logger_name).setLevel(level_value)

        features[module_name] = dict(module_config.get("features") or {})

    configure_features(features)


def _on_logging_config_change(new_config: dict[str, Any]) -> None:
    """Apply logging changes from runtime_config.yaml without a restart."""
    try:
        logging_config = new_config.get("logging", {})
        if logging_config:
            _configure_logging(logging_config)
            logging.info("🔄 Logging configuration updated in real-time")
    except Exception as e:
        logging.error(f"❌ Failed to update logging configuration: {e}")


logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(name)s - %(message)s"
)


async def main() -> None:
    """Main entry point - WebSocket interface with graceful shutdown handling."""
    config = Configuration()

    logging_config = config.get_logging_config()
    if "format" in logging_config:
        for handler in logging.getLogger().handlers:
            if isinstance(handler, logging.StreamHandler):
                handler.setFormatter(logging.Formatter(logging_config["format"]))
    _configure_logging(logging_config)
    config.subscribe_to_changes(_on_logging_config_change)

    # Fail fast on misconfiguration before anything connects
    config.get_max_tool_hops()
    config.get_token_budget_config()

    problems = registry.verify_catalog(
        name for names in TOOL_CATALOG.values() for name in names
    )
    for problem in problems:
        logging.warning("Tool catalog: %s", problem)

    services = ServiceClient.from_config(config.get_services_config())
    router = ToolDispatchRouter(registry, services)

    stats_conf = config.get_stats_config()
    stats_http = httpx.AsyncClient(timeout=stats_conf.get("timeout_seconds", 10))
    stats_client = ContextStatsClient(stats_http, stats_conf.get("url"))

    shutdown_event = asyncio.Event()

    def signal_handler() -> None:
        """Handle shutdown signals gracefully."""
        logging.info("Received shutdown signal, initiating graceful shutdown...")
        shutdown_event.set()

    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler)

    async with LLMClient(config) as llm_client:
        repository = create_repository(config, summarizer=llm_client)
        compression_conf = config.get_chat_service_config().get("compression", {})
        compressor = TranscriptCompressor(
            repository,
            llm_client,
            keep_recent_messages=compression_conf.get("keep_recent_messages", 2),
        )
        skills = await load_skill_registry(config, stats_http)

        try:
            await config.start_watching()

            server_task = asyncio.create_task(
                run_websocket_server(
                    config, llm_client, skills, router, repository, stats_client, compressor
                )
            )

            done, pending = await asyncio.wait(
                [server_task, asyncio.create_task(shutdown_event.wait())],
                return_when=asyncio.FIRST_COMPLETED,
            )

            for task in pending:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

            for task in done:
                if task == server_task:
                    exception = task.exception()
                    if exception is not None:
                        raise exception

        except KeyboardInterrupt:
            logging.info("Keyboard interrupt received, shutting down...")
        except Exception as e:
            logging.error(f"Application error: {e}")
            raise
        finally:
            await config.stop_watching()
            await services.close()
            await stats_http.aclose()
            logging.info("Application shutdown complete")


def cli_main() -> None:
    """Synchronous CLI entrypoint that runs the async main."""
    asyncio.run(main())


if __name__ == "__main__":
    cli_main()
