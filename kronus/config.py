"""Configuration management for the Kronus chat backend."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import sys
import time
from collections.abc import Callable
from typing import Any, cast

import yaml
from dotenv import load_dotenv

_PACKAGE_DIR = os.path.dirname(__file__)


class Configuration:
    """Event-driven configuration manager with observer pattern."""

    def __init__(
        self,
        config_path: str | None = None,
        runtime_config_path: str | None = None,
    ) -> None:
        """Initialize configuration from YAML and environment variables.

        Args:
            config_path: Defaults file. Falls back to the packaged config.yaml.
            runtime_config_path: Editable runtime file. Falls back to
                ``KRONUS_RUNTIME_CONFIG`` or runtime_config.yaml next to the
                defaults.
        """
        self.load_env()  # Load .env for API keys
        self._config_path = config_path or os.path.join(_PACKAGE_DIR, "config.yaml")
        self._default_config = self._load_yaml_config()
        self._runtime_config_path = (
            runtime_config_path
            or os.getenv("KRONUS_RUNTIME_CONFIG")
            or os.path.join(os.path.dirname(self._config_path), "runtime_config.yaml")
        )
        self._runtime_config_mtime: float | None = None
        self._current_config: dict[str, Any] = {}

        # Event-driven observer pattern
        self._config_change_callbacks: list[Callable[[dict[str, Any]], None]] = []
        self._watch_task: asyncio.Task[None] | None = None

        self._initialize_runtime_config()
        self._reload_config()

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    def _load_yaml_config(self) -> dict[str, Any]:
        """Load configuration from YAML file."""
        with open(self._config_path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ValueError("Configuration file must contain a dictionary")
            return cast(dict[str, Any], config)

    def _initialize_runtime_config(self) -> None:
        """Initialize runtime configuration file if it doesn't exist."""
        if not os.path.exists(self._runtime_config_path):
            initial_config = self._default_config.copy()
            initial_config["_runtime_config"] = {
                "last_modified": time.time(),
                "version": 1,
                "is_runtime_config": True,
                "default_config_path": os.path.basename(self._config_path),
                "created_from_defaults": True,
            }

            with open(self._runtime_config_path, "w") as file:
                yaml.safe_dump(initial_config, file, default_flow_style=False, indent=2)

    def _load_runtime_config(self) -> dict[str, Any]:
        """Load runtime configuration from YAML file."""
        try:
            with open(self._runtime_config_path) as file:
                config = yaml.safe_load(file)
        except (yaml.YAMLError, OSError) as e:
            logging.warning(f"Runtime configuration unreadable, using defaults: {e}")
            return self._default_config.copy()
        if not isinstance(config, dict):
            logging.warning("Runtime configuration is not a mapping, using defaults")
            return self._default_config.copy()
        return cast(dict[str, Any], config)

    def _deep_merge(
        self, base: dict[str, Any], override: dict[str, Any]
    ) -> dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()

        for key, value in override.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._deep_merge(
                    cast(dict[str, Any], result[key]), cast(dict[str, Any], value)
                )
            else:
                result[key] = value

        return result

    def _reload_config(self) -> bool:
        """Reload configuration from runtime config if it has been modified.

        Returns:
            True if config was actually reloaded, False if no changes.
        """
        current_mtime = None
        if os.path.exists(self._runtime_config_path):
            current_mtime = os.path.getmtime(self._runtime_config_path)

        if current_mtime != self._runtime_config_mtime:
            old_config = self._current_config.copy()
            self._runtime_config_mtime = current_mtime
            runtime_config = self._load_runtime_config()

            # Defaults fill in anything the runtime file does not mention
            self._current_config = self._deep_merge(
                self._default_config,
                {
                    k: v
                    for k, v in runtime_config.items()
                    if not k.startswith("_runtime_config")
                },
            )

            if old_config and self._current_config != old_config:
                self._notify_config_change()

            return True
        return False

    def _get_current_config(self) -> dict[str, Any]:
        """Get current configuration (cached, no file system access)."""
        return self._current_config

    def _notify_config_change(self) -> None:
        """Notify all registered observers of configuration changes."""
        for callback in self._config_change_callbacks:
            try:
                callback(self._current_config.copy())
            except Exception as e:
                logging.error(f"Error in config change callback: {e}")

    def subscribe_to_changes(self, callback: Callable[[dict[str, Any]], None]) -> None:
        """Subscribe to configuration change events.

        Args:
            callback: Function to call when config changes. Receives new
                config as argument.
        """
        if callback not in self._config_change_callbacks:
            self._config_change_callbacks.append(callback)

    def unsubscribe_from_changes(
        self, callback: Callable[[dict[str, Any]], None]
    ) -> None:
        """Unsubscribe from configuration change events."""
        if callback in self._config_change_callbacks:
            self._config_change_callbacks.remove(callback)

    async def start_watching(self) -> None:
        """Start the async file watching task for automatic config updates."""
        if self._watch_task is not None:
            return

        self._watch_task = asyncio.create_task(self._watch_config_file())
        logging.info("Started watching runtime configuration file for changes")

    async def stop_watching(self) -> None:
        """Stop the async file watching task."""
        if self._watch_task is not None:
            self._watch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watch_task
            self._watch_task = None
            logging.info("Stopped watching runtime configuration file")

    async def _watch_config_file(self) -> None:
        """Async task that watches for config file changes."""
        while True:
            try:
                await asyncio.sleep(1)
                if self._reload_config():
                    logging.info("Runtime configuration file changed - config reloaded")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logging.error(f"Error watching config file: {e}")
                await asyncio.sleep(5)

    def _get_config_value(self, path: list[str], default: Any = None) -> Any:
        """Get a configuration value by path, with fallback to defaults."""
        current: Any = self._get_current_config()
        for key in path:
            if isinstance(current, dict) and key in current:
                current = current[key]  # type: ignore[assignment]
            else:
                return default
        return current  # type: ignore[return-value]

    def reload_runtime_config(self) -> bool:
        """Manually reload runtime configuration.

        Returns:
            True if configuration was reloaded, False if no changes detected.
        """
        old_mtime = self._runtime_config_mtime
        self._reload_config()
        return old_mtime != self._runtime_config_mtime

    def save_runtime_config(self, config: dict[str, Any]) -> None:
        """Save configuration to runtime config file.

        Args:
            config: Configuration dictionary to save.
        """
        current_version = self.get_runtime_metadata().get("version", 0)

        runtime_config = config.copy()
        runtime_config["_runtime_config"] = {
            "last_modified": time.time(),
            "version": current_version + 1,
            "is_runtime_config": True,
            "default_config_path": os.path.basename(self._config_path),
        }

        with open(self._runtime_config_path, "w") as file:
            yaml.safe_dump(runtime_config, file, default_flow_style=False, indent=2)

        # Same-tick writes can keep the old mtime
        self._runtime_config_mtime = None
        self._reload_config()

    def update_setting(self, path: list[str], value: Any) -> None:
        """Persist a single setting (e.g. the auto-respond toggle) at ``path``."""
        config = self._get_current_config().copy()
        node = config
        for key in path[:-1]:
            child = node.get(key)
            node[key] = dict(child) if isinstance(child, dict) else {}
            node = node[key]
        node[path[-1]] = value
        self.save_runtime_config(config)

    def get_runtime_metadata(self) -> dict[str, Any]:
        """Get runtime configuration metadata."""
        if os.path.exists(self._runtime_config_path):
            try:
                with open(self._runtime_config_path) as f:
                    loaded_config = yaml.safe_load(f)
                    if isinstance(loaded_config, dict):
                        runtime_config = cast(dict[str, Any], loaded_config)
                        return runtime_config.get("_runtime_config", {})
            except (yaml.YAMLError, OSError):
                pass
        return {}

    @property
    def llm_api_key(self) -> str | None:
        """Get the gateway API key, if one is configured.

        Returns:
            The key from the environment variable named by ``llm.api_key_env``,
            or None when the gateway runs without authentication.
        """
        env_key = self._get_config_value(["llm", "api_key_env"])
        if not env_key:
            return None
        return os.getenv(env_key) or None

    def get_llm_config(self) -> dict[str, Any]:
        """Get the model gateway configuration.

        Returns:
            LLM gateway configuration dictionary.

        Raises:
            ValueError: If the gateway base URL is missing.
        """
        llm_config = self._get_config_value(["llm"], {})
        if not llm_config.get("base_url"):
            raise ValueError("llm.base_url must be configured")
        return llm_config

    def get_model_context_limits(self) -> dict[str, int]:
        """Get context-window ceilings keyed by model name."""
        models = self._get_config_value(["llm", "models"], {}) or {}
        limits: dict[str, int] = {}
        for name, model_conf in models.items():
            limit = (model_conf or {}).get("context_limit")
            if not isinstance(limit, int) or limit < 1:
                raise ValueError(f"llm.models.{name}.context_limit must be positive")
            limits[name] = limit
        return limits

    def get_default_model(self) -> str:
        """Get the model selected when a session starts."""
        return self._get_config_value(["llm", "default_model"], "gemini-3-pro")

    def get_default_context_limit(self) -> int:
        """Get the ceiling used for models missing from ``llm.models``."""
        return int(self._get_config_value(["llm", "default_context_limit"], 200000))

    def model_reasoning_enabled(self, model: str) -> bool:
        """Whether reasoning is enabled by default for ``model``."""
        models = self._get_config_value(["llm", "models"], {}) or {}
        return bool((models.get(model) or {}).get("reasoning_enabled", False))

    def get_chat_service_config(self) -> dict[str, Any]:
        """Get chat service configuration from YAML."""
        return self._get_config_value(["chat", "service"], {})

    def get_max_tool_hops(self) -> int:
        """Get the maximum number of automatic follow-ups after tool calls.

        Returns:
            Maximum number of tool hops (default: 8).
        """
        max_hops = self.get_chat_service_config().get("max_tool_hops", 8)

        if not isinstance(max_hops, int) or max_hops < 1:
            raise ValueError("max_tool_hops must be a positive integer")

        return max_hops

    def get_token_budget_config(self) -> dict[str, Any]:
        """Get token budget settings with validated thresholds.

        Returns:
            Dictionary with chars_per_token, warning_threshold and
            compress_threshold.
        """
        budget_conf = self.get_chat_service_config().get("token_budget", {})
        chars_per_token = budget_conf.get("chars_per_token", 4)
        warning = budget_conf.get("warning_threshold", 0.7)
        compress = budget_conf.get("compress_threshold", 0.85)

        if not isinstance(chars_per_token, (int, float)) or chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        if not 0 < warning < 1 or not 0 < compress <= 1:
            raise ValueError("token budget thresholds must be within (0, 1]")
        if warning >= compress:
            raise ValueError("warning_threshold must be lower than compress_threshold")

        return {
            "chars_per_token": chars_per_token,
            "warning_threshold": warning,
            "compress_threshold": compress,
        }

    def get_chat_storage_config(self) -> dict[str, Any]:
        """Get chat storage configuration from YAML."""
        return self._get_config_value(["chat", "storage"], {})

    def get_websocket_config(self) -> dict[str, Any]:
        """Get WebSocket configuration from YAML."""
        return self._get_config_value(["chat", "websocket"], {})

    def get_services_config(self) -> dict[str, Any]:
        """Get the external tool services configuration.

        Raises:
            ValueError: If the services base URL is missing.
        """
        services = self._get_config_value(["services"], {})
        if not services.get("base_url"):
            raise ValueError("services.base_url must be configured")
        return services

    def get_skills_config(self) -> dict[str, Any]:
        """Get skill catalog source configuration."""
        skills = self._get_config_value(["skills"], {})
        source = skills.get("source", "none")
        if source not in ("file", "http", "none"):
            raise ValueError(f"Unknown skills.source '{source}'")
        return skills

    def get_stats_config(self) -> dict[str, Any]:
        """Get token cost collaborator configuration."""
        return self._get_config_value(["stats"], {})

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration from YAML."""
        return self._get_config_value(["logging"], {})

    def reset_to_defaults(self) -> None:
        """Reset runtime_config.yaml to the defaults from config.yaml."""
        self.save_runtime_config(self._default_config.copy())


def reset_runtime_config_cli() -> None:
    """Console script that resets runtime_config.yaml to defaults."""
    try:
        cfg = Configuration()
        cfg.reset_to_defaults()
        logging.info("✓ runtime_config.yaml reset to defaults from config.yaml")
    except Exception as e:
        logging.error(f"Error resetting runtime configuration: {e}")
        sys.exit(1)
