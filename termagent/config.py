"""Configuration management for the agent."""

from __future__ import annotations

import logging
import os
from typing import Any, cast

import yaml
from dotenv import load_dotenv

from termagent.chat.models import LLMSettings, PermissionMode
from termagent.clients.providers import detect_provider, get_provider_info, resolve_api_key
from termagent.errors import ConfigurationError

logger = logging.getLogger(__name__)

OVERRIDE_ENV_VAR = "TERMAGENT_CONFIG"


class Configuration:
    """Layered configuration: packaged defaults, optional user overrides, environment."""

    def __init__(self, override_path: str | None = None, load_env_file: bool = True) -> None:
        """Initialize configuration from YAML and environment variables."""
        if load_env_file:
            self.load_env()  # Load .env for API keys
        self._default_config = self._load_yaml_config()
        self._override_path = override_path or os.getenv(OVERRIDE_ENV_VAR)
        self._current_config: dict[str, Any] = self._default_config
        if self._override_path:
            overrides = self._load_override_config(self._override_path)
            self._current_config = self._deep_merge(self._default_config, overrides)

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    def _load_yaml_config(self) -> dict[str, Any]:
        """Load configuration from YAML file."""
        config_path = os.path.join(os.path.dirname(__file__), "config.yaml")
        with open(config_path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ConfigurationError("Configuration file must contain a dictionary")
            return cast(dict[str, Any], config)

    def _load_override_config(self, path: str) -> dict[str, Any]:
        """Load a user override file; an unreadable file is reported, not fatal."""
        try:
            with open(path) as file:
                config = yaml.safe_load(file) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.warning("Ignoring unreadable override config %s: %s", path, e)
            return {}
        if not isinstance(config, dict):
            logger.warning("Ignoring override config %s: top level is not a mapping", path)
            return {}
        logger.info("Loaded configuration overrides from %s", path)
        return cast(dict[str, Any], config)

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(cast(dict[str, Any], result[key]), cast(dict[str, Any], value))
            else:
                result[key] = value

        return result

    def _get_current_config(self) -> dict[str, Any]:
        return self._current_config

    # ------------------------------------------------------------------
    # LLM
    # ------------------------------------------------------------------

    @property
    def active_provider(self) -> str:
        return self._get_current_config().get("llm", {}).get("active", "openai")

    @property
    def llm_api_key(self) -> str:
        """Get the API key for the active LLM provider.

        Raises:
            ConfigurationError: If the provider needs a key and none is set.
        """
        provider = self.active_provider
        llm_config = self.get_llm_config(provider)
        api_key = resolve_api_key(provider, llm_config.get("api_key"))
        if not api_key:
            env_key = get_provider_info(provider).env_key
            raise ConfigurationError(
                f"API key '{env_key}' not found in environment variables for provider '{provider}'"
            )
        return api_key

    def get_llm_config(self, provider: str | None = None) -> dict[str, Any]:
        """Get a provider's raw configuration block (active provider by default)."""
        llm_config = self._get_current_config().get("llm", {})
        provider = provider or self.active_provider
        providers = llm_config.get("providers", {})

        if provider not in providers:
            raise ConfigurationError(f"Active provider '{provider}' not found in providers config")

        return providers[provider]

    def resolve_llm_settings(self, provider: str | None = None, model: str | None = None) -> LLMSettings:
        """Resolve everything a streaming request needs, credential included.

        When only ``model`` is given, the provider is detected from the model id.
        """
        if provider is None:
            provider = detect_provider(model) if model else self.active_provider
        info = get_provider_info(provider)
        try:
            provider_config = dict(self.get_llm_config(provider))
        except ConfigurationError:
            if model is None:
                raise
            provider_config = {}

        api_key = resolve_api_key(provider, provider_config.pop("api_key", None))
        if not api_key:
            raise ConfigurationError(
                f"API key '{info.env_key}' not found in environment variables for provider '{provider}'"
            )

        pool = self.get_connection_pool_config()
        settings: dict[str, Any] = {
            "provider": provider,
            "family": provider_config.pop("family", info.family),
            "base_url": provider_config.pop("base_url", info.base_url),
            "timeout": pool["request_timeout_seconds"],
            **provider_config,
            "api_key": api_key,
        }
        if model:
            settings["model"] = model
        if "model" not in settings:
            raise ConfigurationError(f"No model configured for provider '{provider}'")
        return LLMSettings.model_validate(settings)

    # ------------------------------------------------------------------
    # Agent loop
    # ------------------------------------------------------------------

    def get_agent_config(self) -> dict[str, Any]:
        return self._get_current_config().get("agent", {})

    def _get_positive_int(self, section: dict[str, Any], key: str, default: int) -> int:
        value = section.get(key, default)
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            raise ConfigurationError(f"{key} must be a positive integer")
        return value

    def get_max_turns(self) -> int:
        """Maximum number of streamed turns per user request (default: 10)."""
        return self._get_positive_int(self.get_agent_config(), "max_turns", 10)

    def get_max_consecutive_failures(self) -> int:
        """Number of all-failed rounds that stops the loop (default: 4)."""
        return self._get_positive_int(self.get_agent_config(), "max_consecutive_failures", 4)

    def get_permission_mode(self) -> PermissionMode:
        raw = self.get_agent_config().get("permission_mode", "auto")
        try:
            return PermissionMode(raw)
        except ValueError as e:
            valid = ", ".join(m.value for m in PermissionMode)
            raise ConfigurationError(f"Invalid permission_mode '{raw}' (expected one of: {valid})") from e

    def get_allowed_tools(self) -> list[str] | None:
        allowed = self.get_agent_config().get("allowed_tools") or []
        return list(allowed) or None

    def get_system_prompt(self) -> str:
        return self.get_agent_config().get("system_prompt", "You are a helpful coding assistant.").rstrip()

    # ------------------------------------------------------------------
    # Tools and undo
    # ------------------------------------------------------------------

    def get_tools_config(self) -> dict[str, Any]:
        """Get tool execution limits with validated defaults."""
        tools_config = self._get_current_config().get("tools", {})

        bash_timeout = tools_config.get("bash_timeout_seconds", 30)
        search_timeout = tools_config.get("search_timeout_seconds", 10)
        git_timeout = tools_config.get("git_timeout_seconds", 5)
        max_output = tools_config.get("max_output_chars", 15000)

        if bash_timeout <= 0 or search_timeout <= 0 or git_timeout <= 0:
            raise ConfigurationError("tool timeouts must be positive")
        if max_output < 100:
            raise ConfigurationError("max_output_chars must be at least 100")

        return {
            "bash_timeout_seconds": bash_timeout,
            "search_timeout_seconds": search_timeout,
            "git_timeout_seconds": git_timeout,
            "max_output_chars": max_output,
            "auto_execute_code_blocks": bool(tools_config.get("auto_execute_code_blocks", True)),
        }

    def get_undo_max_entries(self) -> int:
        return self._get_positive_int(self._get_current_config().get("undo", {}), "max_entries", 50)

    # ------------------------------------------------------------------
    # Connection pool and logging
    # ------------------------------------------------------------------

    def get_connection_pool_config(self) -> dict[str, Any]:
        pool = self._get_current_config().get("connection_pool", {})
        return {
            "max_connections": pool.get("max_connections", 20),
            "max_keepalive_connections": pool.get("max_keepalive_connections", 10),
            "keepalive_expiry_seconds": pool.get("keepalive_expiry_seconds", 30.0),
            "request_timeout_seconds": pool.get("request_timeout_seconds", 120.0),
        }

    def get_connection_logging_config(self) -> dict[str, Any]:
        module = self.get_logging_config().get("modules", {}).get("connection_pool", {})
        features = module.get("enable_features", {})
        return {
            "enabled": bool(features),
            "connection_events": features.get("connection_events", False),
            "http_requests": features.get("http_requests", False),
        }

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration from YAML."""
        return self._get_current_config().get("logging", {})
