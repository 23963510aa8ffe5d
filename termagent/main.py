"""
Main application entry point - one-shot print mode with cancellation on SIGINT.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Any

from termagent.chat import ChatOrchestrator
from termagent.chat.models import ToolInvocation, ToolRiskClass
from termagent.chat.permissions import format_permission_prompt, generate_change_preview
from termagent.clients import LLMClient
from termagent.config import Configuration
from termagent.errors import TermagentError
from termagent.history import InMemorySessionRepo


def _configure_advanced_logging(logging_config: dict[str, Any]) -> None:
    """
    Logging configuration with hierarchical loggers and feature control.

    Levels are set on parent loggers so children inherit them, and each
    module's feature flags are cached for ``should_log_feature``.
    """
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL
    }

    global_level = logging_config.get("level", "WARNING")
    logging.getLogger().setLevel(level_map.get(global_level, logging.WARNING))

    module_logger_map = {
        "chat": {
            "loggers": ["termagent.chat"],
            "default_level": "INFO",
            "features": ["llm_replies"]
        },
        "connection_pool": {
            "loggers": ["termagent.clients"],
            "default_level": "INFO",
            "features": ["connection_events", "http_requests"]
        },
        "tools": {
            "loggers": ["termagent.chat.tool_executor", "termagent.chat.local_tools"],
            "default_level": "INFO",
            "features": ["tool_arguments", "tool_results"]
        }
    }

    modules_config = logging_config.get("modules", {})

    for module_name, module_config in modules_config.items():
        if not isinstance(module_config, dict):
            continue

        module_level = module_config.get("level", module_logger_map.get(module_name, {}).get("default_level", global_level))
        level_value = level_map.get(module_level, logging.WARNING)

        for logger_name in module_logger_map.get(module_name, {}).get("loggers", []):
            logging.getLogger(logger_name).setLevel(level_value)

        # Feature flags are read at runtime by should_log_feature
        if not hasattr(logging, '_module_features'):
            logging._module_features = {}
        logging._module_features[module_name] = module_config.get("enable_features", {})


async def _console_approver(invocation: ToolInvocation, risk: ToolRiskClass) -> bool:
    """Ask on the terminal; runs input() off the event loop."""
    prompt = format_permission_prompt(invocation, risk)
    preview = generate_change_preview(invocation)
    if preview:
        prompt += "\n" + preview
    answer = await asyncio.to_thread(input, f"{prompt}\nAllow? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


async def main(prompt: str) -> int:
    """Run one prompt through the agent loop and print the streamed answer."""
    config = Configuration()

    logging_config = config.get_logging_config()
    logging.basicConfig(
        level=logging.WARNING,
        format=logging_config.get("format", "%(asctime)s - %(levelname)s - %(message)s"),
        stream=sys.stderr,
    )
    _configure_advanced_logging(logging_config)

    async with LLMClient(config) as llm_client:
        orchestrator = ChatOrchestrator(
            ChatOrchestrator.ChatOrchestratorConfig(
                llm_client=llm_client,
                configuration=config,
                repo=InMemorySessionRepo(),
                approver=_console_approver if sys.stdin.isatty() else None,
            )
        )

        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)

        try:
            async for event in orchestrator.process_message(prompt):
                if event.type == "text":
                    print(event.content, end="", flush=True)
                elif event.type == "tool_execution":
                    print(f"\n[{event.content}] {event.metadata.get('argument', '')}", file=sys.stderr)
                elif event.type == "tool_result" and not event.metadata.get("success"):
                    print(f"[failed] {event.content[:200]}", file=sys.stderr)
                elif event.type == "done":
                    print()
                    notice = event.metadata.get("notice")
                    if notice:
                        print(notice, file=sys.stderr)
        except TermagentError as e:
            logging.error(f"Application error: {e}")
            return 1

    return 0


def cli_main() -> None:
    """Synchronous CLI entrypoint: the prompt is the joined arguments or stdin."""
    prompt = " ".join(sys.argv[1:]).strip() or sys.stdin.read().strip()
    if not prompt:
        print("usage: termagent <prompt>", file=sys.stderr)
        sys.exit(2)
    sys.exit(asyncio.run(main(prompt)))


if __name__ == "__main__":
    cli_main()
