"""
Agent Logging Utilities

Shared logging helpers with per-module feature control, so the loop, the
dispatcher and the streaming client log the same events the same way.
"""

from __future__ import annotations

import logging
import time
from typing import Any

logger = logging.getLogger(__name__)


def should_log_feature(module: str, feature: str) -> bool:
    """
    Check if a specific logging feature should be enabled.

    Feature flags are cached on the logging module by ``_configure_advanced_logging``.
    """
    if hasattr(logging, '_module_features'):
        module_features = getattr(logging, '_module_features', {}).get(module, {})
        return module_features.get(feature, False)
    return False


def log_llm_reply(
    text: str,
    reasoning: str,
    tool_call_names: list[str],
    context: str,
    truncate_length: int = 500,
) -> None:
    """
    Log one assembled assistant turn when the ``chat.llm_replies`` feature is on.

    Args:
        text: Visible content of the turn
        reasoning: Reasoning text, if the model produced any
        tool_call_names: Names of native tool calls in the turn
        context: Descriptive context for the log entry
        truncate_length: Maximum length for text and reasoning
    """
    if not should_log_feature("chat", "llm_replies"):
        return

    if len(text) > truncate_length:
        text = text[:truncate_length] + "..."
    if len(reasoning) > truncate_length:
        reasoning = reasoning[:truncate_length] + "..."

    log_parts = [f"LLM Reply ({context}):"]

    # Reasoning first, matching the order the model produced it
    if reasoning:
        log_parts.append(f"Reasoning: {reasoning}")

    if text:
        log_parts.append(f"Content: {text}")

    if tool_call_names:
        log_parts.append(f"Tool calls: {len(tool_call_names)}")
        for i, name in enumerate(tool_call_names):
            log_parts.append(f"  [{i}] {name}")

    logger.info(" | ".join(log_parts))


def log_tool_execution_start(
    tool_name: str, call_index: int = 0, total_calls: int = 1
) -> None:
    """
    Log the start of tool execution with consistent formatting.

    Args:
        tool_name: Name of the tool being executed
        call_index: Index of current call (0-based, used for batch execution)
        total_calls: Total number of calls in batch
    """
    if total_calls > 1:
        logger.info(
            "→ Tool[%s]: executing call %d/%d",
            tool_name,
            call_index + 1,
            total_calls,
        )
    else:
        logger.info("→ Tool[%s]: executing", tool_name)


def log_tool_execution_success(tool_name: str, content_length: int) -> None:
    """Log successful tool execution with result length."""
    logger.info("← Tool[%s]: success, content length: %d", tool_name, content_length)


def log_tool_execution_error(tool_name: str, error_msg: str) -> None:
    """Log tool execution failure with consistent formatting."""
    logger.error("← Tool[%s]: failed with error: %s", tool_name, error_msg)


def log_tool_denied(tool_name: str, reason: str) -> None:
    logger.warning("← Tool[%s]: denied (%s)", tool_name, reason)


def log_tool_args_error(tool_name: str, error: Exception) -> None:
    """
    Log malformed tool arguments warning.

    Args:
        tool_name: Name of the tool with malformed arguments
        error: The JSON decode or validation error
    """
    logger.error("Malformed JSON arguments for %s: %s", tool_name, error)


def log_directional_flow(
    direction: str, component: str, message: str, *args: Any
) -> None:
    """
    Log directional flow messages with consistent arrow formatting.

    Args:
        direction: Either "→" (outgoing) or "←" (incoming/completed)
        component: Component name (e.g., "LLM", "Loop", "Tool")
        message: Message template with optional format placeholders
        *args: Arguments for message formatting
    """
    formatted_msg = message % args if args else message
    logger.info(f"{direction} {component}: {formatted_msg}")


def log_llm_request_start(request_id: str, provider: str, model: str) -> float:
    """Log the start of an LLM request and return start time."""
    start_time = time.monotonic()
    logger.info(f"🚀 LLM request started: request_id={request_id}, provider={provider}, model={model}")
    return start_time


def log_llm_request_complete(request_id: str, start_time: float, success: bool = True):
    """Log the completion of an LLM request with timing."""
    elapsed_ms = (time.monotonic() - start_time) * 1000
    status = "✅" if success else "❌"
    logger.info(f"{status} LLM request completed: request_id={request_id}, elapsed={elapsed_ms:.2f}ms")


def log_tool_arguments(
    tool_name: str, arguments: dict[str, Any], context: str, truncate_length: int = 500
) -> None:
    """
    Log arguments of a tool invocation when ``tools.tool_arguments`` is on.

    Args:
        tool_name: Name of the tool being called
        arguments: Parsed argument dictionary
        context: Descriptive context for the log entry
        truncate_length: Maximum length for argument logging
    """
    if not should_log_feature("tools", "tool_arguments"):
        return

    args_str = str(arguments)
    if len(args_str) > truncate_length:
        args_str = args_str[:truncate_length] + "..."

    logger.info(f"→ Tool[{tool_name}]: arguments ({context}): {args_str}")


def log_tool_results(
    tool_name: str, results: Any, context: str, truncate_length: int = 200
) -> None:
    """Log tool output when ``tools.tool_results`` is on."""
    if not should_log_feature("tools", "tool_results"):
        return

    results_str = str(results)
    if len(results_str) > truncate_length:
        results_str = results_str[:truncate_length] + "..."

    logger.info(f"← Tool[{tool_name}]: results ({context}): {results_str}")
