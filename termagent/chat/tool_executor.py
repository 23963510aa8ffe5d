"""
Tool Execution Handler

Runs one round of tool invocations:
- Argument grammar errors become failed results with a format hint
- Every call passes the permission gate before it runs
- Blocking tools run in a worker thread, one at a time, in call order
- Every result feeds the per-process tool counters

Tool failures are returned as values so the loop can feed them back to the
model; nothing here raises for an expected tool error.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from .logging_utils import (
    log_tool_arguments,
    log_tool_execution_error,
    log_tool_execution_start,
    log_tool_execution_success,
    log_tool_results,
)
from .models import ToolInvocation, ToolResult, ToolStats

if TYPE_CHECKING:
    from .cancellation import CancellationToken
    from .local_tools import LocalTools
    from .permissions import PermissionGate, PermissionModeStore

logger = logging.getLogger(__name__)


class ToolDispatcher:
    """Executes parsed invocations through the permission gate and local tools."""

    def __init__(
        self,
        tools: LocalTools,
        gate: PermissionGate,
        mode_store: PermissionModeStore,
        stats: ToolStats | None = None,
    ):
        self.tools = tools
        self.gate = gate
        self.mode_store = mode_store
        self.stats = stats if stats is not None else ToolStats()

    async def execute(
        self,
        invocations: list[ToolInvocation],
        cancel: CancellationToken | None = None,
    ) -> list[ToolResult]:
        """
        Execute a round of invocations sequentially.

        Stops before the next invocation once ``cancel`` is signaled, so the
        returned list may be shorter than ``invocations``.
        """
        logger.info("→ Tools: executing %d tool calls", len(invocations))
        results: list[ToolResult] = []

        for i, invocation in enumerate(invocations):
            if cancel is not None and cancel.cancelled:
                logger.info("← Tools: cancelled after %d of %d calls", i, len(invocations))
                break

            result = await self.execute_one(invocation, i, len(invocations))
            self.stats.record(result)
            results.append(result)

        logger.info("← Tools: completed %d tool executions", len(results))
        return results

    async def execute_one(self, invocation: ToolInvocation, index: int = 0, total: int = 1) -> ToolResult:
        name = invocation.display_name
        log_tool_arguments(name, invocation.args, f"call {index + 1}/{total}")

        if invocation.parse_error:
            log_tool_execution_error(name, invocation.parse_error)
            return ToolResult(tool=name, result=invocation.parse_error, success=False)

        denial = await self.gate.authorize(invocation, self.mode_store.get())
        if denial is not None:
            return denial

        log_tool_execution_start(name, index, total)
        result = await asyncio.to_thread(self.tools.run, invocation)

        if result.success:
            log_tool_execution_success(name, len(result.result))
        else:
            log_tool_execution_error(name, result.result[:200])
        log_tool_results(name, result.result, f"call {index + 1}/{total}")
        return result
