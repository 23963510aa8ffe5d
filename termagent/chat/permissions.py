"""
Permission gate between turn parsing and tool execution.

Every tool has a risk class (from an injected table); the active
``PermissionMode`` turns a risk class into allow / ask / deny. An ``ask`` is
resolved by an injected async approver, or treated as a denial when the
session has none (non-interactive runs never block on input).
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from .logging_utils import log_tool_denied
from .models import PermissionDecision, PermissionMode, ToolInvocation, ToolName, ToolResult, ToolRiskClass

logger = logging.getLogger(__name__)

Approver = Callable[[ToolInvocation, ToolRiskClass], Awaitable[bool]]

DEFAULT_RISK_TABLE: dict[ToolName, ToolRiskClass] = {
    ToolName.READ: ToolRiskClass.SAFE,
    ToolName.LS: ToolRiskClass.SAFE,
    ToolName.GLOB: ToolRiskClass.SAFE,
    ToolName.GREP: ToolRiskClass.SAFE,
    ToolName.GIT: ToolRiskClass.SAFE,
    ToolName.WRITE: ToolRiskClass.MODERATE,
    ToolName.EDIT: ToolRiskClass.MODERATE,
    ToolName.DELETE: ToolRiskClass.MODERATE,
    ToolName.BASH: ToolRiskClass.DANGEROUS,
}

# acceptEdits lets these through without asking
EDIT_TOOLS = frozenset({ToolName.WRITE, ToolName.EDIT})

_ALWAYS_ALLOW = frozenset({PermissionMode.AUTO, PermissionMode.BYPASS, PermissionMode.DELEGATE})
_ASK_WHEN_RISKY = frozenset({PermissionMode.ASK, PermissionMode.PLAN})


class PermissionModeStore:
    """In-memory holder of the session's active permission mode."""

    def __init__(self, mode: PermissionMode = PermissionMode.AUTO) -> None:
        self._mode = mode

    def get(self) -> PermissionMode:
        return self._mode

    def set(self, mode: PermissionMode | str) -> None:
        new_mode = PermissionMode(mode)
        if new_mode is not self._mode:
            logger.info("Permission mode: %s → %s", self._mode.value, new_mode.value)
        self._mode = new_mode


class PermissionGate:
    """Maps (tool, mode) to a decision and resolves asks through the approver."""

    def __init__(
        self,
        risk_table: dict[ToolName, ToolRiskClass] | None = None,
        allowed_tools: list[str] | None = None,
        approver: Approver | None = None,
    ) -> None:
        self.risk_table = dict(DEFAULT_RISK_TABLE if risk_table is None else risk_table)
        self.allowed_tools = None if allowed_tools is None else frozenset(allowed_tools)
        self.approver = approver

    def risk_class(self, tool: ToolName) -> ToolRiskClass:
        # Unclassified tools, including UNKNOWN, are treated as dangerous
        return self.risk_table.get(tool, ToolRiskClass.DANGEROUS)

    def decide(self, tool: ToolName, mode: PermissionMode) -> PermissionDecision:
        if mode in _ALWAYS_ALLOW:
            return PermissionDecision.ALLOW
        if mode is PermissionMode.STRICT:
            return PermissionDecision.ASK

        if mode is PermissionMode.DONT_ASK:
            if self.allowed_tools is None or tool.value in self.allowed_tools:
                return PermissionDecision.ALLOW
            return PermissionDecision.DENY

        risk = self.risk_class(tool)
        if risk is ToolRiskClass.SAFE:
            return PermissionDecision.ALLOW
        if mode is PermissionMode.ACCEPT_EDITS and tool in EDIT_TOOLS:
            return PermissionDecision.ALLOW
        if mode in _ASK_WHEN_RISKY or mode is PermissionMode.ACCEPT_EDITS:
            return PermissionDecision.ASK
        return PermissionDecision.ALLOW

    async def authorize(self, invocation: ToolInvocation, mode: PermissionMode) -> ToolResult | None:
        """
        Check one invocation against the active mode.

        Returns:
            A denial ``ToolResult`` (``denied=True``) when the call must not run,
            otherwise None.
        """
        decision = self.decide(invocation.tool, mode)

        if decision is PermissionDecision.ALLOW:
            return None

        if decision is PermissionDecision.DENY:
            reason = f"'{invocation.display_name}' is not in the allowed tools for {mode.value} mode"
            return self._denial(invocation, reason)

        if self.approver is None:
            return self._denial(invocation, f"{mode.value} mode requires approval and no approver is available")

        approved = await self.approver(invocation, self.risk_class(invocation.tool))
        if approved:
            logger.info("Permission granted for %s", invocation.display_name)
            return None
        return self._denial(invocation, "the user declined this action")

    @staticmethod
    def _denial(invocation: ToolInvocation, reason: str) -> ToolResult:
        log_tool_denied(invocation.display_name, reason)
        return ToolResult(
            tool=invocation.display_name,
            result=f"Permission denied: {reason}.",
            success=False,
            denied=True,
        )


def format_permission_prompt(invocation: ToolInvocation, risk: ToolRiskClass) -> str:
    """One-line prompt shown to the user when a call needs approval."""
    marker = {ToolRiskClass.DANGEROUS: "!!", ToolRiskClass.MODERATE: "~", ToolRiskClass.SAFE: "i"}[risk]
    preview = invocation.primary_argument.replace("\n", " ")
    if len(preview) > 80:
        preview = preview[:77] + "..."
    return f"[{marker}] [{invocation.display_name}] {preview}"


def generate_change_preview(invocation: ToolInvocation, max_lines: int = 15) -> str:
    """Diff-style preview of a write or edit, empty for other tools."""
    args = invocation.args
    if invocation.tool is ToolName.EDIT:
        removed = [f"  - {line}" for line in str(args.get("old", "")).split("\n")]
        added = [f"  + {line}" for line in str(args.get("new", "")).split("\n")]
        return "\n".join([f"  File: {args.get('path', '')}", *removed, *added])

    if invocation.tool is ToolName.WRITE:
        lines = str(args.get("content", "")).split("\n")
        preview = [f"  File: {args.get('path', '')} ({len(lines)} lines)"]
        preview += [f"  + {line}" for line in lines[:max_lines]]
        if len(lines) > max_lines:
            preview.append(f"  ... +{len(lines) - max_lines} more lines")
        return "\n".join(preview)

    return ""
