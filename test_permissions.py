#!/usr/bin/env python3
"""
Tests for the permission gate: mode/risk decisions and approver handling.
"""

from unittest.mock import AsyncMock

import pytest

from termagent.chat.models import PermissionDecision, PermissionMode, ToolInvocation, ToolName, ToolRiskClass
from termagent.chat.permissions import (
    PermissionGate,
    PermissionModeStore,
    format_permission_prompt,
    generate_change_preview,
)

ALLOW = PermissionDecision.ALLOW
ASK = PermissionDecision.ASK
DENY = PermissionDecision.DENY


@pytest.mark.parametrize(
    ("mode", "tool", "expected"),
    [
        (PermissionMode.STRICT, ToolName.READ, ASK),
        (PermissionMode.AUTO, ToolName.BASH, ALLOW),
        (PermissionMode.BYPASS, ToolName.DELETE, ALLOW),
        (PermissionMode.DELEGATE, ToolName.BASH, ALLOW),
        (PermissionMode.ASK, ToolName.WRITE, ASK),
        (PermissionMode.ASK, ToolName.READ, ALLOW),
        (PermissionMode.ASK, ToolName.GIT, ALLOW),
        (PermissionMode.ACCEPT_EDITS, ToolName.EDIT, ALLOW),
        (PermissionMode.ACCEPT_EDITS, ToolName.WRITE, ALLOW),
        (PermissionMode.ACCEPT_EDITS, ToolName.DELETE, ASK),
        (PermissionMode.ACCEPT_EDITS, ToolName.BASH, ASK),
        (PermissionMode.PLAN, ToolName.GREP, ALLOW),
        (PermissionMode.PLAN, ToolName.BASH, ASK),
        (PermissionMode.ASK, ToolName.UNKNOWN, ASK),
    ],
)
def test_decision_table(mode, tool, expected):
    assert PermissionGate().decide(tool, mode) is expected


def test_dont_ask_uses_allow_list():
    gate = PermissionGate(allowed_tools=["read", "grep"])
    assert gate.decide(ToolName.READ, PermissionMode.DONT_ASK) is ALLOW
    assert gate.decide(ToolName.BASH, PermissionMode.DONT_ASK) is DENY

    open_gate = PermissionGate()
    assert open_gate.decide(ToolName.BASH, PermissionMode.DONT_ASK) is ALLOW


def test_custom_risk_table_and_unclassified_tools():
    gate = PermissionGate(risk_table={ToolName.READ: ToolRiskClass.SAFE})
    assert gate.risk_class(ToolName.READ) is ToolRiskClass.SAFE
    assert gate.risk_class(ToolName.LS) is ToolRiskClass.DANGEROUS
    assert gate.decide(ToolName.LS, PermissionMode.ASK) is ASK


async def test_ask_without_approver_is_denied():
    gate = PermissionGate()
    invocation = ToolInvocation(tool=ToolName.WRITE, raw_name="write", args={"path": "a", "content": "b"})

    denial = await gate.authorize(invocation, PermissionMode.ASK)

    assert denial is not None
    assert denial.denied
    assert not denial.success
    assert denial.result.startswith("Permission denied:")


async def test_approver_decides_asks():
    approver = AsyncMock(return_value=True)
    gate = PermissionGate(approver=approver)
    invocation = ToolInvocation(tool=ToolName.BASH, raw_name="bash", args={"command": "make"})

    assert await gate.authorize(invocation, PermissionMode.STRICT) is None
    approver.assert_awaited_once_with(invocation, ToolRiskClass.DANGEROUS)

    approver.return_value = False
    denial = await gate.authorize(invocation, PermissionMode.STRICT)
    assert denial.denied
    assert "declined" in denial.result


async def test_allowed_calls_never_reach_the_approver():
    approver = AsyncMock(return_value=False)
    gate = PermissionGate(approver=approver)
    invocation = ToolInvocation(tool=ToolName.READ, raw_name="read", args={"path": "a"})

    assert await gate.authorize(invocation, PermissionMode.ASK) is None
    approver.assert_not_awaited()


def test_mode_store_accepts_strings():
    store = PermissionModeStore()
    assert store.get() is PermissionMode.AUTO

    store.set("acceptEdits")
    assert store.get() is PermissionMode.ACCEPT_EDITS

    with pytest.raises(ValueError):
        store.set("yolo")


def test_prompt_and_preview_formatting():
    invocation = ToolInvocation(
        tool=ToolName.EDIT,
        raw_name="edit",
        args={"path": "app.py", "old": "a = 1", "new": "a = 2"},
    )

    assert format_permission_prompt(invocation, ToolRiskClass.MODERATE) == "[~] [edit] app.py"
    assert generate_change_preview(invocation) == "  File: app.py\n  - a = 1\n  + a = 2"

    write = ToolInvocation(
        tool=ToolName.WRITE,
        raw_name="write",
        args={"path": "big.txt", "content": "\n".join(str(i) for i in range(20))},
    )
    preview = generate_change_preview(write).splitlines()
    assert preview[0] == "  File: big.txt (20 lines)"
    assert preview[-1] == "  ... +5 more lines"

    bash = ToolInvocation(tool=ToolName.BASH, raw_name="bash", args={"command": "ls"})
    assert generate_change_preview(bash) == ""
