"""
Tool invocation extraction from one assistant turn.

Three sources are tried in order and only the first one that yields anything
is used:

1. tagged text, ``<tool:NAME>ARGS</tool>`` (plus recovery of the two unclosed
   forms models commonly produce),
2. native tool calls collected from the stream,
3. fenced ``bash``/``sh``/``shell`` and ``python`` code blocks.
"""

from __future__ import annotations

import json
import logging
import re

from pydantic import BaseModel, Field

from termagent.tool_schema_manager import ToolSchemaManager

from .logging_utils import log_tool_args_error
from .models import InvocationOrigin, ToolCallData, ToolInvocation, ToolName

logger = logging.getLogger(__name__)

TAG_PATTERN = re.compile(r"<tool:(\w+)>([\s\S]*?)</tool(?::\w+)?>")
UNCLOSED_WRITE_PATTERN = re.compile(r"<tool:write>([^\n<]+)\n```\w*\n([\s\S]*?)```")
UNCLOSED_BASH_PATTERN = re.compile(r"<tool:bash>([^\n<]+)(?:\n|$)")
FENCED_PATTERN = re.compile(r"```(bash|sh|shell|python)\n([\s\S]*?)```")
ANY_TAG_PATTERN = re.compile(r"<tool:\w+>")
BR_PATTERN = re.compile(r"<br\s*/?>", re.IGNORECASE)

WRITE_ARGS = re.compile(r"^([^\n]+)\n([\s\S]*)$")
EDIT_ARGS = re.compile(r"^([^\n]+)\n<<<\n([\s\S]*?)\n>>>\n([\s\S]*)$")
TRAILING_CODE_BLOCK = re.compile(r"\s*```\w*\n([\s\S]*?)```")  # used with match(text, pos)

WRITE_FORMAT_HINT = "Format: path\\ncontent"
EDIT_FORMAT_HINT = "Format: path\\n<<<\\nold\\n>>>\\nnew"


class ParsedTurn(BaseModel):
    """Invocations found in a turn, plus the turn text with them removed."""

    invocations: list[ToolInvocation] = Field(default_factory=list)
    clean_text: str = ""
    source: str | None = None  # "tagged", "native" or "fenced"


def extract_invocations(
    text: str,
    native_calls: list[ToolCallData] | None = None,
    allow_fenced: bool = True,
) -> ParsedTurn:
    """Extract the invocations of one turn; never mixes sources."""
    text = BR_PATTERN.sub("\n", text)

    invocations, clean = parse_tagged(text)
    if not invocations:
        invocations, clean = parse_unclosed(text)
    if invocations:
        return ParsedTurn(invocations=invocations, clean_text=clean.strip(), source="tagged")

    if native_calls:
        return ParsedTurn(invocations=parse_native(native_calls), clean_text=text.strip(), source="native")

    if allow_fenced:
        invocations, clean = parse_fenced(text)
        if invocations:
            return ParsedTurn(invocations=invocations, clean_text=clean.strip(), source="fenced")

    return ParsedTurn(clean_text=text.strip())


def parse_tagged(text: str) -> tuple[list[ToolInvocation], str]:
    invocations: list[ToolInvocation] = []
    clean = text

    for match in TAG_PATTERN.finditer(text):
        raw_name, args = match.group(1), match.group(2)
        tool = ToolName.parse(raw_name)
        invocation = _tagged_invocation(tool, raw_name, args)

        # <tool:write>path</tool> followed by a fenced block carrying the content
        if tool is ToolName.WRITE and invocation.parse_error:
            trailing = TRAILING_CODE_BLOCK.match(text, match.end())
            if trailing and args.strip():
                invocation = ToolInvocation(
                    tool=tool,
                    raw_name=raw_name,
                    args={"path": args.strip(), "content": trailing.group(1)},
                )
                clean = clean.replace(trailing.group(0), "", 1)

        invocations.append(invocation)
        clean = clean.replace(match.group(0), "", 1)

    return invocations, clean


def _tagged_invocation(tool: ToolName, raw_name: str, args: str) -> ToolInvocation:
    if tool is ToolName.WRITE:
        write_match = WRITE_ARGS.match(args.lstrip("\n"))
        if not write_match:
            return ToolInvocation(tool=tool, raw_name=raw_name, args={"path": args.strip()}, parse_error=WRITE_FORMAT_HINT)
        return ToolInvocation(
            tool=tool,
            raw_name=raw_name,
            args={"path": write_match.group(1).strip(), "content": write_match.group(2)},
        )

    if tool is ToolName.EDIT:
        edit_match = EDIT_ARGS.match(args.lstrip("\n"))
        if not edit_match:
            return ToolInvocation(tool=tool, raw_name=raw_name, args={"path": args.strip()}, parse_error=EDIT_FORMAT_HINT)
        return ToolInvocation(
            tool=tool,
            raw_name=raw_name,
            args={
                "path": edit_match.group(1).strip(),
                "old": edit_match.group(2),
                "new": edit_match.group(3),
            },
        )

    stripped = args.strip()
    if tool is ToolName.GREP:
        lines = stripped.split("\n")
        grep_args = {"pattern": lines[0].strip()}
        if len(lines) > 1 and lines[1].strip():
            grep_args["glob"] = lines[1].strip()
        return ToolInvocation(tool=tool, raw_name=raw_name, args=grep_args)

    single_arg_keys = {
        ToolName.READ: "path",
        ToolName.DELETE: "path",
        ToolName.LS: "path",
        ToolName.BASH: "command",
        ToolName.GLOB: "pattern",
        ToolName.UNKNOWN: "raw",
    }
    key = single_arg_keys.get(tool)
    if key is None:  # git takes no arguments
        return ToolInvocation(tool=tool, raw_name=raw_name)
    return ToolInvocation(tool=tool, raw_name=raw_name, args={key: stripped})


def parse_unclosed(text: str) -> tuple[list[ToolInvocation], str]:
    """Recover ``<tool:write>path`` + fenced block and ``<tool:bash>command`` without ``</tool>``."""
    invocations: list[ToolInvocation] = []
    clean = text

    for match in UNCLOSED_WRITE_PATTERN.finditer(text):
        path = match.group(1).strip()
        if not path:
            continue
        invocations.append(
            ToolInvocation(tool=ToolName.WRITE, raw_name="write", args={"path": path, "content": match.group(2)})
        )
        clean = clean.replace(match.group(0), "", 1)

    for match in UNCLOSED_BASH_PATTERN.finditer(text):
        command = match.group(1).strip()
        if not command:
            continue
        invocations.append(ToolInvocation(tool=ToolName.BASH, raw_name="bash", args={"command": command}))
        clean = clean.replace(match.group(0), "", 1)

    if invocations:
        logger.info("Recovered %d unclosed tool tag(s)", len(invocations))
    return invocations, clean


def parse_native(calls: list[ToolCallData]) -> list[ToolInvocation]:
    invocations: list[ToolInvocation] = []
    for call in calls:
        try:
            args = json.loads(call.arguments or "{}")
        except json.JSONDecodeError as e:
            log_tool_args_error(call.name, e)
            args = {}
        if not isinstance(args, dict):
            log_tool_args_error(call.name, TypeError(f"expected object, got {type(args).__name__}"))
            args = {}

        tool = ToolName.parse(call.name)
        args = ToolSchemaManager.normalize_arguments(args)
        if tool is ToolName.UNKNOWN:
            args.setdefault("raw", call.arguments)
        invocations.append(
            ToolInvocation(
                tool=tool,
                raw_name=call.name,
                args=args,
                origin=InvocationOrigin.NATIVE,
                call_id=call.id,
            )
        )
    return invocations


def parse_fenced(text: str) -> tuple[list[ToolInvocation], str]:
    invocations: list[ToolInvocation] = []
    clean = text

    for match in FENCED_PATTERN.finditer(text):
        language, code = match.group(1), match.group(2).strip()
        if not code or ANY_TAG_PATTERN.search(code):
            continue
        if language == "python":
            invocation = ToolInvocation(
                tool=ToolName.BASH,
                raw_name="auto-python",
                args={"script": code},
                origin=InvocationOrigin.FENCED_PYTHON,
            )
        else:
            invocation = ToolInvocation(
                tool=ToolName.BASH,
                raw_name="auto-bash",
                args={"command": code},
                origin=InvocationOrigin.FENCED_SHELL,
            )
        invocations.append(invocation)
        clean = clean.replace(match.group(0), "", 1)

    return invocations, clean
