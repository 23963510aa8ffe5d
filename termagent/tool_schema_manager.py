"""Tool Schema Manager for the local tool vocabulary

This module owns the native function-calling definitions of the fixed tool
set. It:
- Emits provider-neutral ``ToolFunctionDefinition`` objects that each wire
  adapter renders in its own grammar
- Filters the set down to an allow-list when one is configured
- Normalizes argument names coming back from native calls, since models often
  answer with camelCase aliases
"""

from __future__ import annotations

import logging
from typing import Any

from termagent.chat.models import ToolFunctionDefinition, ToolFunctionParameters, ToolName

logger = logging.getLogger(__name__)


def _string_property(description: str) -> dict[str, str]:
    return {"type": "string", "description": description}


_TOOL_DEFINITIONS: dict[ToolName, ToolFunctionDefinition] = {
    ToolName.READ: ToolFunctionDefinition(
        name="read",
        description="Read a file and return its contents with line numbers",
        parameters=ToolFunctionParameters(
            properties={"path": _string_property("Path to the file to read (relative or absolute)")},
            required=["path"],
        ),
    ),
    ToolName.WRITE: ToolFunctionDefinition(
        name="write",
        description=(
            "Write content to a file. Creates the file and parent directories if they "
            "don't exist. Overwrites existing content."
        ),
        parameters=ToolFunctionParameters(
            properties={
                "path": _string_property("Path to the file to write"),
                "content": _string_property("The full content to write to the file"),
            },
            required=["path", "content"],
        ),
    ),
    ToolName.EDIT: ToolFunctionDefinition(
        name="edit",
        description="Edit a file by replacing an exact string. The old text must match literally.",
        parameters=ToolFunctionParameters(
            properties={
                "path": _string_property("Path to the file to edit"),
                "old": _string_property("The exact text to find in the file"),
                "new": _string_property("The replacement text"),
            },
            required=["path", "old", "new"],
        ),
    ),
    ToolName.DELETE: ToolFunctionDefinition(
        name="delete",
        description="Delete a file from the filesystem",
        parameters=ToolFunctionParameters(
            properties={"path": _string_property("Path to the file to delete")},
            required=["path"],
        ),
    ),
    ToolName.BASH: ToolFunctionDefinition(
        name="bash",
        description=(
            "Execute a shell command via bash. Use for running tests, installing "
            "packages, building projects, or any other shell operation."
        ),
        parameters=ToolFunctionParameters(
            properties={"command": _string_property("The shell command to execute")},
            required=["command"],
        ),
    ),
    ToolName.GREP: ToolFunctionDefinition(
        name="grep",
        description=(
            "Search file contents with a regex pattern. Returns up to 50 matching "
            "lines with file paths and line numbers."
        ),
        parameters=ToolFunctionParameters(
            properties={
                "pattern": _string_property("Regex pattern to search for"),
                "glob": _string_property("Optional file glob to restrict the search (e.g. '*.py')"),
            },
            required=["pattern"],
        ),
    ),
    ToolName.GLOB: ToolFunctionDefinition(
        name="glob",
        description="Find files matching a glob pattern. Useful for discovering project structure.",
        parameters=ToolFunctionParameters(
            properties={"pattern": _string_property("Glob pattern (e.g. 'src/**/*.py')")},
            required=["pattern"],
        ),
    ),
    ToolName.LS: ToolFunctionDefinition(
        name="ls",
        description="List directory contents with file sizes.",
        parameters=ToolFunctionParameters(
            properties={"path": _string_property("Directory to list. Defaults to the current directory.")},
        ),
    ),
    ToolName.GIT: ToolFunctionDefinition(
        name="git",
        description="Show git status: current branch, changed files and recent commits.",
        parameters=ToolFunctionParameters(),
    ),
}

# camelCase spellings models tend to produce for native calls
_ARGUMENT_ALIASES: dict[str, str] = {
    "filePath": "path",
    "file_path": "path",
    "dirPath": "path",
    "dir_path": "path",
    "oldStr": "old",
    "old_str": "old",
    "old_string": "old",
    "newStr": "new",
    "new_str": "new",
    "new_string": "new",
    "fileGlob": "glob",
    "file_glob": "glob",
    "cmd": "command",
}


class ToolSchemaManager:
    """
    Registry of native tool definitions for the local tool vocabulary.

    Key characteristics:
    - Closed: only the fixed ``ToolName`` members are ever advertised
    - Provider-neutral: adapters turn definitions into their wire format
    - Allow-list aware: a configured subset hides every other tool
    """

    def __init__(self, allowed_tools: list[str] | None = None) -> None:
        self._registry: dict[ToolName, ToolFunctionDefinition] = {}
        for tool, definition in _TOOL_DEFINITIONS.items():
            if allowed_tools is not None and tool.value not in allowed_tools:
                continue
            self._registry[tool] = definition
        logger.info("Registered %d native tool definitions", len(self._registry))

    def get_tool_definitions(self) -> list[ToolFunctionDefinition]:
        """Definitions in vocabulary order, ready for ``WireAdapter.build_request``."""
        return list(self._registry.values())

    def list_available_tools(self) -> list[str]:
        return [tool.value for tool in self._registry]

    @staticmethod
    def normalize_arguments(arguments: dict[str, Any]) -> dict[str, Any]:
        """Map known argument aliases onto canonical names (canonical keys win)."""
        normalized: dict[str, Any] = {}
        for key, value in arguments.items():
            canonical = _ARGUMENT_ALIASES.get(key, key)
            if canonical in normalized and canonical == key:
                normalized[canonical] = value
            else:
                normalized.setdefault(canonical, value)
        return normalized
