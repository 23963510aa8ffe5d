"""
System prompt construction.

The base prompt comes from configuration; this module appends the working
directory and the tagged tool grammar for the tools the session exposes.
"""

from __future__ import annotations

import logging
from pathlib import Path

from .models import ToolName

logger = logging.getLogger(__name__)

_TOOL_USAGE: dict[ToolName, str] = {
    ToolName.READ: "<tool:read>path/to/file</tool>  read a file with line numbers",
    ToolName.WRITE: "<tool:write>path/to/file\nfull file content</tool>  create or overwrite a file",
    ToolName.EDIT: (
        "<tool:edit>path/to/file\n<<<\nexact old text\n>>>\nnew text</tool>  "
        "replace the first exact occurrence of the old text"
    ),
    ToolName.DELETE: "<tool:delete>path/to/file</tool>  delete a file",
    ToolName.BASH: "<tool:bash>command</tool>  run a shell command",
    ToolName.GREP: "<tool:grep>regex\noptional file glob</tool>  search file contents",
    ToolName.GLOB: "<tool:glob>**/*.py</tool>  find files by pattern",
    ToolName.LS: "<tool:ls>directory</tool>  list a directory",
    ToolName.GIT: "<tool:git></tool>  show branch, changed files and recent commits",
}


def build_system_prompt(
    base: str,
    cwd: str | Path,
    tool_names: list[str] | None = None,
) -> str:
    """Return ``base`` plus the working directory and the tool grammar section."""
    tools = [t for t in ToolName.known() if tool_names is None or t.value in tool_names]

    prompt = base.rstrip()
    prompt += f"\n\nWorking directory: {cwd}"

    if tools:
        usage = "\n".join(f"- {_TOOL_USAGE[t]}" for t in tools)
        prompt += (
            "\n\n**Tools:** call a tool by writing its tag in your reply. "
            "Several tags may appear in one reply; they run in order and the "
            "results come back in the next message.\n"
            f"{usage}"
        )

    logger.debug("System prompt built, length=%d chars", len(prompt))
    return prompt
