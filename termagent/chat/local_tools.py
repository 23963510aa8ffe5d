"""
Local tool implementations.

Every tool is synchronous and returns a ``ToolResult``; failures are values,
never exceptions. Mutating tools record the prior file state in the undo
ledger before touching the filesystem.
"""

from __future__ import annotations

import glob as globlib
import logging
import os
import subprocess
import sys
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

from .models import Change, FileDiff, InvocationOrigin, ToolInvocation, ToolName, ToolResult
from .undo import UndoLedger, UnrecordableStateError, capture_before_state

logger = logging.getLogger(__name__)

GREP_MAX_LINES = 50
GLOB_MAX_FILES = 100
IGNORED_DIRS = frozenset({"node_modules", ".git", "dist", ".next"})


def truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + f"\n...[truncated, {len(text) - max_chars} chars omitted]"


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size}B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f}KB"
    return f"{size / (1024 * 1024):.1f}MB"


class LocalTools:
    """Executes the fixed tool vocabulary against one working directory."""

    def __init__(
        self,
        ledger: UndoLedger,
        cwd: str | Path | None = None,
        bash_timeout: float = 30,
        search_timeout: float = 10,
        git_timeout: float = 5,
        max_output_chars: int = 15000,
    ) -> None:
        self.ledger = ledger
        self.cwd = Path(cwd) if cwd is not None else Path.cwd()
        self.bash_timeout = bash_timeout
        self.search_timeout = search_timeout
        self.git_timeout = git_timeout
        self.max_output_chars = max_output_chars

        self._handlers: dict[ToolName, Callable[[dict[str, Any]], ToolResult]] = {
            ToolName.READ: self.read,
            ToolName.WRITE: self.write,
            ToolName.EDIT: self.edit,
            ToolName.DELETE: self.delete,
            ToolName.BASH: self.bash,
            ToolName.GREP: self.grep,
            ToolName.GLOB: self.glob,
            ToolName.LS: self.ls,
            ToolName.GIT: self.git,
        }

    @classmethod
    def from_config(cls, tools_config: dict[str, Any], ledger: UndoLedger, cwd: str | Path | None = None) -> LocalTools:
        return cls(
            ledger,
            cwd=cwd,
            bash_timeout=tools_config["bash_timeout_seconds"],
            search_timeout=tools_config["search_timeout_seconds"],
            git_timeout=tools_config["git_timeout_seconds"],
            max_output_chars=tools_config["max_output_chars"],
        )

    def run(self, invocation: ToolInvocation) -> ToolResult:
        """Execute one invocation; unknown tools fail with an explicit marker."""
        if invocation.tool is ToolName.UNKNOWN:
            available = ", ".join(t.value for t in ToolName.known())
            return ToolResult(
                tool=invocation.raw_name,
                result=f"Unknown tool: {invocation.raw_name}. Available tools: {available}",
                success=False,
            )
        try:
            if invocation.origin is InvocationOrigin.FENCED_PYTHON:
                script = self._require(invocation.args, "script")
                if script is None:
                    return self._fail(invocation.tool, "Missing argument: script")
                return self._run_python_script(script)
            return self._handlers[invocation.tool](invocation.args)
        except (OSError, ValueError) as e:
            return self._fail(invocation.tool, f"Error: {e}")

    def _resolve(self, path: str) -> Path:
        return self.cwd / Path(path).expanduser()

    def _fail(self, tool: ToolName, message: str, **fields: Any) -> ToolResult:
        return ToolResult(tool=tool.value, result=message, success=False, **fields)

    @staticmethod
    def _require(args: dict[str, Any], key: str) -> str | None:
        value = args.get(key)
        if not isinstance(value, str) or not value.strip():
            return None
        return value

    # ------------------------------------------------------------------
    # File tools
    # ------------------------------------------------------------------

    def read(self, args: dict[str, Any]) -> ToolResult:
        path = self._require(args, "path")
        if path is None:
            return self._fail(ToolName.READ, "Missing argument: path")
        target = self._resolve(path.strip())
        if not target.exists():
            return self._fail(ToolName.READ, f"File not found: {path}")
        if not target.is_file():
            return self._fail(ToolName.READ, f"Not a file: {path}")
        try:
            content = target.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return self._fail(ToolName.READ, f"Not a UTF-8 text file: {path}")

        lines = content.split("\n")
        numbered = "\n".join(f"{i:>4} | {line}" for i, line in enumerate(lines, start=1))
        return ToolResult(
            tool="read",
            result=truncate(numbered, self.max_output_chars),
            success=True,
            file_path=path,
            lines_changed=len(lines),
        )

    def write(self, args: dict[str, Any]) -> ToolResult:
        path = self._require(args, "path")
        content = args.get("content")
        if path is None or not isinstance(content, str):
            return self._fail(ToolName.WRITE, "Missing argument: path and content are required")
        path = path.strip()
        target = self._resolve(path)
        if target.is_dir():
            return self._fail(ToolName.WRITE, f"Is a directory: {path}")

        try:
            previous = capture_before_state(target)
        except UnrecordableStateError as e:
            return self._fail(ToolName.WRITE, f"Refusing to overwrite {path}: {e}")
        self.ledger.push(
            Change(
                type="write",
                file_path=str(target),
                previous_content=previous,
                new_content=content,
                description=f"write {path}",
            )
        )
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

        line_count = len(content.split("\n"))
        return ToolResult(
            tool="write",
            result=f"Wrote {line_count} lines to {path}",
            success=True,
            diff=FileDiff(file_path=path, old_content=previous or "", new_content=content),
            file_path=path,
            lines_changed=line_count,
        )

    def edit(self, args: dict[str, Any]) -> ToolResult:
        path = self._require(args, "path")
        old, new = args.get("old"), args.get("new")
        if path is None or not isinstance(old, str) or not isinstance(new, str):
            return self._fail(ToolName.EDIT, "Missing argument: path, old and new are required")
        path = path.strip()
        if not old:
            return self._fail(ToolName.EDIT, "Old text must not be empty")
        target = self._resolve(path)
        if not target.is_file():
            return self._fail(ToolName.EDIT, f"File not found: {path}")

        try:
            content = target.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return self._fail(ToolName.EDIT, f"Not a UTF-8 text file: {path}")
        if old not in content:
            return self._fail(
                ToolName.EDIT,
                f"Needle not found in {path}: the old text must match exactly. No changes made.",
                file_path=path,
            )

        new_content = content.replace(old, new, 1)
        self.ledger.push(
            Change(
                type="edit",
                file_path=str(target),
                previous_content=content,
                new_content=new_content,
                description=f"edit {path}",
            )
        )
        target.write_text(new_content, encoding="utf-8")

        added = len(new.split("\n"))
        delta = added - len(old.split("\n"))
        return ToolResult(
            tool="edit",
            result=f"Updated {path} ({delta:+d} lines)",
            success=True,
            diff=FileDiff(file_path=path, old_content=old, new_content=new),
            file_path=path,
            lines_changed=added,
        )

    def delete(self, args: dict[str, Any]) -> ToolResult:
        path = self._require(args, "path")
        if path is None:
            return self._fail(ToolName.DELETE, "Missing argument: path")
        path = path.strip()
        target = self._resolve(path)
        if not target.exists():
            return self._fail(ToolName.DELETE, f"File not found: {path}")
        if target.is_dir():
            return self._fail(ToolName.DELETE, f"Refusing to delete a directory: {path}")

        try:
            previous = capture_before_state(target)
        except UnrecordableStateError as e:
            return self._fail(ToolName.DELETE, f"Refusing to delete {path}: {e}")
        self.ledger.push(
            Change(
                type="delete",
                file_path=str(target),
                previous_content=previous,
                new_content=None,
                description=f"delete {path}",
            )
        )
        target.unlink()
        return ToolResult(tool="delete", result=f"Deleted {path}", success=True, file_path=path)

    # ------------------------------------------------------------------
    # Process tools
    # ------------------------------------------------------------------

    def bash(self, args: dict[str, Any]) -> ToolResult:
        command = self._require(args, "command")
        if command is None:
            return self._fail(ToolName.BASH, "Missing argument: command")
        command = command.strip()
        logger.info("→ Shell: %s", command)
        return self._run_process(["bash", "-c", command], command)

    def _run_python_script(self, script: str) -> ToolResult:
        # Temp file avoids shell quoting of the script body
        fd, script_path = tempfile.mkstemp(prefix="termagent_auto_", suffix=".py")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(script)
            return self._run_process([sys.executable, script_path], f"python {script_path}")
        finally:
            Path(script_path).unlink(missing_ok=True)

    def _run_process(self, argv: list[str], command: str) -> ToolResult:
        try:
            completed = subprocess.run(
                argv,
                cwd=self.cwd,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.bash_timeout,
            )
        except subprocess.TimeoutExpired as e:
            partial = _as_text(e.stdout) + _as_text(e.stderr)
            message = f"Command timed out after {self.bash_timeout}s"
            if partial:
                message += f"\n{partial}"
            return self._fail(ToolName.BASH, truncate(message, self.max_output_chars), command=command)

        output = completed.stdout + completed.stderr
        if completed.returncode != 0:
            return self._fail(
                ToolName.BASH,
                truncate(output or f"Exit code {completed.returncode}", self.max_output_chars),
                command=command,
            )
        return ToolResult(
            tool="bash",
            result=truncate(output or "(no output)", self.max_output_chars),
            success=True,
            command=command,
        )

    # ------------------------------------------------------------------
    # Search tools
    # ------------------------------------------------------------------

    def grep(self, args: dict[str, Any]) -> ToolResult:
        pattern = self._require(args, "pattern")
        if pattern is None:
            return self._fail(ToolName.GREP, "Missing argument: pattern")

        argv = ["grep", "-rn", *(f"--exclude-dir={d}" for d in sorted(IGNORED_DIRS))]
        file_glob = args.get("glob")
        if isinstance(file_glob, str) and file_glob.strip():
            argv.append(f"--include={file_glob.strip()}")
        argv += ["-e", pattern, "."]

        try:
            completed = subprocess.run(
                argv,
                cwd=self.cwd,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.search_timeout,
            )
        except subprocess.TimeoutExpired:
            return self._fail(ToolName.GREP, f"Search timed out after {self.search_timeout}s")

        lines = completed.stdout.splitlines()
        if not lines:
            if completed.returncode > 1:
                return self._fail(ToolName.GREP, f"grep error: {completed.stderr.strip()}")
            return ToolResult(tool="grep", result="No matches.", success=True)
        return ToolResult(
            tool="grep",
            result=truncate("\n".join(lines[:GREP_MAX_LINES]), self.max_output_chars),
            success=True,
        )

    def glob(self, args: dict[str, Any]) -> ToolResult:
        pattern = self._require(args, "pattern")
        if pattern is None:
            return self._fail(ToolName.GLOB, "Missing argument: pattern")

        matches = [
            match
            for match in globlib.glob(pattern.strip(), root_dir=self.cwd, recursive=True)
            if not IGNORED_DIRS.intersection(Path(match).parts) and (self.cwd / match).is_file()
        ]
        if not matches:
            return ToolResult(tool="glob", result="No files found.", success=True)

        matches.sort()
        result = "\n".join(matches[:GLOB_MAX_FILES])
        if len(matches) > GLOB_MAX_FILES:
            result += f"\n...(+{len(matches) - GLOB_MAX_FILES} more)"
        return ToolResult(tool="glob", result=result, success=True)

    def ls(self, args: dict[str, Any]) -> ToolResult:
        path = (self._require(args, "path") or ".").strip()
        target = self._resolve(path)
        if not target.exists():
            return self._fail(ToolName.LS, f"Directory not found: {path}")
        if not target.is_dir():
            return self._fail(ToolName.LS, f"Not a directory: {path}")

        entries = []
        for child in sorted(target.iterdir(), key=lambda p: p.name):
            try:
                if child.is_dir():
                    entries.append(f"  {child.name}/")
                else:
                    entries.append(f"  {child.name} ({format_size(child.stat().st_size)})")
            except OSError:
                entries.append(f"  {child.name}")
        return ToolResult(tool="ls", result="\n".join(entries) or "(empty)", success=True)

    def git(self, args: dict[str, Any]) -> ToolResult:
        try:
            branch = self._git("branch", "--show-current").strip()
            status = self._git("status", "--short")
            log = self._git("log", "--oneline", "-5")
        except subprocess.CalledProcessError as e:
            return self._fail(ToolName.GIT, f"Git error: {(e.stderr or '').strip() or e}")
        except subprocess.TimeoutExpired:
            return self._fail(ToolName.GIT, f"Git timed out after {self.git_timeout}s")
        return ToolResult(
            tool="git",
            result=truncate(f"Branch: {branch}\n{status}---\n{log}", self.max_output_chars),
            success=True,
        )

    def _git(self, *git_args: str) -> str:
        completed = subprocess.run(
            ["git", *git_args],
            cwd=self.cwd,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=self.git_timeout,
            check=True,
        )
        return completed.stdout


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
