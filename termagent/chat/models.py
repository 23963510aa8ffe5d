"""
Agent Data Models

Data structures shared by the wire adapters, the streaming client, the tool
dispatcher and the orchestration loop. All strongly typed with Pydantic.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# ==============================================================================
# CONVERSATION MESSAGES
# ==============================================================================


class Message(BaseModel):
    """Single conversation turn."""

    role: Literal["system", "user", "assistant"]
    content: str

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str) -> Message:
        return cls(role="assistant", content=content)


# ==============================================================================
# NORMALIZED STREAM TOKENS
# ==============================================================================


class ToolCallData(BaseModel):
    """A fully assembled native tool call."""

    id: str
    name: str
    arguments: str = Field(default="{}")  # raw JSON text

    @staticmethod
    def generate_id(prefix: str = "call") -> str:
        return f"{prefix}_{uuid.uuid4().hex[:24]}"


class TokenUsage(BaseModel):
    """Token accounting for one turn."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    cache_read_tokens: int | None = None
    cache_write_tokens: int | None = None

    def merge(self, other: TokenUsage) -> TokenUsage:
        """Return a copy where every field set on ``other`` wins."""
        update = other.model_dump(exclude_none=True)
        merged = self.model_copy(update=update)
        if merged.total_tokens is None and (
            merged.prompt_tokens is not None and merged.completion_tokens is not None
        ):
            merged.total_tokens = merged.prompt_tokens + merged.completion_tokens
        return merged

    def add(self, other: TokenUsage) -> TokenUsage:
        """Sum two turns' usage; a field stays None only when neither side has it."""
        summed: dict[str, int] = {}
        for field in type(self).model_fields:
            mine, theirs = getattr(self, field), getattr(other, field)
            if mine is not None or theirs is not None:
                summed[field] = (mine or 0) + (theirs or 0)
        return TokenUsage(**summed)

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class ContentToken(BaseModel):
    type: Literal["content"] = "content"
    text: str


class ReasoningToken(BaseModel):
    type: Literal["reasoning"] = "reasoning"
    text: str


class ToolCallToken(BaseModel):
    type: Literal["tool_call"] = "tool_call"
    call: ToolCallData


class UsageToken(BaseModel):
    type: Literal["usage"] = "usage"
    usage: TokenUsage


StreamToken = Annotated[
    ContentToken | ReasoningToken | ToolCallToken | UsageToken,
    Field(discriminator="type"),
]


# ==============================================================================
# PROVIDER SETTINGS
# ==============================================================================


ProviderFamily = Literal["openai", "anthropic", "gemini"]


class LLMSettings(BaseModel):
    """Resolved configuration for one streaming request."""

    provider: str
    family: ProviderFamily
    model: str
    base_url: str
    api_key: str = ""
    max_tokens: int = 4096
    temperature: float = 0.2
    tools_enabled: bool = True
    timeout: float = 120.0

    # Provider-specific settings
    model_config = {"extra": "allow"}


# ==============================================================================
# TOOLS
# ==============================================================================


class ToolName(str, Enum):
    """Closed tool vocabulary; anything else maps to UNKNOWN."""

    READ = "read"
    WRITE = "write"
    EDIT = "edit"
    DELETE = "delete"
    BASH = "bash"
    GREP = "grep"
    GLOB = "glob"
    LS = "ls"
    GIT = "git"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, name: str) -> ToolName:
        try:
            tool = cls(name.strip().lower())
        except ValueError:
            return cls.UNKNOWN
        return tool

    @classmethod
    def known(cls) -> list[ToolName]:
        return [t for t in cls if t is not cls.UNKNOWN]


class ToolFunctionParameters(BaseModel):
    """JSON schema of a native tool's arguments."""

    type: Literal["object"] = "object"
    properties: dict[str, Any] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)
    additionalProperties: bool = False


class ToolFunctionDefinition(BaseModel):
    """Provider-neutral native tool definition; adapters render it per family."""

    name: str
    description: str
    parameters: ToolFunctionParameters


class InvocationOrigin(str, Enum):
    TAGGED = "tagged"
    NATIVE = "native"
    FENCED_SHELL = "fenced_shell"
    FENCED_PYTHON = "fenced_python"


class ToolInvocation(BaseModel):
    """A concrete request to run one tool."""

    tool: ToolName
    raw_name: str
    args: dict[str, Any] = Field(default_factory=dict)
    origin: InvocationOrigin = InvocationOrigin.TAGGED
    call_id: str | None = None
    parse_error: str | None = None  # argument grammar mismatch

    @property
    def display_name(self) -> str:
        if self.tool is ToolName.UNKNOWN or self.origin in (
            InvocationOrigin.FENCED_SHELL,
            InvocationOrigin.FENCED_PYTHON,
        ):
            return self.raw_name
        return self.tool.value

    @property
    def primary_argument(self) -> str:
        """Argument that identifies what the call acts on (used for loop detection)."""
        args = self.args
        if self.tool in (ToolName.READ, ToolName.WRITE, ToolName.EDIT, ToolName.DELETE, ToolName.LS):
            return str(args.get("path", ""))
        if self.tool is ToolName.BASH:
            return str(args.get("command") or args.get("script") or "")
        if self.tool in (ToolName.GREP, ToolName.GLOB):
            return str(args.get("pattern", ""))
        if self.tool is ToolName.UNKNOWN:
            return str(args.get("raw", ""))
        return ""


class FileDiff(BaseModel):
    model_config = ConfigDict(frozen=True)

    file_path: str
    old_content: str
    new_content: str


class ToolResult(BaseModel):
    """Outcome of one executed (or denied) tool invocation."""

    model_config = ConfigDict(frozen=True)

    tool: str
    result: str
    success: bool
    diff: FileDiff | None = None
    file_path: str | None = None
    command: str | None = None
    lines_changed: int | None = None
    denied: bool = False


class ToolStats(BaseModel):
    """Per-process tool counters."""

    calls: int = 0
    failures: int = 0
    denials: int = 0
    files_read: int = 0
    files_written: int = 0
    files_edited: int = 0
    files_deleted: int = 0
    shell_commands: int = 0

    def record(self, result: ToolResult) -> None:
        self.calls += 1
        if result.denied:
            self.denials += 1
            return
        if not result.success:
            self.failures += 1
            return
        counter = _STAT_FIELDS.get(result.tool)
        if counter:
            setattr(self, counter, getattr(self, counter) + 1)


_STAT_FIELDS = {
    "read": "files_read",
    "write": "files_written",
    "edit": "files_edited",
    "delete": "files_deleted",
    "bash": "shell_commands",
}


# ==============================================================================
# UNDO LEDGER
# ==============================================================================


class Change(BaseModel):
    """Reversible file mutation captured before it happened."""

    model_config = ConfigDict(frozen=True)

    type: Literal["write", "edit", "delete"]
    file_path: str
    previous_content: str | None
    new_content: str | None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    description: str = ""


class UndoOutcome(BaseModel):
    success: bool
    message: str


# ==============================================================================
# PERMISSIONS
# ==============================================================================


class PermissionMode(str, Enum):
    AUTO = "auto"
    ASK = "ask"
    STRICT = "strict"
    BYPASS = "bypass"
    ACCEPT_EDITS = "acceptEdits"
    PLAN = "plan"
    DONT_ASK = "dontAsk"
    DELEGATE = "delegate"


class ToolRiskClass(str, Enum):
    SAFE = "safe"
    MODERATE = "moderate"
    DANGEROUS = "dangerous"


class PermissionDecision(str, Enum):
    ALLOW = "allow"
    ASK = "ask"
    DENY = "deny"


# ==============================================================================
# ORCHESTRATION
# ==============================================================================


class StopReason(str, Enum):
    COMPLETED = "completed"
    MAX_TURNS = "max_turns"
    REPEATED_TOOL_CALLS = "repeated_tool_calls"
    CONSECUTIVE_FAILURES = "consecutive_failures"
    CANCELLED = "cancelled"


class ChatMessage(BaseModel):
    """
    Event yielded by the orchestration loop to a UI.
    Different from Message which is a conversation turn sent to the LLM.
    """

    type: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class LoopResult(BaseModel):
    """Final state of one orchestration run."""

    stop_reason: StopReason
    final_text: str
    reasoning: str = ""
    turns: int = 0
    messages: list[Message] = Field(default_factory=list)
    tool_results: list[ToolResult] = Field(default_factory=list)
    usage: TokenUsage = Field(default_factory=TokenUsage)
