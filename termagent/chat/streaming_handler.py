"""
Agent Loop

Drives one multi-turn tool-use run:
- Streams a turn from the LLM and surfaces text/reasoning as it arrives
- Extracts the turn's tool invocations and dispatches them
- Feeds one synthesized feedback message back and streams the next turn
- Stops on a final answer, the turn limit, a repeated round, a run of
  all-failing rounds, or cancellation

Stop conditions are reported as a ``StopReason`` on the final ``done`` event,
never raised. Transport errors propagate to the caller unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import aclosing
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from .cancellation import CancellationToken
from .logging_utils import log_directional_flow, log_llm_reply
from .models import (
    ChatMessage,
    ContentToken,
    LLMSettings,
    LoopResult,
    Message,
    ReasoningToken,
    StopReason,
    TokenUsage,
    ToolCallData,
    ToolCallToken,
    ToolFunctionDefinition,
    ToolInvocation,
    ToolName,
    ToolResult,
    UsageToken,
)
from .tool_parser import extract_invocations

if TYPE_CHECKING:
    from termagent.clients import LLMClient

    from .tool_executor import ToolDispatcher

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 10
DEFAULT_MAX_CONSECUTIVE_FAILURES = 4

STOP_NOTICES: dict[StopReason, str] = {
    StopReason.COMPLETED: "",
    StopReason.MAX_TURNS: "Reached the maximum number of turns for this request.",
    StopReason.REPEATED_TOOL_CALLS: "Stopped: the assistant repeated the same tool calls.",
    StopReason.CONSECUTIVE_FAILURES: "Stopped after repeated failing tool rounds.",
    StopReason.CANCELLED: "Cancelled.",
}


def tool_signature(invocations: list[ToolInvocation]) -> str:
    """Order-preserving identity of a round: tool name plus primary argument per call."""
    return "\n".join(f"{inv.display_name}:{inv.primary_argument}" for inv in invocations)


def build_feedback(invocations: list[ToolInvocation], results: list[ToolResult]) -> str:
    """Single user message reporting every call of a round back to the model."""
    sections: list[str] = []
    any_unknown = any_denied = any_failed = False

    for invocation, result in zip(invocations, results, strict=False):
        if result.denied:
            status = "DENIED"
            any_denied = True
        elif result.success:
            status = "SUCCESS"
        else:
            status = "FAILED"
            any_failed = True
        if invocation.tool is ToolName.UNKNOWN:
            any_unknown = True
        sections.append(f"[Tool: {invocation.display_name}] {status}: {result.result}")

    notes: list[str] = []
    if any_unknown:
        available = ", ".join(t.value for t in ToolName.known())
        notes.append(f"Unknown tool requested. The only available tools are: {available}. Use <tool:NAME>ARGS</tool>.")
    if any_denied:
        notes.append("Denied calls were blocked by the user's permission settings. Do not retry them.")
    if any_failed:
        notes.append("Fix the arguments of failed calls before retrying; do not repeat an identical failing call.")
    notes.append("Continue the task. Do not call tools again unless they are necessary to finish it; otherwise give your final answer.")

    return "Tool results:\n" + "\n\n".join(sections) + "\n\n" + "\n".join(notes)


class LoopState(BaseModel):
    """Mutable progress of one run, turned into a ``LoopResult`` at the end."""

    messages: list[Message]
    turns: int = 0
    final_text: str = ""
    reasoning: str = ""
    tool_results: list[ToolResult] = Field(default_factory=list)
    usage: TokenUsage = Field(default_factory=TokenUsage)
    stop_reason: StopReason | None = None

    def to_result(self) -> LoopResult:
        return LoopResult(
            stop_reason=self.stop_reason or StopReason.COMPLETED,
            final_text=self.final_text,
            reasoning=self.reasoning,
            turns=self.turns,
            messages=list(self.messages),
            tool_results=list(self.tool_results),
            usage=self.usage,
        )


class AgentLoop:
    """Streaming → dispatching state machine for one conversation."""

    def __init__(
        self,
        llm_client: LLMClient,
        dispatcher: ToolDispatcher,
        settings: LLMSettings,
        tool_definitions: list[ToolFunctionDefinition] | None = None,
        max_turns: int = DEFAULT_MAX_TURNS,
        max_consecutive_failures: int = DEFAULT_MAX_CONSECUTIVE_FAILURES,
        allow_fenced: bool = True,
    ):
        if max_turns <= 0 or max_consecutive_failures <= 0:
            raise ValueError("max_turns and max_consecutive_failures must be positive")
        self.llm_client = llm_client
        self.dispatcher = dispatcher
        self.settings = settings
        self.tool_definitions = tool_definitions
        self.max_turns = max_turns
        self.max_consecutive_failures = max_consecutive_failures
        self.allow_fenced = allow_fenced
        self.last_result: LoopResult | None = None

    async def run(
        self,
        messages: list[Message],
        cancel: CancellationToken | None = None,
    ) -> AsyncGenerator[ChatMessage]:
        """Run the loop, yielding UI events and one final ``done`` event."""
        state = LoopState(messages=list(messages))
        async for event in self._run(state, cancel or CancellationToken()):
            yield event

    async def run_to_completion(
        self,
        messages: list[Message],
        cancel: CancellationToken | None = None,
    ) -> LoopResult:
        state = LoopState(messages=list(messages))
        async for _ in self._run(state, cancel or CancellationToken()):
            pass
        return state.to_result()

    async def _run(self, state: LoopState, cancel: CancellationToken) -> AsyncGenerator[ChatMessage]:
        previous_signature: str | None = None
        failing_rounds = 0

        while state.stop_reason is None:
            if cancel.cancelled:
                state.stop_reason = StopReason.CANCELLED
                break
            if state.turns >= self.max_turns:
                logger.warning("Maximum turns (%d) reached, stopping", self.max_turns)
                state.stop_reason = StopReason.MAX_TURNS
                break

            state.turns += 1
            text_parts: list[str] = []
            native_calls: list[ToolCallData] = []

            log_directional_flow("→", "LLM", "streaming turn %d", state.turns)
            async for event in self._stream_turn(state, cancel, text_parts, native_calls):
                yield event

            turn_text = "".join(text_parts)
            state.final_text = turn_text
            if cancel.cancelled:
                # partial turn was surfaced but is not added to the conversation
                state.stop_reason = StopReason.CANCELLED
                break
            log_directional_flow("←", "LLM", "turn %d complete, %d chars", state.turns, len(turn_text))

            parsed = extract_invocations(turn_text, native_calls, allow_fenced=self.allow_fenced)
            state.final_text = parsed.clean_text
            log_llm_reply(turn_text, "", [c.name for c in native_calls], f"turn {state.turns}")
            assistant_content = turn_text.strip() and turn_text
            if not assistant_content and parsed.invocations:
                # native-only turn; keep the calls visible in the transcript
                assistant_content = "\n".join(
                    f"[called {inv.display_name}: {inv.primary_argument}]" for inv in parsed.invocations
                )
            if assistant_content:
                state.messages.append(Message.assistant(assistant_content))

            if not parsed.invocations:
                state.stop_reason = StopReason.COMPLETED
                break

            signature = tool_signature(parsed.invocations)
            if signature == previous_signature:
                logger.warning("Repeated tool call round detected, stopping: %s", signature.replace("\n", " | "))
                state.stop_reason = StopReason.REPEATED_TOOL_CALLS
                break
            previous_signature = signature

            for invocation in parsed.invocations:
                yield ChatMessage(
                    type="tool_execution",
                    content=invocation.display_name,
                    metadata={
                        "turn": state.turns,
                        "tool": invocation.display_name,
                        "argument": invocation.primary_argument,
                        "origin": invocation.origin.value,
                    },
                )

            results = await self.dispatcher.execute(parsed.invocations, cancel)
            state.tool_results.extend(results)
            for result in results:
                yield ChatMessage(
                    type="tool_result",
                    content=result.result,
                    metadata={
                        "turn": state.turns,
                        "tool": result.tool,
                        "success": result.success,
                        "denied": result.denied,
                        "file_path": result.file_path,
                        "command": result.command,
                    },
                )

            if results:
                if all(not r.success for r in results):
                    failing_rounds += 1
                elif all(r.success for r in results):
                    failing_rounds = 0
            if failing_rounds >= self.max_consecutive_failures:
                logger.warning("%d consecutive failing tool rounds, stopping", failing_rounds)
                state.stop_reason = StopReason.CONSECUTIVE_FAILURES
                break

            state.messages.append(Message.user(build_feedback(parsed.invocations, results)))

        stop_reason = state.stop_reason or StopReason.COMPLETED
        self.last_result = state.to_result()
        log_directional_flow("←", "Loop", "stopped after %d turns: %s", state.turns, stop_reason.value)
        yield ChatMessage(
            type="done",
            content=state.final_text,
            metadata={
                "stop_reason": stop_reason.value,
                "turns": state.turns,
                "notice": STOP_NOTICES[stop_reason],
                "usage": state.usage.model_dump(exclude_none=True),
            },
        )

    async def _stream_turn(
        self,
        state: LoopState,
        cancel: CancellationToken,
        text_parts: list[str],
        native_calls: list[ToolCallData],
    ) -> AsyncGenerator[ChatMessage]:
        tools = self.tool_definitions if self.settings.tools_enabled else None
        stream = self.llm_client.stream_chat(state.messages, self.settings, cancel, tools)

        async with aclosing(stream):
            async for token in stream:
                if cancel.cancelled:
                    break
                if isinstance(token, ContentToken):
                    text_parts.append(token.text)
                    yield ChatMessage(type="text", content=token.text, metadata={"turn": state.turns})
                elif isinstance(token, ReasoningToken):
                    state.reasoning += token.text
                    yield ChatMessage(type="reasoning", content=token.text, metadata={"turn": state.turns})
                elif isinstance(token, ToolCallToken):
                    native_calls.append(token.call)
                elif isinstance(token, UsageToken):
                    state.usage = state.usage.add(token.usage)
                    yield ChatMessage(
                        type="usage",
                        content="",
                        metadata={"turn": state.turns, **token.usage.model_dump(exclude_none=True)},
                    )
