"""
OpenAI-compatible SSE adapter.

Covers every backend speaking the chat-completions dialect (OpenAI, DeepSeek,
Groq, OpenRouter, Ollama). Handles three delicate parts of that dialect:
- reasoning delivered in a dedicated delta field
- reasoning delivered inline between <think> sentinels inside content
- tool calls streamed as per-index fragments that must be reassembled
"""

from __future__ import annotations

import logging
from typing import Any

from termagent.chat.models import (
    ContentToken,
    LLMSettings,
    Message,
    ReasoningToken,
    StreamToken,
    TokenUsage,
    ToolCallData,
    ToolCallToken,
    ToolFunctionDefinition,
    UsageToken,
)

from .base import StreamDecoder, WireAdapter, WireRequest

logger = logging.getLogger(__name__)

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"

REASONING_FIELDS = ("reasoning_content", "reasoning")

# Settings that describe the connection rather than the generation request
_EXCLUDED_PAYLOAD_KEYS = {
    "provider",
    "family",
    "base_url",
    "api_key",
    "timeout",
    "tools_enabled",
    "model",
    "max_tokens",
    "temperature",
}


def _partial_suffix(text: str, marker: str) -> int:
    """Length of the longest suffix of ``text`` that is a proper prefix of ``marker``."""
    for size in range(min(len(text), len(marker) - 1), 0, -1):
        if text.endswith(marker[:size]):
            return size
    return 0


class ThinkTagSplitter:
    """
    Two-state machine (outside span / inside span) that reclassifies content
    between <think> and </think> as reasoning.

    Sentinels may be split across chunks, so any trailing text that could be
    the start of the next sentinel is held back until the following chunk.
    """

    def __init__(self) -> None:
        self.inside = False
        self._pending = ""
        self._strip_leading = False

    def push(self, text: str) -> list[StreamToken]:
        buf = self._pending + text
        self._pending = ""
        out: list[StreamToken] = []

        while buf:
            marker = THINK_CLOSE if self.inside else THINK_OPEN
            idx = buf.find(marker)
            if idx >= 0:
                self._emit(out, buf[:idx])
                buf = buf[idx + len(marker) :]
                self.inside = not self.inside
                # A closing sentinel is usually followed by blank lines
                self._strip_leading = not self.inside
                continue

            keep = _partial_suffix(buf, marker)
            self._emit(out, buf[: len(buf) - keep])
            self._pending = buf[len(buf) - keep :]
            break

        return out

    def flush(self) -> list[StreamToken]:
        out: list[StreamToken] = []
        if self._pending:
            self._emit(out, self._pending)
            self._pending = ""
        return out

    def _emit(self, out: list[StreamToken], text: str) -> None:
        if self._strip_leading:
            text = text.lstrip()
            if not text:
                return
            self._strip_leading = False
        if not text:
            return
        if self.inside:
            out.append(ReasoningToken(text=text))
        else:
            out.append(ContentToken(text=text))


class OpenAIStreamDecoder(StreamDecoder):
    """Decoder for chat-completions ``data:`` chunks."""

    def __init__(self) -> None:
        super().__init__()
        self._splitter = ThinkTagSplitter()
        self._tool_calls: dict[int, dict[str, Any]] = {}

    def feed(self, event: dict[str, Any]) -> list[StreamToken]:
        tokens: list[StreamToken] = []

        choices = event.get("choices") or []
        if choices:
            choice: dict[str, Any] = choices[0]
            delta: dict[str, Any] = choice.get("delta") or {}

            for field in REASONING_FIELDS:
                reasoning = delta.get(field)
                if isinstance(reasoning, str) and reasoning:
                    tokens.append(ReasoningToken(text=reasoning))
                    break

            content = delta.get("content")
            if isinstance(content, str) and content:
                tokens.extend(self._splitter.push(content))

            for tool_call_delta in delta.get("tool_calls") or []:
                self._accumulate_tool_call_delta(tool_call_delta)

            if choice.get("finish_reason"):
                tokens.extend(self._flush_tool_calls())

        usage = event.get("usage")
        if isinstance(usage, dict):
            tokens.append(UsageToken(usage=_parse_usage(usage)))

        return tokens

    def close(self) -> list[StreamToken]:
        tokens = self._splitter.flush()
        tokens.extend(self._flush_tool_calls())
        return tokens

    def _accumulate_tool_call_delta(self, delta: dict[str, Any]) -> None:
        """
        Accumulate one tool call fragment into its slot.

        Each fragment may carry any of id, name and a slice of the arguments
        text; slices are concatenated in arrival order per call index.
        """
        index = delta.get("index")
        if not isinstance(index, int):
            index = len(self._tool_calls)

        current = self._tool_calls.setdefault(index, {"id": None, "name": None, "arguments": ""})

        if delta.get("id"):
            current["id"] = delta["id"]

        function_delta = delta.get("function") or {}
        if function_delta.get("name"):
            current["name"] = function_delta["name"]
        if function_delta.get("arguments"):
            current["arguments"] += function_delta["arguments"]

    def _flush_tool_calls(self) -> list[StreamToken]:
        tokens: list[StreamToken] = []
        for index in sorted(self._tool_calls):
            call = self._tool_calls[index]
            if not call["name"]:
                logger.warning("Dropping incomplete tool call at index %d (no name)", index)
                continue
            tokens.append(
                ToolCallToken(
                    call=ToolCallData(
                        id=call["id"] or ToolCallData.generate_id(),
                        name=call["name"],
                        arguments=call["arguments"] or "{}",
                    )
                )
            )
        self._tool_calls.clear()
        return tokens


def _parse_usage(usage: dict[str, Any]) -> TokenUsage:
    details = usage.get("prompt_tokens_details") or {}
    return TokenUsage(
        prompt_tokens=usage.get("prompt_tokens"),
        completion_tokens=usage.get("completion_tokens"),
        total_tokens=usage.get("total_tokens"),
        cache_read_tokens=details.get("cached_tokens"),
    )


class OpenAICompatibleAdapter(WireAdapter):
    """Chat-completions request builder with bearer authentication."""

    family = "openai"

    def build_request(
        self,
        messages: list[Message],
        settings: LLMSettings,
        tools: list[ToolFunctionDefinition] | None = None,
    ) -> WireRequest:
        payload: dict[str, Any] = {
            "model": settings.model,
            "messages": [msg.model_dump() for msg in messages],
            "max_tokens": settings.max_tokens,
            "temperature": settings.temperature,
            "stream": True,
            "stream_options": {"include_usage": True},
        }

        # Pass through provider-specific extras (top_p, seed, ...) untouched
        for key, value in (settings.model_extra or {}).items():
            if key not in _EXCLUDED_PAYLOAD_KEYS and value is not None:
                payload[key] = value

        if tools and settings.tools_enabled:
            payload["tools"] = [{"type": "function", "function": tool.model_dump()} for tool in tools]

        return WireRequest(
            url=f"{settings.base_url.rstrip('/')}/chat/completions",
            headers={
                "Authorization": f"Bearer {settings.api_key}",
                "Content-Type": "application/json",
                "Accept": "text/event-stream",
            },
            body=payload,
        )

    def create_decoder(self) -> OpenAIStreamDecoder:
        return OpenAIStreamDecoder()
