"""
Anthropic Messages SSE adapter.

The Messages API separates block lifecycle events from deltas, so tool calls
are reassembled per content block index: the block start carries id and name,
``input_json_delta`` events carry argument fragments, and the block stop
flushes the finished call. Usage is split between ``message_start`` and
``message_delta`` and is merged field by field.
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
from termagent.errors import LLMTransportError

from .base import StreamDecoder, WireAdapter, WireRequest

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicStreamDecoder(StreamDecoder):
    """Decoder for Messages API stream events."""

    def __init__(self) -> None:
        super().__init__()
        self._blocks: dict[int, dict[str, Any]] = {}
        self._usage = TokenUsage()
        self._usage_emitted = False

    def feed(self, event: dict[str, Any]) -> list[StreamToken]:
        event_type = event.get("type")
        tokens: list[StreamToken] = []

        if event_type == "message_start":
            usage = (event.get("message") or {}).get("usage")
            if isinstance(usage, dict):
                self._merge_usage(usage)

        elif event_type == "content_block_start":
            block = event.get("content_block") or {}
            if block.get("type") == "tool_use":
                self._blocks[event.get("index", 0)] = {
                    "id": block.get("id"),
                    "name": block.get("name"),
                    "arguments": "",
                }

        elif event_type == "content_block_delta":
            tokens.extend(self._handle_delta(event.get("index", 0), event.get("delta") or {}))

        elif event_type == "content_block_stop":
            call = self._blocks.pop(event.get("index", 0), None)
            if call is not None:
                token = self._finish_call(call)
                if token:
                    tokens.append(token)

        elif event_type == "message_delta":
            usage = event.get("usage")
            if isinstance(usage, dict):
                self._merge_usage(usage)

        elif event_type == "message_stop":
            tokens.extend(self._flush())
            self.done = True

        elif event_type == "error":
            error = event.get("error") or {}
            raise LLMTransportError(
                f"{error.get('type', 'error')}: {error.get('message', 'unknown provider error')}",
                provider="anthropic",
            )

        return tokens

    def close(self) -> list[StreamToken]:
        return self._flush()

    def _handle_delta(self, index: int, delta: dict[str, Any]) -> list[StreamToken]:
        delta_type = delta.get("type")
        if delta_type == "text_delta" and delta.get("text"):
            return [ContentToken(text=delta["text"])]
        if delta_type == "thinking_delta" and delta.get("thinking"):
            return [ReasoningToken(text=delta["thinking"])]
        if delta_type == "input_json_delta":
            call = self._blocks.get(index)
            if call is None:
                logger.warning("Argument fragment for unknown content block %d ignored", index)
            else:
                call["arguments"] += delta.get("partial_json", "")
        # signature_delta carries no user-visible text
        return []

    def _finish_call(self, call: dict[str, Any]) -> ToolCallToken | None:
        if not call.get("name"):
            logger.warning("Dropping tool_use block without a name")
            return None
        return ToolCallToken(
            call=ToolCallData(
                id=call.get("id") or ToolCallData.generate_id("toolu"),
                name=call["name"],
                arguments=call["arguments"] or "{}",
            )
        )

    def _merge_usage(self, usage: dict[str, Any]) -> None:
        self._usage = self._usage.merge(
            TokenUsage(
                prompt_tokens=usage.get("input_tokens"),
                completion_tokens=usage.get("output_tokens"),
                cache_read_tokens=usage.get("cache_read_input_tokens"),
                cache_write_tokens=usage.get("cache_creation_input_tokens"),
            )
        )

    def _flush(self) -> list[StreamToken]:
        tokens: list[StreamToken] = []
        # Blocks that never saw their stop event
        for index in sorted(self._blocks):
            token = self._finish_call(self._blocks[index])
            if token:
                tokens.append(token)
        self._blocks.clear()

        if not self._usage_emitted and not self._usage.is_empty():
            usage = self._usage
            if usage.prompt_tokens is not None and usage.completion_tokens is not None:
                usage = usage.model_copy(update={"total_tokens": usage.prompt_tokens + usage.completion_tokens})
            tokens.append(UsageToken(usage=usage))
            self._usage_emitted = True
        return tokens


class AnthropicAdapter(WireAdapter):
    """Messages API request builder with ``x-api-key`` authentication."""

    family = "anthropic"

    def build_request(
        self,
        messages: list[Message],
        settings: LLMSettings,
        tools: list[ToolFunctionDefinition] | None = None,
    ) -> WireRequest:
        system_parts = [m.content for m in messages if m.role == "system"]
        chat_messages = [{"role": m.role, "content": m.content} for m in messages if m.role != "system"]

        body: dict[str, Any] = {
            "model": settings.model,
            "messages": chat_messages,
            "max_tokens": settings.max_tokens,
            "stream": True,
        }
        if system_parts:
            body["system"] = "\n\n".join(system_parts)
        # Extended-thinking models reject an explicit temperature of zero
        if settings.temperature > 0:
            body["temperature"] = settings.temperature
        if tools and settings.tools_enabled:
            body["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": tool.parameters.model_dump(),
                }
                for tool in tools
            ]

        return WireRequest(
            url=f"{settings.base_url.rstrip('/')}/v1/messages",
            headers={
                "x-api-key": settings.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "Content-Type": "application/json",
                "Accept": "text/event-stream",
            },
            body=body,
        )

    def create_decoder(self) -> AnthropicStreamDecoder:
        return AnthropicStreamDecoder()
