"""
Gemini ``streamGenerateContent`` SSE adapter.

Every chunk carries candidate parts that are either text (``thought: true``
marks reasoning) or a complete ``functionCall``; no accumulation is needed,
but the wire format has no call ids, so one is generated locally. Usage
metadata is a running snapshot and the latest one wins.
"""

from __future__ import annotations

import json
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


class GeminiStreamDecoder(StreamDecoder):
    """Decoder for ``alt=sse`` GenerateContentResponse chunks."""

    def __init__(self) -> None:
        super().__init__()
        self._usage: TokenUsage | None = None

    def feed(self, event: dict[str, Any]) -> list[StreamToken]:
        tokens: list[StreamToken] = []

        candidates = event.get("candidates") or []
        if candidates:
            content = candidates[0].get("content") or {}
            for part in content.get("parts") or []:
                token = self._part_to_token(part)
                if token:
                    tokens.append(token)

        usage = event.get("usageMetadata")
        if isinstance(usage, dict):
            self._usage = TokenUsage(
                prompt_tokens=usage.get("promptTokenCount"),
                completion_tokens=usage.get("candidatesTokenCount"),
                total_tokens=usage.get("totalTokenCount"),
                cache_read_tokens=usage.get("cachedContentTokenCount"),
            )

        return tokens

    def close(self) -> list[StreamToken]:
        if self._usage is None or self._usage.is_empty():
            return []
        usage, self._usage = self._usage, None
        return [UsageToken(usage=usage)]

    def _part_to_token(self, part: dict[str, Any]) -> StreamToken | None:
        function_call = part.get("functionCall")
        if isinstance(function_call, dict):
            name = function_call.get("name")
            if not name:
                logger.warning("Dropping functionCall part without a name")
                return None
            return ToolCallToken(
                call=ToolCallData(
                    id=function_call.get("id") or ToolCallData.generate_id("gemini"),
                    name=name,
                    arguments=json.dumps(function_call.get("args") or {}),
                )
            )

        text = part.get("text")
        if isinstance(text, str) and text:
            if part.get("thought"):
                return ReasoningToken(text=text)
            return ContentToken(text=text)
        return None


class GeminiAdapter(WireAdapter):
    """Gemini request builder; the credential travels as the ``key`` query parameter."""

    family = "gemini"

    def build_request(
        self,
        messages: list[Message],
        settings: LLMSettings,
        tools: list[ToolFunctionDefinition] | None = None,
    ) -> WireRequest:
        system_parts = [m.content for m in messages if m.role == "system"]
        contents = [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            }
            for m in messages
            if m.role != "system"
        ]

        body: dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "maxOutputTokens": settings.max_tokens,
                "temperature": settings.temperature,
            },
        }
        if system_parts:
            body["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}
        if tools and settings.tools_enabled:
            body["tools"] = [
                {
                    "functionDeclarations": [
                        {
                            "name": tool.name,
                            "description": tool.description,
                            "parameters": tool.parameters.model_dump(exclude={"additionalProperties"}),
                        }
                        for tool in tools
                    ]
                }
            ]

        return WireRequest(
            url=f"{settings.base_url.rstrip('/')}/v1beta/models/{settings.model}:streamGenerateContent",
            headers={"Content-Type": "application/json", "Accept": "text/event-stream"},
            params={"key": settings.api_key, "alt": "sse"},
            body=body,
        )

    def create_decoder(self) -> GeminiStreamDecoder:
        return GeminiStreamDecoder()
