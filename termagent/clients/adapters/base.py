"""
Wire adapter contract.

An adapter owns exactly one provider's request shape and event grammar. The
streaming client asks it for a request description, then feeds every decoded
``data:`` event into a fresh per-request decoder that emits normalized tokens.
"""

from __future__ import annotations

import abc
from typing import Any

from pydantic import BaseModel, Field

from termagent.chat.models import LLMSettings, Message, StreamToken, ToolFunctionDefinition


class WireRequest(BaseModel):
    """Everything needed to issue one streaming POST."""

    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    params: dict[str, str] = Field(default_factory=dict)
    body: dict[str, Any] = Field(default_factory=dict)


class StreamDecoder(abc.ABC):
    """Stateful translator for one response stream."""

    def __init__(self) -> None:
        self.done = False  # provider signaled end of stream

    @abc.abstractmethod
    def feed(self, event: dict[str, Any]) -> list[StreamToken]:
        """Translate one decoded event into zero or more tokens."""

    @abc.abstractmethod
    def close(self) -> list[StreamToken]:
        """Flush anything still buffered when the stream ends."""


class WireAdapter(abc.ABC):
    """Request builder and decoder factory for one provider family."""

    family: str = ""

    @abc.abstractmethod
    def build_request(
        self,
        messages: list[Message],
        settings: LLMSettings,
        tools: list[ToolFunctionDefinition] | None = None,
    ) -> WireRequest:
        """Describe the HTTP request, auth included."""

    @abc.abstractmethod
    def create_decoder(self) -> StreamDecoder:
        """Return a decoder with fresh state for one response."""
