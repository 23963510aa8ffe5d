"""Wire adapters, one per provider family."""

from __future__ import annotations

from .anthropic_sse import AnthropicAdapter
from .base import StreamDecoder, WireAdapter, WireRequest
from .gemini_sse import GeminiAdapter
from .openai_compat import OpenAICompatibleAdapter

ADAPTERS: dict[str, type[WireAdapter]] = {
    "openai": OpenAICompatibleAdapter,
    "anthropic": AnthropicAdapter,
    "gemini": GeminiAdapter,
}


def get_adapter(family: str) -> WireAdapter:
    """Instantiate the adapter for a provider family."""
    try:
        return ADAPTERS[family]()
    except KeyError:
        raise ValueError(f"No wire adapter for provider family '{family}'") from None


__all__ = [
    "ADAPTERS",
    "AnthropicAdapter",
    "GeminiAdapter",
    "OpenAICompatibleAdapter",
    "StreamDecoder",
    "WireAdapter",
    "WireRequest",
    "get_adapter",
]
