"""Clients package containing the streaming LLM client and wire adapters."""

from __future__ import annotations

from .llm_client import LLMClient
from .providers import PROVIDERS, detect_provider, get_provider_info

__all__ = ["PROVIDERS", "LLMClient", "detect_provider", "get_provider_info"]
