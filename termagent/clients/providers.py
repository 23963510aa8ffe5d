"""
Provider registry.

Maps provider names to their wire family, default endpoint and credential
environment variable, and guesses a provider from a bare model id.
"""

from __future__ import annotations

import logging
import os

from termagent.chat.models import ProviderFamily

logger = logging.getLogger(__name__)


class ProviderInfo:
    """Static facts about one provider."""

    def __init__(self, name: str, family: ProviderFamily, base_url: str, env_key: str | None) -> None:
        self.name = name
        self.family: ProviderFamily = family
        self.base_url = base_url
        self.env_key = env_key

    def __repr__(self) -> str:
        return f"ProviderInfo({self.name!r}, family={self.family!r})"


PROVIDERS: dict[str, ProviderInfo] = {
    "openai": ProviderInfo("openai", "openai", "https://api.openai.com/v1", "OPENAI_API_KEY"),
    "deepseek": ProviderInfo("deepseek", "openai", "https://api.deepseek.com/v1", "DEEPSEEK_API_KEY"),
    "groq": ProviderInfo("groq", "openai", "https://api.groq.com/openai/v1", "GROQ_API_KEY"),
    "openrouter": ProviderInfo("openrouter", "openai", "https://openrouter.ai/api/v1", "OPENROUTER_API_KEY"),
    "ollama": ProviderInfo("ollama", "openai", "http://localhost:11434/v1", None),
    "anthropic": ProviderInfo("anthropic", "anthropic", "https://api.anthropic.com", "ANTHROPIC_API_KEY"),
    "google": ProviderInfo("google", "gemini", "https://generativelanguage.googleapis.com", "GOOGLE_API_KEY"),
}

_OLLAMA_PREFIXES = (
    "llama",
    "codellama",
    "mistral",
    "phi",
    "qwen",
    "gemma",
    "starcoder",
    "tinyllama",
    "vicuna",
    "wizardcoder",
    "orca",
    "neural",
    "nomic",
    "deepseek-coder",
)


def get_provider_info(name: str) -> ProviderInfo:
    """Look up a provider, falling back to the OpenAI dialect for unknown names."""
    info = PROVIDERS.get(name)
    if info is None:
        logger.warning("Unknown provider '%s', treating it as OpenAI-compatible", name)
        return ProviderInfo(name, "openai", PROVIDERS["openai"].base_url, "OPENAI_API_KEY")
    return info


def detect_provider(model: str) -> str:
    """Guess the provider from a model id."""
    m = model.lower()
    if "/" in m:
        return "openrouter"
    if m.startswith(("gpt-", "o1", "o3", "o4")):
        return "openai"
    if m.startswith("claude-"):
        return "anthropic"
    if m.startswith("gemini-"):
        return "google"
    if m.startswith(_OLLAMA_PREFIXES):
        return "ollama"
    if m.startswith("deepseek-"):
        return "deepseek"
    if m.startswith(("mixtral", "groq/")):
        return "groq"
    return "openai"


def resolve_api_key(provider: str, configured_key: str | None = None) -> str:
    """Resolve a credential from explicit configuration or the provider's env var."""
    info = get_provider_info(provider)
    if info.env_key is None:
        # Local servers accept any bearer value
        return configured_key or provider
    if configured_key:
        return configured_key
    return os.getenv(info.env_key, "")
