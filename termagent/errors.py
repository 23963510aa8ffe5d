"""Exception types raised by the agent core."""

from __future__ import annotations


class TermagentError(Exception):
    """Base class for agent errors."""


class ConfigurationError(TermagentError, ValueError):
    """Invalid configuration value or missing credential."""


class LLMTransportError(TermagentError):
    """Streaming request failed: non-success status, network error or provider error event."""

    def __init__(self, message: str, status_code: int | None = None, provider: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.provider = provider

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"[{self.status_code}] {self.message}"
        return self.message
