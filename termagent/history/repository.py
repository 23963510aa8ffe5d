#!/usr/bin/env python3
"""
Session Repository Interface

Persistence contract used by the orchestrator to save and restore
conversations. Storage formats belong to implementations.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from termagent.chat.models import Message

from .models import SavedSession


@runtime_checkable
class SessionRepository(Protocol):
    """Protocol defining the interface for session storage backends."""

    async def save(self, name: str, messages: list[Message], model: str) -> str:
        """Store a snapshot and return its id."""
        ...

    async def load(self, session_id: str) -> list[Message] | None:
        """Messages of a saved session, or None when the id is unknown."""
        ...

    async def list_sessions(self) -> list[SavedSession]: ...
