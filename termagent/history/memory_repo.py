#!/usr/bin/env python3
"""
In-Memory Session Repository Implementation

Session-only storage: everything is lost when the process exits.
"""

from __future__ import annotations

import logging

from termagent.chat.models import Message

from .models import SavedSession
from .repository import SessionRepository

logger = logging.getLogger(__name__)


class InMemorySessionRepo(SessionRepository):
    """Keeps saved sessions in a dict keyed by session id."""

    def __init__(self) -> None:
        self._sessions: dict[str, SavedSession] = {}

    async def save(self, name: str, messages: list[Message], model: str) -> str:
        session = SavedSession(
            name=name,
            model=model,
            messages=[m.model_copy() for m in messages],
        )
        self._sessions[session.id] = session
        logger.info("→ Repository: saved session '%s' (%d messages) as %s", name, session.message_count, session.id)
        return session.id

    async def load(self, session_id: str) -> list[Message] | None:
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning("Unknown session id: %s", session_id)
            return None
        return [m.model_copy() for m in session.messages]

    async def list_sessions(self) -> list[SavedSession]:
        # insertion order is save order
        return list(reversed(self._sessions.values()))

    async def clear(self) -> None:
        self._sessions.clear()
