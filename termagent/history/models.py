#!/usr/bin/env python3
"""
Session History Data Models

Pydantic models for saved conversation sessions.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from termagent.chat.models import Message


class SavedSession(BaseModel):
    """A named snapshot of one conversation."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    name: str
    model: str
    messages: list[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def message_count(self) -> int:
        return len(self.messages)
