#!/usr/bin/env python3
"""
Session History Module

Save/load contract for conversations plus an in-memory backend.
"""

from __future__ import annotations

from .memory_repo import InMemorySessionRepo
from .models import SavedSession
from .repository import SessionRepository

__all__ = [
    "InMemorySessionRepo",
    "SavedSession",
    "SessionRepository",
]
