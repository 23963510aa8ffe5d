"""Cooperative cancellation shared by one user-initiated loop run."""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Explicit cancellation flag passed through every suspension point.

    ``cancel()`` may be called from a signal handler or another task; consumers
    poll ``cancelled`` between tokens and between tool calls.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by user") -> None:
        if not self._event.is_set():
            self.reason = reason
            logger.info("Cancellation requested: %s", reason)
            self._event.set()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"
