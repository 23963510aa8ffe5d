"""
Agent Chat Module

Tool parsing, dispatch, permissions, undo and the agent loop.
"""

from .cancellation import CancellationToken
from .chat_orchestrator import ChatOrchestrator
from .models import ChatMessage, LoopResult, Message, StopReason
from .streaming_handler import AgentLoop

__all__ = ["AgentLoop", "CancellationToken", "ChatMessage", "ChatOrchestrator", "LoopResult", "Message", "StopReason"]
