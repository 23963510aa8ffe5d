"""
Chat Orchestrator

Session-level coordination layer. Wires the streaming client, tool dispatcher,
permission gate, undo ledger and agent loop from configuration, owns the
conversation, and serializes runs so only one loop is active at a time.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict

from termagent.errors import TermagentError
from termagent.tool_schema_manager import ToolSchemaManager

from .cancellation import CancellationToken
from .local_tools import LocalTools
from .models import ChatMessage, LoopResult, Message, PermissionMode, ToolStats, UndoOutcome
from .permissions import Approver, PermissionGate, PermissionModeStore
from .streaming_handler import AgentLoop
from .system_prompt import build_system_prompt
from .tool_executor import ToolDispatcher
from .undo import UndoLedger

if TYPE_CHECKING:
    from termagent.clients.llm_client import LLMClient
    from termagent.config import Configuration
    from termagent.history import SessionRepository

logger = logging.getLogger(__name__)


class ChatOrchestrator:
    """
    Conversation orchestrator for one terminal session.
    1. Takes your message
    2. Runs the agent loop over the conversation
    3. Streams events back and keeps the updated conversation
    Submissions made while a run is in flight wait for it to finish.
    """

    class ChatOrchestratorConfig(BaseModel):
        model_config = ConfigDict(arbitrary_types_allowed=True)

        llm_client: Any  # LLMClient
        configuration: Any  # Configuration
        repo: Any = None  # SessionRepository protocol
        approver: Any = None  # Approver callable
        cwd: str | None = None
        provider: str | None = None
        model: str | None = None

    def __init__(self, service_config: ChatOrchestratorConfig):
        self.llm_client: LLMClient = service_config.llm_client
        self.configuration: Configuration = service_config.configuration
        self.repo: SessionRepository | None = service_config.repo
        self.cwd = Path(service_config.cwd) if service_config.cwd else Path.cwd()

        settings = self.configuration.resolve_llm_settings(service_config.provider, service_config.model)
        tools_config = self.configuration.get_tools_config()
        approver: Approver | None = service_config.approver

        self.ledger = UndoLedger(self.configuration.get_undo_max_entries())
        self.mode_store = PermissionModeStore(self.configuration.get_permission_mode())
        self.dispatcher = ToolDispatcher(
            LocalTools.from_config(tools_config, self.ledger, self.cwd),
            PermissionGate(allowed_tools=self.configuration.get_allowed_tools(), approver=approver),
            self.mode_store,
        )
        self.loop = AgentLoop(
            self.llm_client,
            self.dispatcher,
            settings,
            max_turns=self.configuration.get_max_turns(),
            max_consecutive_failures=self.configuration.get_max_consecutive_failures(),
            allow_fenced=tools_config["auto_execute_code_blocks"],
        )
        self.conversation: list[Message] = []
        self._advertise_tools()

        self._run_lock = asyncio.Lock()
        self._active_cancel: CancellationToken | None = None

        logger.info(
            "← Orchestrator: ready - provider=%s, model=%s, mode=%s, %d tools",
            settings.provider,
            settings.model,
            self.mode_store.get().value,
            len(self.tool_mgr.list_available_tools()),
        )

    def _advertise_tools(self) -> None:
        """Expose only the tools the current mode can run without being denied."""
        allowed = None
        if self.mode_store.get() is PermissionMode.DONT_ASK:
            allowed = self.configuration.get_allowed_tools()
        self.tool_mgr = ToolSchemaManager(allowed_tools=allowed)
        self.loop.tool_definitions = self.tool_mgr.get_tool_definitions()
        self.system_prompt = build_system_prompt(
            self.configuration.get_system_prompt(),
            self.cwd,
            self.tool_mgr.list_available_tools(),
        )
        self.conversation = self._with_system_prompt(self.conversation)

    def _with_system_prompt(self, messages: list[Message]) -> list[Message]:
        rest = messages[1:] if messages and messages[0].role == "system" else messages
        return [Message.system(self.system_prompt), *rest]

    async def process_message(
        self,
        user_msg: str,
        cancel: CancellationToken | None = None,
    ) -> AsyncGenerator[ChatMessage]:
        """
        Run the agent loop for one user message, streaming its events.

        The conversation is updated once the run reaches its ``done`` event.
        """
        async with self._run_lock:
            cancel = cancel or CancellationToken()
            self._active_cancel = cancel
            logger.info("→ Orchestrator: processing message (%d chars)", len(user_msg))
            try:
                messages = [*self._with_system_prompt(self.conversation), Message.user(user_msg)]
                async for event in self.loop.run(messages, cancel):
                    yield event
                if self.loop.last_result is not None:
                    self.conversation = self.loop.last_result.messages
            finally:
                self._active_cancel = None
            logger.info("← Orchestrator: completed message processing")

    async def send(self, user_msg: str, cancel: CancellationToken | None = None) -> LoopResult:
        """Non-streaming variant of ``process_message``."""
        async for _ in self.process_message(user_msg, cancel):
            pass
        result = self.loop.last_result
        if result is None:
            raise TermagentError("Agent loop finished without a result")
        return result

    def cancel(self, reason: str = "cancelled by user") -> bool:
        """Cancel the in-flight run, if any."""
        if self._active_cancel is None:
            return False
        self._active_cancel.cancel(reason)
        return True

    @property
    def is_busy(self) -> bool:
        return self._run_lock.locked()

    def undo(self) -> UndoOutcome:
        return self.ledger.pop_and_revert()

    @property
    def permission_mode(self) -> PermissionMode:
        return self.mode_store.get()

    def set_permission_mode(self, mode: PermissionMode | str) -> None:
        self.mode_store.set(mode)
        self._advertise_tools()

    @property
    def tool_stats(self) -> ToolStats:
        return self.dispatcher.stats

    def switch_model(self, provider: str | None = None, model: str | None = None) -> None:
        """Re-resolve provider settings; takes effect on the next run."""
        self.loop.settings = self.configuration.resolve_llm_settings(provider, model)
        logger.info("Switched to %s/%s", self.loop.settings.provider, self.loop.settings.model)

    def clear(self) -> None:
        self.conversation = [Message.system(self.system_prompt)]

    async def save_session(self, name: str) -> str:
        if self.repo is None:
            raise RuntimeError("No session repository configured")
        return await self.repo.save(name, self.conversation, self.loop.settings.model)

    async def load_session(self, session_id: str) -> bool:
        if self.repo is None:
            raise RuntimeError("No session repository configured")
        messages = await self.repo.load(session_id)
        if messages is None:
            return False
        self.conversation = messages
        return True

    async def cleanup(self) -> None:
        """Close the LLM HTTP client to prevent dangling connections."""
        logger.info("→ Orchestrator: starting cleanup")
        await self.llm_client.close()
        logger.info("← Orchestrator: cleanup completed")
