#!/usr/bin/env python3
"""
Tests for the session orchestrator: conversation bookkeeping, undo,
permission mode switching and session save/load.
"""

import pytest
import yaml

from termagent.chat import ChatOrchestrator, StopReason
from termagent.chat.models import PermissionMode
from termagent.config import Configuration
from termagent.errors import TermagentError
from termagent.history import InMemorySessionRepo


@pytest.fixture
def configuration(monkeypatch):
    monkeypatch.delenv("TERMAGENT_CONFIG", raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    return Configuration(load_env_file=False)


def _orchestrator(client, configuration, tmp_path, repo=None, approver=None):
    return ChatOrchestrator(
        ChatOrchestrator.ChatOrchestratorConfig(
            llm_client=client,
            configuration=configuration,
            repo=repo,
            approver=approver,
            cwd=str(tmp_path),
        )
    )


def test_system_prompt_describes_cwd_and_tools(scripted_llm, configuration, tmp_path):
    orchestrator = _orchestrator(scripted_llm([]), configuration, tmp_path)

    system = orchestrator.conversation[0]
    assert system.role == "system"
    assert f"Working directory: {tmp_path}" in system.content
    assert "<tool:read>path/to/file</tool>" in system.content
    assert orchestrator.permission_mode is PermissionMode.AUTO


async def test_send_updates_conversation_and_undo_reverts(scripted_llm, configuration, tmp_path):
    client = scripted_llm(["<tool:write>hello.py\nprint('hi')\n</tool>", "Created hello.py."])
    orchestrator = _orchestrator(client, configuration, tmp_path)

    result = await orchestrator.send("make a hello script")

    assert result.stop_reason is StopReason.COMPLETED
    assert (tmp_path / "hello.py").read_text() == "print('hi')\n"
    assert [m.role for m in orchestrator.conversation] == ["system", "user", "assistant", "user", "assistant"]
    assert orchestrator.tool_stats.files_written == 1
    assert not orchestrator.is_busy

    outcome = orchestrator.undo()
    assert outcome.success
    assert not (tmp_path / "hello.py").exists()
    assert orchestrator.undo().message == "Nothing to undo."


async def test_follow_up_sees_previous_conversation(scripted_llm, configuration, tmp_path):
    client = scripted_llm(["First answer.", "Second answer."])
    orchestrator = _orchestrator(client, configuration, tmp_path)

    await orchestrator.send("one")
    await orchestrator.send("two")

    second_request = client.calls[1]
    assert [m.content for m in second_request[1:]] == ["one", "First answer.", "two"]


async def test_permission_mode_applies_to_following_runs(scripted_llm, configuration, tmp_path):
    client = scripted_llm(["<tool:bash>touch x.txt</tool>", "Blocked."])
    orchestrator = _orchestrator(client, configuration, tmp_path)
    orchestrator.set_permission_mode("plan")

    result = await orchestrator.send("touch a file")

    assert result.tool_results[0].denied
    assert not (tmp_path / "x.txt").exists()
    assert orchestrator.tool_stats.denials == 1


async def test_events_stream_through_process_message(scripted_llm, configuration, tmp_path):
    orchestrator = _orchestrator(scripted_llm(["Hi there."]), configuration, tmp_path)

    events = [event async for event in orchestrator.process_message("hello")]

    assert [e.type for e in events] == ["text", "done"]
    assert orchestrator.cancel() is False


async def test_save_and_load_session(scripted_llm, configuration, tmp_path):
    repo = InMemorySessionRepo()
    orchestrator = _orchestrator(scripted_llm(["Saved answer."]), configuration, tmp_path, repo=repo)
    await orchestrator.send("remember this")

    session_id = await orchestrator.save_session("first")
    sessions = await repo.list_sessions()
    assert sessions[0].name == "first"
    assert sessions[0].message_count == 3

    orchestrator.clear()
    assert len(orchestrator.conversation) == 1

    assert await orchestrator.load_session(session_id)
    assert orchestrator.conversation[-1].content == "Saved answer."
    assert not await orchestrator.load_session("unknown")


async def test_session_commands_need_a_repository(scripted_llm, configuration, tmp_path):
    orchestrator = _orchestrator(scripted_llm([]), configuration, tmp_path)
    with pytest.raises(RuntimeError):
        await orchestrator.save_session("nope")


async def test_switch_model_and_cleanup(scripted_llm, configuration, tmp_path, monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")
    client = scripted_llm([])
    orchestrator = _orchestrator(client, configuration, tmp_path)

    orchestrator.switch_model(model="claude-3-5-haiku-latest")
    assert orchestrator.loop.settings.family == "anthropic"
    assert orchestrator.loop.settings.api_key == "sk-ant"

    await orchestrator.cleanup()
    assert client.closed


async def test_dont_ask_mode_advertises_only_allowed_tools(scripted_llm, tmp_path, monkeypatch):
    override = tmp_path / "termagent.yaml"
    override.write_text(yaml.dump({"agent": {"permission_mode": "dontAsk", "allowed_tools": ["read", "ls"]}}))
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    configuration = Configuration(override_path=str(override), load_env_file=False)
    client = scripted_llm(["Nothing to change."])
    orchestrator = _orchestrator(client, configuration, tmp_path)

    assert [d.name for d in orchestrator.loop.tool_definitions] == ["read", "ls"]
    assert "<tool:read>" in orchestrator.system_prompt
    assert "<tool:bash>" not in orchestrator.system_prompt

    await orchestrator.send("look around")
    assert client.calls[0][0].content == orchestrator.system_prompt

    orchestrator.set_permission_mode("auto")
    assert len(orchestrator.loop.tool_definitions) == 9
    assert "<tool:bash>" in orchestrator.conversation[0].content
    assert [m.role for m in orchestrator.conversation] == ["system", "user", "assistant"]


async def test_send_without_loop_result_raises(scripted_llm, configuration, tmp_path, monkeypatch):
    orchestrator = _orchestrator(scripted_llm([]), configuration, tmp_path)

    async def silent_run(messages, cancel=None):
        return
        yield

    monkeypatch.setattr(orchestrator.loop, "run", silent_run)

    with pytest.raises(TermagentError):
        await orchestrator.send("hello")
