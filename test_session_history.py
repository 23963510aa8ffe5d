#!/usr/bin/env python3
"""
Session history tests: the in-memory repository and its protocol.
"""

from termagent.chat.models import Message
from termagent.history import InMemorySessionRepo, SessionRepository


async def test_in_memory_repo_round_trip():
    repo = InMemorySessionRepo()
    assert isinstance(repo, SessionRepository)

    messages = [Message.system("sys"), Message.user("hi"), Message.assistant("hello")]
    session_id = await repo.save("greeting", messages, "gpt-4o")

    loaded = await repo.load(session_id)
    assert loaded == messages
    # stored snapshot is independent of the caller's list
    messages.append(Message.user("later"))
    assert len(await repo.load(session_id)) == 3


async def test_list_sessions_newest_first():
    repo = InMemorySessionRepo()
    first = await repo.save("first", [], "m")
    second = await repo.save("second", [Message.user("x")], "m")

    sessions = await repo.list_sessions()
    assert [s.id for s in sessions] == [second, first]
    assert sessions[0].message_count == 1


async def test_unknown_session_and_clear():
    repo = InMemorySessionRepo()
    assert await repo.load("missing") is None

    await repo.save("a", [], "m")
    await repo.clear()
    assert await repo.list_sessions() == []
