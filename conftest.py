#!/usr/bin/env python3
"""
Shared fixtures: a scripted stand-in for the streaming client and settings
for it.
"""

import pytest

from termagent.chat.models import ContentToken, LLMSettings, Message


class ScriptedLLMClient:
    """
    Replays one scripted turn per ``stream_chat`` call.

    A turn is either a string (streamed as one content token) or a list of
    tokens; once the script runs out the last turn repeats.
    """

    def __init__(self, turns):
        self.turns = list(turns)
        self.calls: list[list[Message]] = []
        self.closed = False

    async def stream_chat(self, messages, settings, cancel=None, tools=None):
        self.calls.append([m.model_copy() for m in messages])
        turn = self.turns[min(len(self.calls), len(self.turns)) - 1]
        if isinstance(turn, Exception):
            raise turn
        if isinstance(turn, str):
            turn = [ContentToken(text=turn)]
        for token in turn:
            yield token

    async def close(self):
        self.closed = True


@pytest.fixture
def scripted_llm():
    return ScriptedLLMClient


@pytest.fixture
def llm_settings():
    return LLMSettings(provider="openai", family="openai", model="test-model", base_url="http://llm.test/v1", api_key="k")
