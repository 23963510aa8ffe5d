#!/usr/bin/env python3
"""
Tests for the streaming LLM client against an in-process HTTP transport.
"""

import json

import httpx
import pytest

from termagent.chat.cancellation import CancellationToken
from termagent.chat.models import ContentToken, LLMSettings, Message, ToolCallToken, UsageToken
from termagent.clients import LLMClient
from termagent.errors import LLMTransportError

MESSAGES = [Message.system("sys"), Message.user("hello")]


def _settings(family: str = "openai") -> LLMSettings:
    urls = {
        "openai": ("openai", "https://api.test/v1"),
        "anthropic": ("anthropic", "https://anthropic.test"),
        "gemini": ("google", "https://gemini.test"),
    }
    provider, base_url = urls[family]
    return LLMSettings(provider=provider, family=family, model="test-model", base_url=base_url, api_key="k-123")


def _sse(*events, done: bool = True) -> bytes:
    body = "".join(f"data: {json.dumps(e)}\n\n" for e in events)
    if done:
        body += "data: [DONE]\n\n"
    return body.encode()


def _content(text: str) -> dict:
    return {"choices": [{"delta": {"content": text}}]}


async def _collect(client: LLMClient, settings: LLMSettings, cancel=None) -> list:
    return [token async for token in client.stream_chat(MESSAGES, settings, cancel)]


async def test_stream_yields_content_tool_calls_and_usage():
    """A complete OpenAI-style stream decodes into ordered tokens."""
    body = _sse(
        _content("Let me "),
        _content("check."),
        {"choices": [{"delta": {"tool_calls": [{"index": 0, "id": "c1", "function": {"name": "ls", "arguments": "{}"}}]}}]},
        {"choices": [{"delta": {}, "finish_reason": "tool_calls"}]},
        {"choices": [], "usage": {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7}},
    )
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=body))

    async with LLMClient(transport=transport) as client:
        tokens = await _collect(client, _settings())
        assert client.active_streams == 0

    assert [t.text for t in tokens if isinstance(t, ContentToken)] == ["Let me ", "check."]
    assert [t.call.name for t in tokens if isinstance(t, ToolCallToken)] == ["ls"]
    assert isinstance(tokens[-1], UsageToken)


async def test_comments_blank_lines_and_malformed_events_are_skipped():
    body = b": keep-alive\n\nevent: ping\n\ndata: {not json\n\n" + _sse(_content("ok"))
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=body))

    async with LLMClient(transport=transport) as client:
        tokens = await _collect(client, _settings())

    assert tokens == [ContentToken(text="ok")]


@pytest.mark.parametrize(
    "bad_event",
    [
        {"choices": [{"delta": "oops"}]},
        {"choices": ["not-a-choice"]},
        {"choices": [{"delta": {"tool_calls": ["nope"]}}]},
    ],
)
async def test_wrong_shaped_events_are_skipped(bad_event):
    body = _sse(_content("Hel"), bad_event, _content("lo"))
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=body))

    async with LLMClient(transport=transport) as client:
        tokens = await _collect(client, _settings())

    assert "".join(t.text for t in tokens if isinstance(t, ContentToken)) == "Hello"


async def test_anthropic_wrong_shaped_block_is_skipped_but_error_event_raises():
    text = {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "partial"}}
    body = _sse(
        {"type": "content_block_start", "index": 0, "content_block": "broken"},
        text,
        {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}},
        done=False,
    )
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=body))
    received = []

    async with LLMClient(transport=transport) as client:
        with pytest.raises(LLMTransportError) as exc_info:
            async for token in client.stream_chat(MESSAGES, _settings("anthropic")):
                received.append(token)

    assert received == [ContentToken(text="partial")]
    assert "overloaded_error: Overloaded" in str(exc_info.value)


async def test_nothing_after_done_sentinel_is_read():
    body = _sse(_content("before")) + _sse(_content("after"), done=False)
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=body))

    async with LLMClient(transport=transport) as client:
        tokens = await _collect(client, _settings())

    assert [t.text for t in tokens] == ["before"]


async def test_error_status_raises_before_any_token_with_truncated_excerpt():
    transport = httpx.MockTransport(lambda request: httpx.Response(401, content=b"E" * 1000))
    received = []

    async with LLMClient(transport=transport) as client:
        with pytest.raises(LLMTransportError) as exc_info:
            async for token in client.stream_chat(MESSAGES, _settings()):
                received.append(token)

    error = exc_info.value
    assert received == []
    assert error.status_code == 401
    assert error.provider == "openai"
    assert "E" * 300 in error.message
    assert "E" * 301 not in error.message


async def test_network_error_is_wrapped():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with LLMClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(LLMTransportError) as exc_info:
            await _collect(client, _settings())

    assert "connection refused" in str(exc_info.value)
    assert client.active_streams == 0


async def test_cancellation_stops_stream_between_tokens():
    body = _sse(_content("one"), _content("two"), _content("three"))
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=body))
    cancel = CancellationToken()
    received = []

    async with LLMClient(transport=transport) as client:
        async for token in client.stream_chat(MESSAGES, _settings(), cancel):
            received.append(token.text)
            cancel.cancel("test")

    assert received == ["one"]
    assert cancel.reason == "test"


async def test_pre_cancelled_token_yields_nothing():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=_sse(_content("x"))))
    cancel = CancellationToken()
    cancel.cancel()

    async with LLMClient(transport=transport) as client:
        assert await _collect(client, _settings(), cancel) == []


async def test_anthropic_request_carries_api_key_header():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        body = _sse(
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "hi"}},
            {"type": "message_stop"},
            done=False,
        )
        return httpx.Response(200, content=body)

    async with LLMClient(transport=httpx.MockTransport(handler)) as client:
        tokens = await _collect(client, _settings("anthropic"))

    assert seen["url"] == "https://anthropic.test/v1/messages"
    assert seen["headers"]["x-api-key"] == "k-123"
    assert "authorization" not in seen["headers"]
    assert seen["body"]["system"] == "sys"
    assert tokens == [ContentToken(text="hi")]


async def test_gemini_request_carries_key_query_parameter():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        seen["headers"] = request.headers
        return httpx.Response(200, content=_sse({"candidates": [{"content": {"parts": [{"text": "yo"}]}}]}, done=False))

    async with LLMClient(transport=httpx.MockTransport(handler)) as client:
        text = await client.chat(MESSAGES, _settings("gemini"))

    assert seen["params"] == {"key": "k-123", "alt": "sse"}
    assert "authorization" not in seen["headers"]
    assert text == "yo"


async def test_openai_request_carries_bearer_header():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("authorization")
        seen["url"] = str(request.url)
        return httpx.Response(200, content=_sse(_content("fine")))

    async with LLMClient(transport=httpx.MockTransport(handler)) as client:
        assert await client.chat(MESSAGES, _settings()) == "fine"

    assert seen["auth"] == "Bearer k-123"
    assert seen["url"] == "https://api.test/v1/chat/completions"
