"""
Streaming LLM HTTP client.

Selects the wire adapter for the configured provider family, issues the
streaming POST with that family's authentication shape, and exposes a single
cancellable producer of normalized tokens to every caller.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import AsyncGenerator
from typing import TYPE_CHECKING, Any

import httpx

from termagent.chat.logging_utils import log_llm_request_complete, log_llm_request_start
from termagent.chat.models import ContentToken, LLMSettings, Message, StreamToken, ToolFunctionDefinition
from termagent.errors import LLMTransportError

from .adapters import StreamDecoder, WireAdapter, get_adapter

if TYPE_CHECKING:
    from termagent.chat.cancellation import CancellationToken
    from termagent.config import Configuration

logger = logging.getLogger(__name__)

HTTP_OK = 200
ERROR_EXCERPT_CHARS = 300
DONE_SENTINEL = "[DONE]"

_DEFAULT_POOL_CONFIG: dict[str, Any] = {
    "max_connections": 20,
    "max_keepalive_connections": 10,
    "keepalive_expiry_seconds": 30.0,
    "request_timeout_seconds": 120.0,
}
_DEFAULT_CONNECTION_LOGGING: dict[str, Any] = {
    "enabled": False,
    "connection_events": False,
    "http_requests": False,
}


class LLMClient:
    """
    Provider-agnostic streaming client.

    One pooled ``httpx.AsyncClient`` is shared by all requests; endpoints and
    credentials come from the ``LLMSettings`` passed per call, so switching
    provider never requires a new client.
    """

    def __init__(
        self,
        configuration: Configuration | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.configuration = configuration
        if configuration is not None:
            self._connection_pool_config = configuration.get_connection_pool_config()
            self._connection_logging_config = configuration.get_connection_logging_config()
        else:
            self._connection_pool_config = dict(_DEFAULT_POOL_CONFIG)
            self._connection_logging_config = dict(_DEFAULT_CONNECTION_LOGGING)

        self._active_streams: int = 0
        self.client = httpx.AsyncClient(
            timeout=self._connection_pool_config["request_timeout_seconds"],
            http2=True,
            limits=httpx.Limits(
                max_connections=self._connection_pool_config["max_connections"],
                max_keepalive_connections=self._connection_pool_config["max_keepalive_connections"],
                keepalive_expiry=self._connection_pool_config["keepalive_expiry_seconds"],
            ),
            transport=transport,
            trust_env=False,
        )
        self._log_connection_event(
            "client_initialized",
            {
                "max_connections": self._connection_pool_config["max_connections"],
                "timeout": self._connection_pool_config["request_timeout_seconds"],
            },
        )

    def _log_connection_event(self, event_type: str, details: dict[str, Any]) -> None:
        """Log a connection event if logging is enabled."""
        if not (self._connection_logging_config["enabled"] and self._connection_logging_config["connection_events"]):
            return
        logger.info("Connection %s: %s", event_type, details)

    def _log_http_request(
        self,
        method: str,
        url: str,
        status_code: int | None = None,
        duration_ms: float | None = None,
    ) -> None:
        """Log HTTP request details if logging is enabled."""
        if not (self._connection_logging_config["enabled"] and self._connection_logging_config["http_requests"]):
            return

        message_parts = [f"HTTP {method} {url}"]
        if status_code is not None:
            message_parts.append(f"Status: {status_code}")
        if duration_ms is not None:
            message_parts.append(f"Duration: {duration_ms:.2f}ms")
        logger.info(" | ".join(message_parts))

    async def stream_chat(
        self,
        messages: list[Message],
        settings: LLMSettings,
        cancel: CancellationToken | None = None,
        tools: list[ToolFunctionDefinition] | None = None,
    ) -> AsyncGenerator[StreamToken]:
        """
        Stream one completion as normalized tokens.

        Raises:
            LLMTransportError: non-success status (raised before any token),
                network failure, or a provider-signaled error event.
        """
        adapter: WireAdapter = get_adapter(settings.family)
        request = adapter.build_request(messages, settings, tools)
        decoder = adapter.create_decoder()
        request_id = f"{settings.provider}:{int(time.time() * 1000)}"

        self._active_streams += 1
        start_time = log_llm_request_start(request_id, settings.provider, settings.model)
        success = False

        try:
            async with self.client.stream(
                "POST",
                request.url,
                json=request.body,
                headers=request.headers,
                params=request.params,
                timeout=settings.timeout,
            ) as response:
                duration_ms = (time.monotonic() - start_time) * 1000
                self._log_http_request("POST", request.url, response.status_code, duration_ms)

                # FAIL FAST: nothing is yielded for a failed request
                if response.status_code != HTTP_OK:
                    raw = await response.aread()
                    excerpt = raw.decode("utf-8", errors="replace")[:ERROR_EXCERPT_CHARS]
                    raise LLMTransportError(
                        f"{settings.provider} API error {response.status_code}: {excerpt}",
                        status_code=response.status_code,
                        provider=settings.provider,
                    )

                async for token in self._decode_lines(response, decoder, cancel):
                    yield token

            success = True

        except httpx.HTTPError as e:
            logger.error("HTTP error during streaming: %s (%s)", e, type(e).__name__)
            raise LLMTransportError(f"HTTP error: {e!s}", provider=settings.provider) from e
        finally:
            self._active_streams -= 1
            log_llm_request_complete(request_id, start_time, success)

    async def _decode_lines(
        self,
        response: httpx.Response,
        decoder: StreamDecoder,
        cancel: CancellationToken | None,
    ) -> AsyncGenerator[StreamToken]:
        chunk_count = 0
        skipped = 0

        async for line in response.aiter_lines():
            if cancel is not None and cancel.cancelled:
                logger.info("← LLM: stream cancelled after %d chunks", chunk_count)
                return

            data = _sse_data(line)
            if data is None:
                continue
            if data == DONE_SENTINEL:
                break

            try:
                event = json.loads(data)
            except json.JSONDecodeError as e:
                skipped += 1
                logger.warning("Skipping malformed stream event: %s", e)
                continue
            if not isinstance(event, dict):
                skipped += 1
                continue

            # LLMTransportError from provider error events propagates
            try:
                tokens = decoder.feed(event)
            except (AttributeError, TypeError, KeyError, ValueError) as e:
                skipped += 1
                logger.warning("Skipping malformed stream event: %s (%s)", e, type(e).__name__)
                continue

            chunk_count += 1
            for token in tokens:
                if cancel is not None and cancel.cancelled:
                    return
                yield token

            if decoder.done:
                break

        for token in decoder.close():
            if cancel is not None and cancel.cancelled:
                return
            yield token

        logger.debug("← LLM: stream finished, %d chunks, %d skipped", chunk_count, skipped)

    async def chat(self, messages: list[Message], settings: LLMSettings) -> str:
        """Collect the content of one completion (tool calls and reasoning dropped)."""
        parts: list[str] = []
        async for token in self.stream_chat(messages, settings):
            if isinstance(token, ContentToken):
                parts.append(token.text)
        return "".join(parts)

    @property
    def active_streams(self) -> int:
        return self._active_streams

    async def close(self) -> None:
        """Close the HTTP client."""
        self._log_connection_event("client_closing", {"active_streams": self._active_streams})
        await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Async context manager exit."""
        await self.close()


def _sse_data(line: str) -> str | None:
    """Payload of a ``data:`` line, or None for blank/comment/other field lines."""
    line = line.strip()
    if not line.startswith("data:"):
        return None
    return line[5:].strip()
