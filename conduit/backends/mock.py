"""Deterministic backends for tests and examples.

``MockBackend`` answers from its config:

    Client(MockBackend(), {"response": "Hello!"})
    Client(MockBackend(), {"error": "rate_limited"})
    Client(MockBackend(), {"stream_chunks": ["Hel", "lo"]})

Config keys: ``response`` (default "Mock response"), ``stream_chunks``
(default: response split on spaces), ``error``, ``finish_reason`` (default
stop), ``usage`` (default input 10, output = content length), ``delay``
(milliseconds), ``model`` (default "mock").

``QueuedMockBackend`` pops one scripted item per call, see
``conduit.testing.mock_client``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator, Iterable, Mapping, Sequence
from typing import Any

from conduit.backends.base import Backend
from conduit.models import FinishReason, Message, Response, StreamChunk
from conduit.result import Err, Ok, Result

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE = "Mock response"
EXHAUSTED = "mock_responses_exhausted"


def estimate_tokens(content: Any) -> int:
    if content is None:
        return 0
    if isinstance(content, str):
        return len(content)
    return len(repr(content))


async def _maybe_delay(config: Mapping[str, Any]) -> None:
    delay = config.get("delay")
    if delay:
        await asyncio.sleep(delay / 1000)


async def _iterate(chunks: Iterable[Any], **metadata: Any) -> AsyncIterator[StreamChunk]:
    for chunk in chunks:
        yield StreamChunk(content=chunk, metadata={"partial": True, **metadata})


class MockBackend(Backend):
    name = "mock"

    async def call(
        self,
        config: Mapping[str, Any],
        messages: Sequence[Message],
        options: Mapping[str, Any],
    ) -> Result[Response]:
        await _maybe_delay(config)
        if config.get("error") is not None:
            return Err(config["error"])
        return Ok(self._build_response(config))

    async def stream(
        self,
        config: Mapping[str, Any],
        messages: Sequence[Message],
        options: Mapping[str, Any],
    ) -> Result[AsyncIterator[StreamChunk]]:
        await _maybe_delay(config)
        if config.get("error") is not None:
            return Err(config["error"])
        chunks = config.get("stream_chunks")
        if chunks is None:
            chunks = config.get("response", DEFAULT_RESPONSE).split()
        return Ok(_iterate(chunks, backend=self.name))

    def introspect(self, config: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "provider": self.name,
            "model": config.get("model", "mock"),
            "operation": "chat",
            "capabilities": ["streaming", "deterministic"],
        }

    def _build_response(self, config: Mapping[str, Any]) -> Response:
        content = config.get("response", DEFAULT_RESPONSE)
        usage = config.get("usage")
        if usage is None:
            usage = {"input_tokens": 10, "output_tokens": estimate_tokens(content)}
        return Response(
            content=content,
            finish_reason=config.get("finish_reason", FinishReason.STOP),
            usage=dict(usage),
            metadata={"backend": self.name, "model": config.get("model", "mock")},
        )


class QueuedMockBackend(Backend):
    """Returns scripted responses in order, one per call or stream.

    Items are returned as response content, except ``Err(reason)`` which
    simulates a backend failure and callables which receive the outbound
    messages and return content (or an Err). Once the queue is empty every
    call returns ``default``.
    """

    name = "mock"

    def __init__(
        self,
        responses: Iterable[Any],
        default: Any = Err(EXHAUSTED),
        model: str = "mock",
    ) -> None:
        self._queue: deque[Any] = deque(responses)
        self.expected = len(self._queue)
        self.default = default
        self.model = model

    @property
    def remaining(self) -> int:
        return len(self._queue)

    def _next(self, messages: Sequence[Message]) -> Any:
        if self._queue:
            item = self._queue.popleft()
        else:
            logger.debug("Mock queue exhausted, returning default")
            item = self.default
        if callable(item) and not isinstance(item, Err):
            item = item(list(messages))
        return item

    async def call(
        self,
        config: Mapping[str, Any],
        messages: Sequence[Message],
        options: Mapping[str, Any],
    ) -> Result[Response]:
        item = self._next(messages)
        if isinstance(item, Err):
            return item
        if isinstance(item, Response):
            return Ok(item)
        return Ok(
            Response(
                content=item,
                finish_reason=FinishReason.STOP,
                usage={"input_tokens": 10, "output_tokens": estimate_tokens(item)},
                metadata={"backend": self.name, "model": self.model},
            )
        )

    async def stream(
        self,
        config: Mapping[str, Any],
        messages: Sequence[Message],
        options: Mapping[str, Any],
    ) -> Result[AsyncIterator[StreamChunk]]:
        item = self._next(messages)
        if isinstance(item, Err):
            return item
        if isinstance(item, Response):
            item = item.content
        return Ok(_iterate([item], backend=self.name))

    def introspect(self, config: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "provider": self.name,
            "model": self.model,
            "operation": "chat",
            "capabilities": ["streaming", "deterministic"],
        }

