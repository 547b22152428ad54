"""Backend contract: the pluggable unit that performs generation."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any, ClassVar

from conduit.models import Message, Response, StreamChunk
from conduit.result import Result


class Backend(ABC):
    """Generation backend.

    ``call`` returns ``Ok(Response)`` or ``Err(reason)``; ``stream`` returns
    ``Ok(async iterator of StreamChunk)`` or ``Err(reason)``. Expected
    failures (HTTP errors, rate limits) are returned, not raised. Network
    I/O, timeouts and authentication live here, never in the runtime.

    Abandoning a stream before exhaustion is cancellation; releasing any
    underlying resources is the backend's job.
    """

    # Identifier used in BackendError and telemetry metadata
    name: ClassVar[str] = "backend"

    @abstractmethod
    async def call(
        self,
        config: Mapping[str, Any],
        messages: Sequence[Message],
        options: Mapping[str, Any],
    ) -> Result[Response]: ...

    @abstractmethod
    async def stream(
        self,
        config: Mapping[str, Any],
        messages: Sequence[Message],
        options: Mapping[str, Any],
    ) -> Result[AsyncIterator[StreamChunk]]: ...

    def introspect(self, config: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "provider": self.name,
            "model": config.get("model"),
            "operation": "chat",
            "capabilities": [],
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
