"""Telemetry: named lifecycle events with an explicit subscriber registry.

Events are emitted unconditionally by the runtime. With no handlers attached
an emit is a no-op. Handlers are plain callables:

    def handler(event: str, measurements: dict, metadata: dict, config: Any) -> None: ...

    telemetry.attach("my-handler", telemetry.event_names(), handler)
    ...
    telemetry.detach("my-handler")

Handler errors are isolated: one broken handler never fails a call or
blocks other handlers.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

TelemetryHandler = Callable[[str, dict[str, Any], dict[str, Any], Any], None]

CALL_START = "call.start"
CALL_STOP = "call.stop"
CALL_EXCEPTION = "call.exception"
STREAM_START = "stream.start"
STREAM_CHUNK = "stream.chunk"
STREAM_STOP = "stream.stop"
BACKEND_REQUEST = "backend.request"
BACKEND_RESPONSE = "backend.response"
COMPACTION_START = "compaction.start"
COMPACTION_STOP = "compaction.stop"
COMPACTION_ERROR = "compaction.error"

EVENT_NAMES = (
    CALL_START,
    CALL_STOP,
    CALL_EXCEPTION,
    STREAM_START,
    STREAM_CHUNK,
    STREAM_STOP,
    BACKEND_REQUEST,
    BACKEND_RESPONSE,
    COMPACTION_START,
    COMPACTION_STOP,
    COMPACTION_ERROR,
)

DEFAULT_LOGGER_ID = "conduit-telemetry-default-logger"


@dataclass(frozen=True)
class Attachment:
    handler_id: str
    event_names: frozenset[str]
    handler: TelemetryHandler
    config: Any = None


class Telemetry:
    """Registry of attached handlers, keyed by handler id."""

    def __init__(self) -> None:
        self._attachments: dict[str, Attachment] = {}

    def attach(
        self,
        handler_id: str,
        event_names: str | Iterable[str],
        handler: TelemetryHandler,
        config: Any = None,
    ) -> bool:
        """Attach a handler. Returns False if the id is already attached."""
        if handler_id in self._attachments:
            return False
        names = frozenset([event_names] if isinstance(event_names, str) else event_names)
        self._attachments[handler_id] = Attachment(handler_id, names, handler, config)
        logger.debug("Attached telemetry handler '%s' to %d events", handler_id, len(names))
        return True

    def detach(self, handler_id: str) -> bool:
        """Detach a handler. Returns False if the id is unknown."""
        if self._attachments.pop(handler_id, None) is None:
            return False
        logger.debug("Detached telemetry handler '%s'", handler_id)
        return True

    def handlers(self) -> list[Attachment]:
        return list(self._attachments.values())

    def execute(
        self,
        event: str,
        measurements: dict[str, Any],
        metadata: dict[str, Any],
    ) -> None:
        """Dispatch an event to every handler attached to its name."""
        for attachment in list(self._attachments.values()):
            if event not in attachment.event_names:
                continue
            try:
                attachment.handler(event, measurements, metadata, attachment.config)
            except Exception:
                logger.exception(
                    "Telemetry handler '%s' failed for event %s",
                    attachment.handler_id,
                    event,
                )

    # ------------------------------------------------------------------
    # Span helpers used by the runtime
    # ------------------------------------------------------------------

    def start(self, span: str, metadata: dict[str, Any]) -> int:
        """Emit ``<span>.start`` and return the monotonic start time."""
        start_time = time.monotonic_ns()
        self.execute(f"{span}.start", {"system_time": time.time_ns()}, metadata)
        return start_time

    def stop(
        self,
        span: str,
        start_time: int,
        metadata: dict[str, Any],
        extra_measurements: dict[str, Any] | None = None,
    ) -> None:
        duration = time.monotonic_ns() - start_time
        self.execute(
            f"{span}.stop",
            {"duration": duration, **(extra_measurements or {})},
            metadata,
        )

    def exception(
        self,
        span: str,
        start_time: int,
        error: Any,
        metadata: dict[str, Any],
    ) -> None:
        duration = time.monotonic_ns() - start_time
        kind = "exception" if isinstance(error, BaseException) else "error"
        self.execute(
            f"{span}.exception",
            {"duration": duration},
            {**metadata, "kind": kind, "reason": error},
        )

    def event(self, name: str, measurements: dict[str, Any], metadata: dict[str, Any]) -> None:
        self.execute(name, measurements, metadata)


# Process-wide registry. Tests and applications attach and detach explicitly.
registry = Telemetry()


def attach(
    handler_id: str,
    event_names: str | Iterable[str],
    handler: TelemetryHandler,
    config: Any = None,
) -> bool:
    return registry.attach(handler_id, event_names, handler, config)


def detach(handler_id: str) -> bool:
    return registry.detach(handler_id)


def event_names() -> list[str]:
    return list(EVENT_NAMES)


def log_event(
    event: str,
    measurements: dict[str, Any],
    metadata: dict[str, Any],
    config: Any,
) -> None:
    level = (config or {}).get("level", logging.DEBUG)
    if not logger.isEnabledFor(level):
        return
    keys = sorted(metadata)[:3]
    logger.log(level, "[%s] %r %s", event, measurements, {k: metadata[k] for k in keys})


def attach_default_logger(level: int | str = logging.DEBUG) -> bool:
    """Log every event through the ``conduit.telemetry`` logger."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    return registry.attach(DEFAULT_LOGGER_ID, EVENT_NAMES, log_event, {"level": level})


def detach_default_logger() -> bool:
    return registry.detach(DEFAULT_LOGGER_ID)
