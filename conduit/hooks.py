"""Lifecycle hooks: ordered interception points around a call.

A hook implements any subset of the ten stages. Transforming stages return
``Continue(value)``, ``Halt(response)`` or ``Err(reason)``; observational
stages (``on_call_error``, ``on_stream_chunk``, ``on_stream_end``) have their
return value ignored.

Stage signatures (the transformed value is marked with *):

    on_call_start(client, *content, context)
    on_call_end(client, *response, context)
    on_call_error(client, error, context)
    on_stream_start(client, *content, context)
    on_stream_chunk(client, chunk, context)
    on_stream_end(client, context)
    on_backend_request(config, *messages)
    on_backend_response(config, *response)
    on_compaction_start(*context, strategy, config)
    on_compaction_end(*context, strategy)

Hooks are declared either by subclassing ``Hook``:

    class Redact(Hook):
        def on_call_start(self, client, content, context):
            return Continue(content.replace("secret", "***"))

or ad hoc with keyword handlers:

    Hook(on_call_start=lambda client, content, context: Halt(cached))
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from conduit.result import Err

logger = logging.getLogger(__name__)


class HookStage(StrEnum):
    ON_CALL_START = "on_call_start"
    ON_CALL_END = "on_call_end"
    ON_CALL_ERROR = "on_call_error"
    ON_STREAM_START = "on_stream_start"
    ON_STREAM_CHUNK = "on_stream_chunk"
    ON_STREAM_END = "on_stream_end"
    ON_BACKEND_REQUEST = "on_backend_request"
    ON_BACKEND_RESPONSE = "on_backend_response"
    ON_COMPACTION_START = "on_compaction_start"
    ON_COMPACTION_END = "on_compaction_end"


@dataclass(frozen=True)
class Continue:
    """Continue the pipeline with a (possibly transformed) value."""

    value: Any


@dataclass(frozen=True)
class Halt:
    """Stop the pipeline; the payload stands in for the stage result."""

    response: Any


HookResult = Continue | Halt | Err

_STAGE_NAMES = frozenset(stage.value for stage in HookStage)


class Hook:
    """Base class for hooks. Every stage is ``None`` unless implemented."""

    on_call_start: Callable[..., HookResult] | None = None
    on_call_end: Callable[..., HookResult] | None = None
    on_call_error: Callable[..., Any] | None = None
    on_stream_start: Callable[..., HookResult] | None = None
    on_stream_chunk: Callable[..., Any] | None = None
    on_stream_end: Callable[..., Any] | None = None
    on_backend_request: Callable[..., HookResult] | None = None
    on_backend_response: Callable[..., HookResult] | None = None
    on_compaction_start: Callable[..., HookResult] | None = None
    on_compaction_end: Callable[..., HookResult] | None = None

    def __init__(self, **handlers: Callable[..., Any]) -> None:
        for name, handler in handlers.items():
            if name not in _STAGE_NAMES:
                raise TypeError(f"Unknown hook stage: {name}")
            setattr(self, name, handler)

    def implements(self, stage: HookStage | str) -> bool:
        return getattr(self, HookStage(stage).value, None) is not None

    def __repr__(self) -> str:
        stages = [s.value for s in HookStage if self.implements(s)]
        return f"{type(self).__name__}({', '.join(stages)})"


def normalize(hooks: Hook | Iterable[Hook] | None) -> tuple[Hook, ...]:
    """None -> (), a single hook -> (hook,), any iterable -> tuple."""
    if hooks is None:
        return ()
    if isinstance(hooks, Hook):
        return (hooks,)
    return tuple(hooks)


def merge(
    client_hooks: Hook | Iterable[Hook] | None,
    call_hooks: Hook | Iterable[Hook] | None,
) -> tuple[Hook, ...]:
    """Client-level hooks first, then per-call hooks."""
    return normalize(client_hooks) + normalize(call_hooks)


def invoke(
    hooks: Iterable[Hook],
    stage: HookStage | str,
    value: Any,
    before: tuple = (),
    after: tuple = (),
) -> HookResult:
    """Run a transforming stage across hooks in order.

    Each implementing hook is called as ``handler(*before, value, *after)``.
    Stops at the first Halt or Err. An empty chain returns ``Continue(value)``.
    """
    stage = HookStage(stage)
    current = value
    for hook in hooks:
        handler = getattr(hook, stage.value, None)
        if handler is None:
            continue
        result = handler(*before, current, *after)
        if isinstance(result, Continue):
            current = result.value
        elif isinstance(result, (Halt, Err)):
            logger.debug("Hook %r short-circuited %s: %r", hook, stage.value, result)
            return result
        else:
            raise TypeError(
                f"{hook!r}.{stage.value} must return Continue, Halt or Err, got {result!r}"
            )
    return Continue(current)


def notify(hooks: Iterable[Hook], stage: HookStage | str, *args: Any) -> None:
    """Run an observational stage across hooks in order, ignoring results."""
    stage = HookStage(stage)
    for hook in hooks:
        handler = getattr(hook, stage.value, None)
        if handler is not None:
            handler(*args)
