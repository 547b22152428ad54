"""Execution engine: sequences hooks, backend dispatch and compaction.

``call`` runs one request/response exchange:

    call.start -> on_call_start -> build messages -> backend.request
    -> on_backend_request -> backend.call -> on_backend_response
    -> backend.response -> on_call_end -> append exchange
    -> auto-compaction -> call.stop

``stream`` compacts *before* dispatch (the streamed answer is unknown until
the caller drains it) and returns a context holding only the new user
message. ``StreamResult.complete()`` appends the assistant message.

Expected failures come back as ``Err``; Context is never changed by a failed
call. Compaction failures are logged and reported through telemetry but
never fail the call.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from conduit import telemetry
from conduit.compaction import CompactionDescriptor
from conduit.context import TOTAL_TOKENS, Context
from conduit.errors import BackendError, HookStageError, StreamError, ValidationError
from conduit.hooks import Continue, Halt, Hook, HookStage, invoke, merge, notify
from conduit.models import Message, Response, Role, StreamChunk
from conduit.result import Err, Ok, Result

if TYPE_CHECKING:
    from collections.abc import Iterable

    from conduit.client import Client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Completion:
    """Successful call: the final response and the updated context."""

    response: Response
    context: Context

    @property
    def content(self) -> Any:
        return self.response.content


@dataclass(eq=False)
class StreamResult:
    """Successful stream start: a chunk iterator and the context with the user message.

    Iterate with ``async for chunk in result`` (or over ``chunks``). Every
    pulled chunk is recorded in ``received``; ``complete()`` drains what is
    left and returns the context with the assistant message appended.
    """

    chunks: AsyncIterator[StreamChunk]
    context: Context
    received: list[StreamChunk] = field(default_factory=list)

    async def __aiter__(self) -> AsyncIterator[StreamChunk]:
        async for chunk in self.chunks:
            yield chunk

    async def complete(self) -> Context:
        async for _ in self:
            pass
        text = "".join(
            c.content for c in self.received if c.type == "content" and isinstance(c.content, str)
        )
        return self.context.add_message(Role.ASSISTANT, text)


# ------------------------------------------------------------------
# Synchronous (request/response) call
# ------------------------------------------------------------------


async def call(
    client: Client,
    content: Any,
    context: Context | None = None,
    *,
    hooks: Hook | Iterable[Hook] | None = None,
    **options: Any,
) -> Result[Completion]:
    """Run one exchange. Returns ``Ok(Completion)`` or ``Err(error)``.

    When ``context`` is omitted and ``content`` is a sequence of Messages,
    all but the last seed a fresh Context and the last one is the input.
    """
    if context is None:
        context, content = seed_context(content)
    if _is_empty(content):
        return Err(ValidationError("content cannot be empty"))

    all_hooks = merge(client.hooks, hooks)
    descriptor = client.compaction
    config = client.backend_config
    meta = {"client": client, "content": content, "context": context}
    start_time = telemetry.registry.start("call", meta)

    def fail(error: Any) -> Err:
        logger.debug("Call failed: %s", error)
        telemetry.registry.exception("call", start_time, error, meta)
        notify(all_hooks, HookStage.ON_CALL_ERROR, client, error, context)
        return Err(error)

    # on_call_start
    started = invoke(all_hooks, HookStage.ON_CALL_START, content, before=(client,), after=(context,))
    if isinstance(started, Err):
        return fail(HookStageError(HookStage.ON_CALL_START, started.reason))
    if isinstance(started, Halt):
        response = _as_response(started.response)
        updated = append_exchange(context, content, response)
        telemetry.registry.stop("call", start_time, {**meta, "response": response, "context": updated})
        return Ok(Completion(response, updated))

    messages = build_messages(client, started.value, context)

    # on_backend_request -> dispatch -> on_backend_response
    _emit_backend_request(client, config, messages)
    requested = invoke(all_hooks, HookStage.ON_BACKEND_REQUEST, messages, before=(config,))
    if isinstance(requested, Err):
        return fail(HookStageError(HookStage.ON_BACKEND_REQUEST, requested.reason))

    if isinstance(requested, Halt):
        response = _as_response(requested.response)
    else:
        result = await client.backend.call(config, requested.value, options)
        if isinstance(result, Err):
            return fail(BackendError(client.backend_name, result.reason))

        received = invoke(all_hooks, HookStage.ON_BACKEND_RESPONSE, result.value, before=(config,))
        if isinstance(received, Err):
            return fail(HookStageError(HookStage.ON_BACKEND_RESPONSE, received.reason))
        response = _as_response(
            received.value if isinstance(received, Continue) else received.response
        )

    telemetry.registry.event(
        telemetry.BACKEND_RESPONSE,
        {"system_time": time.time_ns()},
        {"backend": client.backend_name, "config": config, "response": response},
    )

    # on_call_end; a Halt replaces the response
    ended = invoke(all_hooks, HookStage.ON_CALL_END, response, before=(client,), after=(context,))
    if isinstance(ended, Err):
        return fail(HookStageError(HookStage.ON_CALL_END, ended.reason))
    response = _as_response(ended.value if isinstance(ended, Continue) else ended.response)

    updated = append_exchange(context, content, response)
    updated = await maybe_compact(updated, descriptor, all_hooks)

    telemetry.registry.stop("call", start_time, {**meta, "response": response, "context": updated})
    return Ok(Completion(response, updated))


# ------------------------------------------------------------------
# Streaming call
# ------------------------------------------------------------------


async def stream(
    client: Client,
    content: Any,
    context: Context | None = None,
    *,
    hooks: Hook | Iterable[Hook] | None = None,
    **options: Any,
) -> Result[StreamResult]:
    """Start a streaming exchange. Returns ``Ok(StreamResult)`` or ``Err(error)``.

    The returned context holds the (possibly compacted) history plus the
    user message; the assistant message is appended by the caller, e.g.
    with ``StreamResult.complete()``.
    """
    if context is None:
        context, content = seed_context(content)
    if _is_empty(content):
        return Err(ValidationError("content cannot be empty"))

    all_hooks = merge(client.hooks, hooks)
    descriptor = client.compaction
    config = client.backend_config
    meta = {"client": client, "content": content, "context": context}
    start_time = telemetry.registry.start("stream", meta)

    started = invoke(all_hooks, HookStage.ON_STREAM_START, content, before=(client,), after=(context,))
    if isinstance(started, Err):
        return Err(HookStageError(HookStage.ON_STREAM_START, started.reason))
    if isinstance(started, Halt):
        return Err(StreamError("halted_by_hook"))

    context = await maybe_compact(context, descriptor, all_hooks)
    messages = build_messages(client, started.value, context)

    _emit_backend_request(client, config, messages)
    requested = invoke(all_hooks, HookStage.ON_BACKEND_REQUEST, messages, before=(config,))
    if isinstance(requested, Err):
        return Err(HookStageError(HookStage.ON_BACKEND_REQUEST, requested.reason))
    if isinstance(requested, Halt):
        return Err(StreamError("halted_by_hook"))

    result = await client.backend.stream(config, requested.value, options)
    if isinstance(result, Err):
        return Err(BackendError(client.backend_name, result.reason))

    received: list[StreamChunk] = []
    chunks = instrument_stream(
        result.value, client, context, all_hooks, start_time, {**meta, "context": context}, received
    )
    return Ok(StreamResult(chunks, context.add_message(Role.USER, content), received))


async def instrument_stream(
    chunks: AsyncIterator[StreamChunk],
    client: Client,
    context: Context,
    hooks: Sequence[Hook],
    start_time: int,
    meta: dict[str, Any],
    received: list[StreamChunk] | None = None,
) -> AsyncIterator[StreamChunk]:
    """Fire on_stream_chunk per pulled chunk and on_stream_end on exhaustion.

    Pulled chunks are appended to ``received`` when given.
    """
    async for chunk in chunks:
        if received is not None:
            received.append(chunk)
        notify(hooks, HookStage.ON_STREAM_CHUNK, client, chunk, context)
        telemetry.registry.event(telemetry.STREAM_CHUNK, {}, {**meta, "chunk": chunk})
        yield chunk
    notify(hooks, HookStage.ON_STREAM_END, client, context)
    telemetry.registry.stop("stream", start_time, meta)


# ------------------------------------------------------------------
# Compaction sub-pipeline
# ------------------------------------------------------------------


async def maybe_compact(
    context: Context,
    descriptor: CompactionDescriptor | None,
    hooks: Sequence[Hook],
) -> Context:
    """Run auto-compaction if the strategy asks for it. Never fails.

    Returns the compacted context on success, otherwise the context it was
    given.
    """
    if descriptor is None:
        return context

    meta = {"strategy": descriptor.name, "config": descriptor.config, "context": context}

    try:
        due = descriptor.should_compact(context)
    except Exception as e:
        logger.exception("Compaction (%s) should_compact raised", descriptor.name)
        telemetry.registry.event(telemetry.COMPACTION_ERROR, {"duration": 0}, {**meta, "reason": e})
        return context
    if not due:
        return context

    start_time = telemetry.registry.start("compaction", meta)

    def compaction_failed(reason: Any) -> Context:
        telemetry.registry.event(
            telemetry.COMPACTION_ERROR,
            {"duration": time.monotonic_ns() - start_time},
            {**meta, "reason": reason},
        )
        return context

    started = invoke(
        hooks,
        HookStage.ON_COMPACTION_START,
        context,
        after=(descriptor.strategy, descriptor.config),
    )
    if isinstance(started, Halt):
        logger.info("Compaction (%s) skipped by hook", descriptor.name)
        # close the span; nothing was compacted
        telemetry.registry.stop(
            "compaction",
            start_time,
            {**meta, "skipped": True},
            {
                "messages_before": context.message_count,
                "messages_after": context.message_count,
            },
        )
        return context
    if isinstance(started, Err):
        logger.warning("on_compaction_start failed: %s", started.reason)
        return compaction_failed(HookStageError(HookStage.ON_COMPACTION_START, started.reason))

    to_compact = started.value
    try:
        result = await descriptor.compact(to_compact)
    except Exception as e:
        logger.exception("Compaction (%s) raised", descriptor.name)
        return compaction_failed(e)

    if isinstance(result, Err):
        logger.warning("Compaction (%s) failed: %s", descriptor.name, result.reason)
        return compaction_failed(result.reason)

    compacted = result.value
    telemetry.registry.stop(
        "compaction",
        start_time,
        {**meta, "context": compacted},
        {
            "messages_before": to_compact.message_count,
            "messages_after": compacted.message_count,
        },
    )
    logger.info(
        "Compacted context (%s): %d -> %d messages",
        descriptor.name,
        to_compact.message_count,
        compacted.message_count,
    )

    ended = invoke(hooks, HookStage.ON_COMPACTION_END, compacted, after=(descriptor.strategy,))
    if isinstance(ended, Continue):
        return ended.value
    logger.warning("on_compaction_end did not continue (%r), keeping compacted context", ended)
    return compacted


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def build_messages(client: Client, content: Any, context: Context) -> list[Message]:
    """Optional system message + context history + the new user message."""
    messages: list[Message] = []
    if client.system_prompt is not None:
        messages.append(Message.new(Role.SYSTEM, client.system_prompt))
    messages.extend(context.messages)
    messages.append(Message.new(Role.USER, content))
    return messages


def append_exchange(context: Context, content: Any, response: Response) -> Context:
    """Append the user/assistant pair and accumulate total_tokens."""
    updated = context.add_message(Role.USER, content).add_message(
        Role.ASSISTANT, response.content, response.metadata
    )
    tokens = response.total_tokens
    if response.usage and tokens is not None:
        updated = updated.put_metadata(TOTAL_TOKENS, updated.total_tokens + tokens)
    return updated


def seed_context(content: Any) -> tuple[Context, Any]:
    """Split a list of Messages into (history context, last message content)."""
    if (
        isinstance(content, (list, tuple))
        and content
        and all(isinstance(m, Message) for m in content)
    ):
        *history, last = content
        return Context.new(history), last.content
    return Context.new(), content


def _is_empty(content: Any) -> bool:
    return content is None or (isinstance(content, (str, list, tuple)) and len(content) == 0)


def _as_response(value: Any) -> Response:
    return value if isinstance(value, Response) else Response(content=value)


def _emit_backend_request(client: Client, config: dict[str, Any], messages: list[Message]) -> None:
    telemetry.registry.event(
        telemetry.BACKEND_REQUEST,
        {"system_time": time.time_ns()},
        {"backend": client.backend_name, "config": config, "messages": messages},
    )
