"""Conduit -- client-side orchestration for generation backends.

    client = Client(AnthropicBackend(), system_prompt="You are helpful.")
    result = await call(client, "Hello!", Context.new())
    match result:
        case Ok(completion):
            print(completion.response.content)
        case Err(error):
            print(errors.message(error))

Public API:
    call, stream          - Execution engine (runtime)
    Client                - Backend, system prompt, hooks, auto-compaction
    Context, Message      - Immutable conversation state
    Hook, Continue, Halt  - Lifecycle hooks
    Ok, Err               - Result values
"""

from conduit import errors, telemetry
from conduit.backends import AnthropicBackend, Backend, MockBackend, QueuedMockBackend
from conduit.client import Client
from conduit.compaction import (
    CompactionDescriptor,
    CompactionStrategy,
    SlidingWindow,
    Summarize,
)
from conduit.config import Settings, configure_logging
from conduit.context import Context
from conduit.errors import ConfigurationError
from conduit.hooks import Continue, Halt, Hook, HookStage
from conduit.models import FinishReason, Message, Response, Role, StreamChunk
from conduit.result import Err, Ok, Result
from conduit.runtime import Completion, StreamResult, call, stream

__all__ = [
    "AnthropicBackend",
    "Backend",
    "Client",
    "CompactionDescriptor",
    "CompactionStrategy",
    "Completion",
    "ConfigurationError",
    "Context",
    "Continue",
    "Err",
    "FinishReason",
    "Halt",
    "Hook",
    "HookStage",
    "Message",
    "MockBackend",
    "Ok",
    "QueuedMockBackend",
    "Response",
    "Result",
    "Role",
    "Settings",
    "SlidingWindow",
    "StreamChunk",
    "StreamResult",
    "Summarize",
    "call",
    "configure_logging",
    "errors",
    "stream",
    "telemetry",
]
