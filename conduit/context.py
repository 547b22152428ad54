"""Conversation context: immutable message history plus metadata.

Every operation returns a new Context. The runtime threads the returned
value back to the caller, so a Context is never shared mutable state.
Metadata is a read-only view over a copy owned by each Context value.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

from conduit.models import Message, Role

TOTAL_TOKENS = "total_tokens"
COMPACTED_AT = "compacted_at"
COMPACTION_STRATEGY = "compaction_strategy"


@dataclass(frozen=True)
class Context:
    messages: tuple[Message, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "messages", tuple(self.messages))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @classmethod
    def new(
        cls,
        messages: Iterable[Message] = (),
        metadata: Mapping[str, Any] | None = None,
    ) -> Context:
        return cls(messages=tuple(messages), metadata=dict(metadata or {}))

    def add_message(
        self,
        role: Role | str,
        content: Any,
        metadata: dict[str, Any] | None = None,
    ) -> Context:
        message = Message.new(role, content, metadata)
        return replace(self, messages=self.messages + (message,))

    def with_messages(self, messages: Iterable[Message]) -> Context:
        """Replace the message list, keeping metadata."""
        return replace(self, messages=tuple(messages))

    def clear(self) -> Context:
        """Drop all messages, keeping metadata."""
        return replace(self, messages=())

    def put_metadata(self, key: str, value: Any) -> Context:
        return replace(self, metadata={**self.metadata, key: value})

    def get_metadata(self, key: str, default: Any = None) -> Any:
        return self.metadata.get(key, default)

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def last_message(self) -> Message | None:
        return self.messages[-1] if self.messages else None

    @property
    def total_tokens(self) -> int:
        """Cumulative tokens recorded by the runtime (0 if none yet)."""
        return self.metadata.get(TOTAL_TOKENS, 0)
