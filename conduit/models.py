"""Shared data models: messages, responses and stream chunks.

Kept free of runtime imports so compaction strategies, backends and the
runtime can all depend on it without cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from conduit import content as _content
from conduit.content import Part


class Role(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class FinishReason(StrEnum):
    STOP = "stop"
    MAX_TOKENS = "max_tokens"
    CONTENT_FILTER = "content_filter"
    ERROR = "error"


@dataclass(frozen=True)
class Message:
    """A single message in a conversation. Content is always a tuple of parts."""

    role: Role
    content: tuple[Part, ...]
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def new(cls, role: Role | str, content: Any, metadata: dict[str, Any] | None = None) -> Message:
        return cls(
            role=Role(role),
            content=_content.wrap(content),
            metadata=dict(metadata or {}),
        )

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "\n".join(p.text for p in self.content if p.text is not None)


@dataclass(frozen=True)
class Response:
    """Normalized backend response.

    finish_reason is a FinishReason or any backend-specific extension string.
    usage keys: input_tokens, output_tokens, total_tokens, thinking_tokens.
    """

    content: Any = None
    thinking: str | None = None
    finish_reason: FinishReason | str | None = None
    usage: dict[str, int] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int | None:
        """Explicit total, else input + output, else None when nothing is known."""
        if "total_tokens" in self.usage:
            return self.usage["total_tokens"]
        input_tokens = self.usage.get("input_tokens", 0)
        output_tokens = self.usage.get("output_tokens", 0)
        if input_tokens == 0 and output_tokens == 0:
            return None
        return input_tokens + output_tokens

    @property
    def text(self) -> str | None:
        return self.content if isinstance(self.content, str) else None

    @property
    def complete(self) -> bool:
        # end_turn is the Anthropic spelling that some backends pass through
        return self.finish_reason in (FinishReason.STOP, "end_turn")


@dataclass(frozen=True)
class StreamChunk:
    """A single element of a streamed response."""

    content: Any
    type: str = "content"
    metadata: dict[str, Any] = field(default_factory=dict)
