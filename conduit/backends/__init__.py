"""Backends -- pluggable generation units called by the runtime."""

from conduit.backends.anthropic import AnthropicBackend
from conduit.backends.base import Backend
from conduit.backends.mock import MockBackend, QueuedMockBackend

__all__ = ["AnthropicBackend", "Backend", "MockBackend", "QueuedMockBackend"]
