"""Test utilities for deterministic agent testing.

    client = mock_client([
        {"action": "search", "query": "test"},
        Err("rate_limited"),
        lambda messages: {"echo": len(messages)},
    ])
    ...
    verify(client)  # raises AssertionError if responses are left unused
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from conduit.backends.mock import EXHAUSTED, QueuedMockBackend
from conduit.client import Client
from conduit.result import Err

logger = logging.getLogger(__name__)


def mock_client(
    responses: Iterable[Any],
    *,
    default: Any = Err(EXHAUSTED),
    model: str = "mock",
    **client_options: Any,
) -> Client:
    """Client whose backend pops one queued response per call or stream.

    Extra keyword arguments (system_prompt, hooks, auto_compaction) are
    passed to ``Client``.
    """
    backend = QueuedMockBackend(responses, default=default, model=model)
    return Client(backend, {"model": model}, **client_options)


def verify(*clients: Client) -> None:
    """Assert that every queued response of the given mock clients was consumed."""
    for client in clients:
        backend = client.backend
        if not isinstance(backend, QueuedMockBackend):
            raise TypeError(f"verify() expects a mock_client, got backend {backend!r}")
        if backend.remaining > 0:
            raise AssertionError(
                f"mock client had {backend.remaining} of {backend.expected} responses unused"
            )
