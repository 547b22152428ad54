"""Shared fixtures: telemetry capture and small client factories."""

from typing import Any

import pytest

from conduit import telemetry
from conduit.backends import MockBackend
from conduit.client import Client

# ---------------------------------------------------------------------------
# Telemetry capture
# ---------------------------------------------------------------------------


class EventRecorder:
    """Collects (event, measurements, metadata) tuples from the registry."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any], dict[str, Any]]] = []

    def __call__(self, event: str, measurements: dict, metadata: dict, config: Any) -> None:
        self.events.append((event, measurements, metadata))

    @property
    def names(self) -> list[str]:
        return [name for name, _, _ in self.events]

    def named(self, name: str) -> list[tuple[str, dict[str, Any], dict[str, Any]]]:
        return [e for e in self.events if e[0] == name]


@pytest.fixture
def recorder():
    rec = EventRecorder()
    telemetry.attach("test-recorder", telemetry.event_names(), rec)
    yield rec
    telemetry.detach("test-recorder")


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_backend() -> MockBackend:
    return MockBackend()


@pytest.fixture
def client(mock_backend) -> Client:
    return Client(mock_backend, {"response": "Hello!"})

