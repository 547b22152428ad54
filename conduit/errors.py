"""Structured error taxonomy.

Failures are returned as ``Err(reason)`` where reason is one of the error
values below, or any unstructured value passed through from a collaborator.
Each error renders to a stable, human-readable string.

    match = errors.message(HookStageError("on_call_start", "blocked"))
    # "Hook on_call_start error: blocked"
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ConfigurationError(ValueError):
    """Raised for invalid client configuration (e.g. a bad compaction descriptor)."""


def format_reason(reason: Any) -> str:
    if isinstance(reason, str):
        return reason
    if isinstance(reason, Enum):
        return str(reason.value)
    if isinstance(reason, ConduitError):
        return reason.message
    return repr(reason)


@dataclass(frozen=True)
class ConduitError(ABC):
    """Base for structured errors."""

    stage = "unknown"

    @property
    @abstractmethod
    def reason(self) -> Any: ...

    @property
    @abstractmethod
    def message(self) -> str: ...

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class HookStageError(ConduitError):
    """A transforming hook returned Err at the given stage."""

    hook_stage: str
    inner: Any

    stage = "hook"

    @property
    def reason(self) -> Any:
        return self.inner

    @property
    def message(self) -> str:
        return f"Hook {format_reason(self.hook_stage)} error: {format_reason(self.inner)}"


@dataclass(frozen=True)
class BackendError(ConduitError):
    """The backend collaborator failed."""

    backend: str
    inner: Any

    stage = "backend"

    @property
    def reason(self) -> Any:
        return self.inner

    @property
    def message(self) -> str:
        return f"Backend {self.backend} error: {format_reason(self.inner)}"


@dataclass(frozen=True)
class ValidationError(ConduitError):
    """Input validation failed."""

    text: str

    stage = "validation"

    @property
    def reason(self) -> Any:
        return self.text

    @property
    def message(self) -> str:
        return f"Validation error: {self.text}"


@dataclass(frozen=True)
class StreamError(ConduitError):
    """Streaming could not be started or was aborted."""

    inner: Any

    stage = "stream"

    @property
    def reason(self) -> Any:
        return self.inner

    @property
    def message(self) -> str:
        return f"Stream error: {format_reason(self.inner)}"


@dataclass(frozen=True)
class CompactionError(ConduitError):
    """A compaction strategy failed (e.g. the summarization call errored)."""

    strategy: str
    inner: Any

    stage = "compaction"

    @property
    def reason(self) -> Any:
        return self.inner

    @property
    def message(self) -> str:
        return f"Compaction {self.strategy} error: {format_reason(self.inner)}"


@dataclass(frozen=True)
class OpaqueError(ConduitError):
    """Unstructured reason wrapped for uniform handling."""

    inner: Any

    @property
    def reason(self) -> Any:
        return self.inner

    @property
    def message(self) -> str:
        return f"Error: {format_reason(self.inner)}"


# ------------------------------------------------------------------
# Helpers accepting any reason (structured or not)
# ------------------------------------------------------------------


def stage(reason: Any) -> str:
    """Stage name: hook, backend, validation, stream, compaction or unknown."""
    return reason.stage if isinstance(reason, ConduitError) else "unknown"


def reason(error: Any) -> Any:
    """Underlying reason of a structured error; unstructured values pass through."""
    return error.reason if isinstance(error, ConduitError) else error


def message(error: Any) -> str:
    if isinstance(error, ConduitError):
        return error.message
    return OpaqueError(error).message


def structured(error: Any) -> bool:
    return isinstance(error, ConduitError) and not isinstance(error, OpaqueError)
