"""Tagged result values shared by backends, hooks, compaction and the runtime.

Expected failures travel as ``Err`` values instead of exceptions. Exceptions
are reserved for programmer and configuration errors.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome carrying a value."""

    value: T


@dataclass(frozen=True)
class Err:
    """Failed outcome carrying a reason (structured error or any value)."""

    reason: Any


Result = Ok[T] | Err
