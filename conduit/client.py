"""Client configuration: backend, system prompt, hooks and auto-compaction."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from functools import cached_property
from typing import Any

from conduit import hooks as _hooks
from conduit.backends.base import Backend
from conduit.compaction import CompactionDescriptor, resolve_compaction
from conduit.config import Settings
from conduit.hooks import Hook

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Client:
    """Immutable client configuration.

        client = Client(
            MockBackend(),
            {"response": "Hello!"},
            system_prompt="You are helpful.",
            hooks=[LoggingHook()],
            auto_compaction=("sliding_window", {"window_size": 30}),
        )

    The compaction descriptor is resolved on first use and cached; an
    invalid descriptor raises ConfigurationError at that point.
    """

    backend: Backend
    backend_config: dict[str, Any] = field(default_factory=dict)
    system_prompt: str | None = None
    hooks: Hook | Iterable[Hook] | None = ()
    auto_compaction: Any = None
    settings: Settings | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "hooks", _hooks.normalize(self.hooks))
        object.__setattr__(self, "backend_config", dict(self.backend_config or {}))

    @property
    def backend_name(self) -> str:
        return self.backend.name

    @cached_property
    def compaction(self) -> CompactionDescriptor | None:
        resolved = resolve_compaction(self.auto_compaction, self, settings=self.settings)
        if resolved is not None:
            logger.debug("Resolved auto-compaction: %s", resolved.introspect())
        return resolved

    def without_compaction(self) -> Client:
        """Copy of this client with auto-compaction disabled."""
        return replace(self, auto_compaction=None)

    def introspect(self) -> dict[str, Any]:
        return self.backend.introspect(self.backend_config)
