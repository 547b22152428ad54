"""Context compaction: strategies and descriptor resolution.

A client's ``auto_compaction`` is a descriptor in one of these forms:

    None / False                                  # disabled
    ("sliding_window", {"window_size": 30})
    ("summarize", {"max_tokens": 100_000, "keep_last": 5})
    ("summarize", {"max_tokens": 100_000, "client": summarizer})
    (Summarize, {"client": summarizer, "max_tokens": 50_000})
    (MyStrategy(), {...})
    CompactionDescriptor(strategy, config)

Descriptors are resolved once per client. The ``summarize`` shorthand needs
``max_tokens``. Any summarize descriptor without an explicit ``client``
summarizes with the primary client (with auto-compaction stripped so the
summary call cannot recurse); with no client to fall back on, resolution
raises ConfigurationError.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from conduit.compaction.base import CompactionStrategy
from conduit.compaction.sliding_window import SlidingWindow, SlidingWindowConfig
from conduit.compaction.summarize import Summarize, SummarizeConfig
from conduit.config import Settings
from conduit.context import Context
from conduit.errors import ConfigurationError
from conduit.result import Result

if TYPE_CHECKING:
    from conduit.client import Client

logger = logging.getLogger(__name__)

__all__ = [
    "CompactionDescriptor",
    "CompactionStrategy",
    "SlidingWindow",
    "SlidingWindowConfig",
    "Summarize",
    "SummarizeConfig",
    "compact",
    "resolve_compaction",
    "should_compact",
]


@dataclass(frozen=True)
class CompactionDescriptor:
    """A concrete strategy paired with its validated config."""

    strategy: CompactionStrategy
    config: Any = None

    @property
    def name(self) -> str:
        return self.strategy.name

    def should_compact(self, context: Context) -> bool:
        return self.strategy.should_compact(context, self.config)

    async def compact(self, context: Context) -> Result[Context]:
        return await self.strategy.compact(context, self.config)

    def introspect(self) -> dict[str, Any]:
        return self.strategy.introspect(self.config)


def resolve_compaction(
    descriptor: Any,
    client: Client | None = None,
    *,
    settings: Settings | None = None,
    require_trigger: bool = True,
) -> CompactionDescriptor | None:
    """Normalize a descriptor into a CompactionDescriptor (None when disabled).

    Raises ConfigurationError for anything that cannot be resolved.
    """
    if descriptor is None or descriptor is False:
        return None
    if isinstance(descriptor, CompactionDescriptor):
        return descriptor
    if isinstance(descriptor, CompactionStrategy) or _is_strategy_class(descriptor):
        descriptor = (descriptor, {})
    if not isinstance(descriptor, tuple) or len(descriptor) != 2:
        raise ConfigurationError(f"Invalid compaction descriptor: {descriptor!r}")

    kind, config = descriptor
    if config is None:
        config = {}

    if isinstance(kind, str):
        if not isinstance(config, Mapping):
            raise ConfigurationError(f"{kind} compaction config must be a mapping")
        return _resolve_shorthand(kind, dict(config), client, settings, require_trigger)

    if _is_strategy_class(kind):
        kind = kind()
    if isinstance(kind, Summarize):
        config = _with_summarizer(config, client)
    if isinstance(kind, CompactionStrategy):
        return CompactionDescriptor(kind, kind.validate_config(config))

    raise ConfigurationError(f"Unknown compaction strategy: {kind!r}")


def _resolve_shorthand(
    kind: str,
    config: dict[str, Any],
    client: Client | None,
    settings: Settings | None,
    require_trigger: bool,
) -> CompactionDescriptor:
    settings = settings or Settings()

    if kind == SlidingWindow.name:
        config.setdefault("window_size", settings.default_window_size)
        strategy = SlidingWindow()
        return CompactionDescriptor(strategy, strategy.validate_config(config))

    if kind == Summarize.name:
        if require_trigger and config.get("max_tokens") is None:
            raise ConfigurationError(
                "summarize auto-compaction requires max_tokens, "
                'e.g. ("summarize", {"max_tokens": 100_000})'
            )
        config = _with_summarizer(config, client)
        config.setdefault("keep_last", settings.default_keep_last)
        strategy = Summarize()
        return CompactionDescriptor(strategy, strategy.validate_config(config))

    raise ConfigurationError(
        f"Unknown compaction strategy: {kind!r} (expected 'sliding_window' or 'summarize')"
    )


def _with_summarizer(config: Any, client: Client | None) -> dict[str, Any]:
    """Summarize config with a client, defaulting to the primary client."""
    if isinstance(config, BaseModel):
        config = dict(config)
    elif not isinstance(config, Mapping):
        raise ConfigurationError("summarize compaction config must be a mapping")
    config = dict(config)
    if config.get("client") is None:
        if client is None:
            raise ConfigurationError("summarize compaction requires a client")
        config["client"] = client.without_compaction()
    return config


def _is_strategy_class(value: Any) -> bool:
    return isinstance(value, type) and issubclass(value, CompactionStrategy)


# ------------------------------------------------------------------
# Manual compaction
# ------------------------------------------------------------------


async def compact(context: Context, descriptor: Any) -> Result[Context]:
    """Compact a context with the given strategy, regardless of thresholds."""
    resolved = resolve_compaction(descriptor, require_trigger=False)
    if resolved is None:
        raise ConfigurationError("compact() requires a compaction strategy")
    return await resolved.compact(context)


def should_compact(context: Context, descriptor: Any) -> bool:
    resolved = resolve_compaction(descriptor, require_trigger=False)
    if resolved is None:
        return False
    return resolved.should_compact(context)
