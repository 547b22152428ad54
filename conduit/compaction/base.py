"""Compaction strategy contract."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, ClassVar

import pydantic
from pydantic import BaseModel

from conduit.context import Context
from conduit.errors import ConfigurationError
from conduit.result import Result

logger = logging.getLogger(__name__)


class CompactionStrategy(ABC):
    """Decides whether a Context should shrink and produces the smaller Context.

    Subclasses implement ``compact``. ``should_compact`` defaults to True and
    ``introspect`` to ``{"strategy": name}``. Strategies with a
    ``config_model`` validate their config through it.
    """

    name: ClassVar[str] = "custom"
    config_model: ClassVar[type[BaseModel] | None] = None

    def should_compact(self, context: Context, config: Any) -> bool:
        return True

    @abstractmethod
    async def compact(self, context: Context, config: Any) -> Result[Context]:
        """Return ``Ok(compacted_context)`` or ``Err(reason)``."""

    def introspect(self, config: Any) -> dict[str, Any]:
        return {"strategy": self.name}

    def validate_config(self, config: Any) -> Any:
        """Coerce a mapping (or model instance) into the strategy's config model."""
        if self.config_model is None:
            return dict(config) if isinstance(config, Mapping) else config
        try:
            return self.config_model.model_validate(config or {})
        except pydantic.ValidationError as e:
            raise ConfigurationError(f"Invalid {self.name} config: {e}") from e

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
