"""Sliding window compaction: keep only the most recent messages.

Older messages are dropped and cannot be recovered. Use summarization when
the early conversation must stay available to the model.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

from conduit.compaction.base import CompactionStrategy
from conduit.context import Context
from conduit.result import Ok, Result

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = 20


class SlidingWindowConfig(BaseModel):
    window_size: int = Field(DEFAULT_WINDOW_SIZE, gt=0)


class SlidingWindow(CompactionStrategy):
    name = "sliding_window"
    config_model = SlidingWindowConfig

    def should_compact(self, context: Context, config: Any) -> bool:
        cfg = self.validate_config(config)
        return context.message_count > cfg.window_size

    async def compact(self, context: Context, config: Any) -> Result[Context]:
        cfg = self.validate_config(config)
        count = context.message_count
        if count <= cfg.window_size:
            return Ok(context)

        kept = context.messages[-cfg.window_size:]
        logger.debug("Sliding window dropped %d of %d messages", count - len(kept), count)
        return Ok(context.with_messages(kept))

    def introspect(self, config: Any) -> dict[str, Any]:
        cfg = self.validate_config(config)
        return {
            "strategy": self.name,
            "description": "Keeps last N messages",
            "window_size": cfg.window_size,
        }
