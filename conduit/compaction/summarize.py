"""Summarization compaction: replace older messages with a generated summary.

The older prefix of the conversation is rendered as a plain transcript and
sent to a summarization client (which may use a different backend or model
than the primary client). The result is

    [user "[Conversation Summary]\\n\\n<summary>"] + last ``keep_last`` messages

Without ``max_tokens`` the strategy never triggers automatically; it can
still be run through ``conduit.compaction.compact``.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from conduit.compaction.base import CompactionStrategy
from conduit.content import describe
from conduit.context import COMPACTED_AT, COMPACTION_STRATEGY, Context
from conduit.errors import CompactionError, ConfigurationError
from conduit.models import Message, Response, Role
from conduit.result import Err, Ok, Result

logger = logging.getLogger(__name__)

DEFAULT_KEEP_LAST = 3

SUMMARY_MARKER = "[Conversation Summary]"

DEFAULT_PROMPT = """\
Summarize the conversation so far, preserving:
- What was accomplished
- Current work in progress
- Files involved and their status
- Next steps / actions needed
- Key user requests, constraints, preferences

Be concise but comprehensive. This summary will replace the conversation history.

<conversation>
{conversation}
</conversation>
"""


class SummarizeConfig(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    # conduit.client.Client; typed loosely to keep this module import-light
    client: Any = None
    keep_last: int = Field(DEFAULT_KEEP_LAST, ge=0)
    prompt: str | None = None
    max_tokens: int | None = Field(None, gt=0)


class Summarize(CompactionStrategy):
    name = "summarize"
    config_model = SummarizeConfig

    def should_compact(self, context: Context, config: Any) -> bool:
        cfg = self.validate_config(config)
        if cfg.max_tokens is None:
            return False
        return context.total_tokens >= cfg.max_tokens

    async def compact(self, context: Context, config: Any) -> Result[Context]:
        # Deferred: the runtime imports compaction
        from conduit import runtime

        cfg = self.validate_config(config)
        if cfg.client is None:
            raise ConfigurationError("summarize compaction requires a client")

        count = context.message_count
        if count <= cfg.keep_last:
            return Ok(context)

        split = count - cfg.keep_last
        to_summarize = context.messages[:split]
        to_keep = context.messages[split:]

        prompt = build_prompt(format_transcript(to_summarize), cfg.prompt)
        result = await runtime.call(cfg.client, prompt, Context.new())
        if isinstance(result, Err):
            logger.warning("Summarization call failed: %s", result.reason)
            return Err(CompactionError(self.name, result.reason))

        summary = _summary_text(result.value.response)
        summary_message = Message.new(Role.USER, f"{SUMMARY_MARKER}\n\n{summary}")
        compacted = (
            context.with_messages((summary_message, *to_keep))
            .put_metadata(COMPACTED_AT, datetime.now(UTC))
            .put_metadata(COMPACTION_STRATEGY, self.name)
        )
        logger.info(
            "Summarized %d messages into %d chars, kept last %d",
            len(to_summarize),
            len(summary),
            len(to_keep),
        )
        return Ok(compacted)

    def introspect(self, config: Any) -> dict[str, Any]:
        cfg = self.validate_config(config)
        return {
            "strategy": self.name,
            "description": "LLM-based conversation summarization",
            "keep_last": cfg.keep_last,
            "max_tokens": cfg.max_tokens,
        }


def format_transcript(messages: tuple[Message, ...] | list[Message]) -> str:
    """Render messages as ``Role: text`` blocks separated by blank lines."""
    blocks = []
    for message in messages:
        parts = [text for text in (describe(p) for p in message.content) if text is not None]
        blocks.append(f"{message.role.value.capitalize()}: " + "\n".join(parts))
    return "\n\n".join(blocks)


def build_prompt(conversation: str, template: str | None = None) -> str:
    return (template or DEFAULT_PROMPT).replace("{conversation}", conversation)


def _summary_text(response: Response) -> str:
    if response.text is not None:
        return response.text
    return json.dumps(response.content, default=str)
