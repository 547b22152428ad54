"""Multi-modal content parts and the wrapping rules for message content."""

from __future__ import annotations

import json
from dataclasses import dataclass, is_dataclass, asdict
from enum import StrEnum
from typing import Any

from pydantic import BaseModel


class PartType(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    IMAGE_URL = "image_url"
    FILE = "file"


@dataclass(frozen=True)
class Part:
    """A single piece of message content."""

    type: PartType
    text: str | None = None
    url: str | None = None
    data: bytes | None = None
    media_type: str | None = None
    filename: str | None = None


def text(value: str) -> Part:
    return Part(type=PartType.TEXT, text=value)


def image(data: bytes, media_type: str = "image/png") -> Part:
    return Part(type=PartType.IMAGE, data=data, media_type=media_type)


def image_url(url: str) -> Part:
    return Part(type=PartType.IMAGE_URL, url=url)


def file(data: bytes, filename: str, media_type: str = "application/octet-stream") -> Part:
    return Part(type=PartType.FILE, data=data, filename=filename, media_type=media_type)


def wrap(content: Any) -> tuple[Part, ...]:
    """Convert arbitrary content into a tuple of parts.

    Strings become a text part, parts pass through, a sequence of parts is
    kept as-is. Structured values (mappings, lists, pydantic models,
    dataclasses) are JSON-encoded into a single text part.
    """
    if isinstance(content, str):
        return (text(content),)
    if isinstance(content, Part):
        return (content,)
    if isinstance(content, (list, tuple)):
        if not content:
            return ()
        if all(isinstance(item, Part) for item in content):
            return tuple(content)
        return (text(json.dumps(list(content), default=str)),)
    if isinstance(content, BaseModel):
        return (text(content.model_dump_json()),)
    if is_dataclass(content) and not isinstance(content, type):
        return (text(json.dumps(asdict(content), default=str)),)
    if isinstance(content, dict):
        return (text(json.dumps(content, default=str)),)
    return (text(str(content)),)


def describe(part: Part) -> str | None:
    """Render a part as transcript text (placeholders for binary parts)."""
    if part.type == PartType.TEXT:
        return part.text
    if part.type in (PartType.IMAGE, PartType.IMAGE_URL):
        return "[image]"
    if part.type == PartType.FILE:
        return f"[file: {part.filename}]"
    return None
