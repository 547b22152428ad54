"""Anthropic Messages API backend over direct httpx calls (no vendor SDK).

Auth, timeouts and connection limits come from Settings. HTTP and API
failures are returned as ``Err`` with a readable reason; nothing is retried.
"""

from __future__ import annotations

import base64
import json
import logging
from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any

import httpx

from conduit.backends.base import Backend
from conduit.config import Settings
from conduit.content import Part, PartType
from conduit.models import FinishReason, Message, Response, Role, StreamChunk
from conduit.result import Err, Ok, Result

logger = logging.getLogger(__name__)

# Anthropic API version header
_API_VERSION = "2023-06-01"

# Call options forwarded verbatim into the request payload
_PASSTHROUGH_OPTIONS = ("temperature", "top_p", "top_k", "stop_sequences", "thinking", "metadata")

_STOP_REASONS: dict[str, FinishReason] = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "max_tokens": FinishReason.MAX_TOKENS,
    "refusal": FinishReason.CONTENT_FILTER,
}


def map_stop_reason(stop_reason: str | None) -> FinishReason | str | None:
    """Known reasons map to FinishReason; others (e.g. tool_use) pass through."""
    if not stop_reason:
        return None
    return _STOP_REASONS.get(stop_reason, stop_reason)


def _parse_sse_event(data: dict[str, Any]) -> StreamChunk | None:
    """Parse an Anthropic SSE event dict into a StreamChunk.

    Skips ping keepalives. stop_reason and output usage arrive in
    message_delta. In-stream errors (HTTP 200 with an error event) become an
    ``error`` chunk.
    """
    event_type = data.get("type")

    if event_type == "ping":
        return None

    if event_type == "error":
        error = data.get("error", {})
        return StreamChunk(
            type="error",
            content=f"{error.get('type', 'unknown')}: {error.get('message', '')}",
            metadata={"backend": AnthropicBackend.name},
        )

    if event_type == "content_block_delta":
        delta = data.get("delta", {})
        if delta.get("type") == "text_delta":
            return StreamChunk(
                content=delta.get("text", ""),
                metadata={"partial": True, "backend": AnthropicBackend.name},
            )
        if delta.get("type") == "thinking_delta":
            return StreamChunk(
                type="thinking",
                content=delta.get("thinking", ""),
                metadata={"partial": True, "backend": AnthropicBackend.name},
            )
        return None

    if event_type == "message_delta":
        return StreamChunk(
            type="done",
            content=None,
            metadata={
                "backend": AnthropicBackend.name,
                "finish_reason": map_stop_reason(data.get("delta", {}).get("stop_reason")),
                "usage": data.get("usage", {}),
            },
        )

    return None


def part_to_block(part: Part) -> dict[str, Any]:
    """Convert a content part into an Anthropic content block."""
    if part.type == PartType.TEXT:
        return {"type": "text", "text": part.text or ""}
    if part.type == PartType.IMAGE:
        return {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": part.media_type,
                "data": base64.b64encode(part.data or b"").decode("ascii"),
            },
        }
    if part.type == PartType.IMAGE_URL:
        return {"type": "image", "source": {"type": "url", "url": part.url}}
    if part.media_type == "application/pdf":
        return {
            "type": "document",
            "title": part.filename,
            "source": {
                "type": "base64",
                "media_type": part.media_type,
                "data": base64.b64encode(part.data or b"").decode("ascii"),
            },
        }
    return {
        "type": "document",
        "title": part.filename,
        "source": {
            "type": "text",
            "media_type": "text/plain",
            "data": (part.data or b"").decode("utf-8", errors="replace"),
        },
    }


def format_messages(messages: Sequence[Message]) -> tuple[str, list[dict[str, Any]]]:
    """Split out system text and convert the rest to API message dicts."""
    system_parts: list[str] = []
    formatted: list[dict[str, Any]] = []
    for message in messages:
        if message.role == Role.SYSTEM:
            system_parts.append(message.text)
            continue
        formatted.append(
            {
                "role": message.role.value,
                "content": [part_to_block(p) for p in message.content],
            }
        )
    return "\n\n".join(system_parts), formatted


def parse_response(data: dict[str, Any]) -> Response:
    text_parts: list[str] = []
    thinking_parts: list[str] = []
    for block in data.get("content", []):
        if block.get("type") == "text":
            text_parts.append(block.get("text", ""))
        elif block.get("type") == "thinking":
            thinking_parts.append(block.get("thinking", ""))

    usage = {k: v for k, v in (data.get("usage") or {}).items() if isinstance(v, int)}
    return Response(
        content="".join(text_parts),
        thinking="".join(thinking_parts) or None,
        finish_reason=map_stop_reason(data.get("stop_reason")),
        usage=usage,
        metadata={
            "backend": AnthropicBackend.name,
            "model": data.get("model"),
            "id": data.get("id"),
        },
    )


def _error_reason(response: httpx.Response, body: bytes | None = None) -> str:
    try:
        error_data = json.loads(body if body is not None else response.content)
        error_type = error_data.get("error", {}).get("type", "unknown")
        error_msg = error_data.get("error", {}).get("message", "unknown error")
    except (ValueError, AttributeError):
        text = (body if body is not None else response.content).decode(errors="replace")
        return f"HTTP {response.status_code}: {text[:500]}"
    return f"HTTP {response.status_code}: {error_type} - {error_msg}"


class AnthropicBackend(Backend):
    """Backend for the Anthropic Messages API.

    The httpx client is created on first use (or injected, e.g. with an
    ``httpx.MockTransport`` in tests) and released by ``close()``.
    """

    name = "anthropic"

    def __init__(
        self,
        settings: Settings | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._http = http

    async def start(self) -> None:
        """Initialize the httpx client with auth and timeout settings."""
        if self._http is not None:
            return
        settings = self._settings

        headers: dict[str, str] = {
            "anthropic-version": _API_VERSION,
            "content-type": "application/json",
        }

        api_key = settings.anthropic_api_key or ""
        auth_token = settings.anthropic_auth_token or ""

        if auth_token:
            headers["authorization"] = f"Bearer {auth_token}"
        elif api_key:
            headers["x-api-key"] = api_key
        else:
            logger.warning(
                "Neither ANTHROPIC_API_KEY nor ANTHROPIC_AUTH_TOKEN is set -- "
                "API calls will fail"
            )

        timeout = httpx.Timeout(
            connect=settings.api_timeout_connect,
            read=settings.api_timeout_read,
            write=10.0,
            pool=10.0,
        )
        limits = httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        )

        self._http = httpx.AsyncClient(
            base_url=settings.api_base_url,
            headers=headers,
            timeout=timeout,
            limits=limits,
        )
        logger.info("httpx client initialized (auth: %s)", "Bearer token" if auth_token else "API key")

    async def close(self) -> None:
        """Clean up httpx client."""
        if self._http:
            await self._http.aclose()
            self._http = None

    def build_payload(
        self,
        config: Mapping[str, Any],
        messages: Sequence[Message],
        options: Mapping[str, Any],
        stream: bool = False,
    ) -> dict[str, Any]:
        """Build the Messages API request payload (shared by call and stream)."""
        system_prompt, formatted = format_messages(messages)
        payload: dict[str, Any] = {
            "model": config.get("model", self._settings.model),
            "max_tokens": options.get("max_tokens", config.get("max_tokens", self._settings.max_tokens)),
            "messages": formatted,
        }
        if system_prompt:
            payload["system"] = [
                {
                    "type": "text",
                    "text": system_prompt,
                    "cache_control": {"type": "ephemeral"},
                }
            ]
        for key in _PASSTHROUGH_OPTIONS:
            if key in options:
                payload[key] = options[key]
        if stream:
            payload["stream"] = True
        return payload

    async def call(
        self,
        config: Mapping[str, Any],
        messages: Sequence[Message],
        options: Mapping[str, Any],
    ) -> Result[Response]:
        await self.start()
        payload = self.build_payload(config, messages, options)
        logger.debug("POST /v1/messages model=%s messages=%d", payload["model"], len(payload["messages"]))

        try:
            response = await self._http.post("/v1/messages", json=payload)
        except httpx.TimeoutException as e:
            logger.warning("API request timed out: %s", e)
            return Err(f"timeout: {e}")
        except httpx.HTTPError as e:
            logger.warning("HTTP error: %s", e)
            return Err(f"http_error: {e}")

        if response.status_code != 200:
            reason = _error_reason(response)
            logger.warning("Anthropic API error: %s", reason)
            return Err(reason)

        return Ok(parse_response(response.json()))

    async def stream(
        self,
        config: Mapping[str, Any],
        messages: Sequence[Message],
        options: Mapping[str, Any],
    ) -> Result[AsyncIterator[StreamChunk]]:
        await self.start()
        payload = self.build_payload(config, messages, options, stream=True)
        request = self._http.build_request("POST", "/v1/messages", json=payload)

        try:
            response = await self._http.send(request, stream=True)
        except httpx.TimeoutException as e:
            logger.warning("API stream timed out: %s", e)
            return Err(f"timeout: {e}")
        except httpx.HTTPError as e:
            logger.warning("HTTP error: %s", e)
            return Err(f"http_error: {e}")

        if response.status_code != 200:
            body = await response.aread()
            await response.aclose()
            reason = _error_reason(response, body)
            logger.warning("Anthropic API stream error: %s", reason)
            return Err(reason)

        return Ok(self._iter_chunks(response))

    async def _iter_chunks(self, response: httpx.Response) -> AsyncIterator[StreamChunk]:
        """Yield chunks from ``data:`` lines. Closes the response when done or abandoned."""
        try:
            async for line in response.aiter_lines():
                if not line.startswith("data: "):
                    continue
                chunk = _parse_sse_event(json.loads(line[6:]))
                if chunk is None:
                    continue
                yield chunk
                if chunk.type == "error":
                    return
        finally:
            await response.aclose()

    def introspect(self, config: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "provider": self.name,
            "model": config.get("model", self._settings.model),
            "operation": "chat",
            "capabilities": ["streaming", "vision", "documents", "thinking"],
        }
