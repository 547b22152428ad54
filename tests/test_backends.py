"""Tests for the mock backends and the Anthropic httpx backend.

The Anthropic backend is exercised through an injected
httpx.AsyncClient with a MockTransport, so no network access is needed.
"""

import json
import logging

import httpx
import pytest

from conduit.backends import AnthropicBackend, MockBackend, QueuedMockBackend
from conduit.backends.anthropic import format_messages, map_stop_reason, parse_response, part_to_block
from conduit.client import Client
from conduit.config import Settings
from conduit.content import file, image, image_url, text
from conduit.context import Context
from conduit.errors import BackendError
from conduit.models import FinishReason, Message, Response
from conduit.result import Err, Ok
from conduit.runtime import call, stream


def _make_settings(**overrides) -> Settings:
    values = {"ANTHROPIC_API_KEY": "", "ANTHROPIC_AUTH_TOKEN": ""}
    values.update(overrides)
    return Settings(**values)


def _make_backend(handler, **settings) -> AnthropicBackend:
    http = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="https://api.anthropic.test",
    )
    return AnthropicBackend(_make_settings(**settings), http=http)


def _api_message(text_value="Hello there", stop_reason="end_turn"):
    return {
        "id": "msg_01",
        "type": "message",
        "role": "assistant",
        "model": "claude-sonnet-4-5-20250514",
        "content": [{"type": "text", "text": text_value}],
        "stop_reason": stop_reason,
        "usage": {"input_tokens": 12, "output_tokens": 5},
    }


def _sse(*events) -> bytes:
    lines = []
    for event in events:
        lines.append(f"event: {event['type']}")
        lines.append(f"data: {json.dumps(event)}")
        lines.append("")
    return ("\n".join(lines) + "\n").encode()


# ---------------------------------------------------------------------------
# MockBackend
# ---------------------------------------------------------------------------


class TestMockBackend:
    @pytest.mark.asyncio
    async def test_default_response(self):
        result = await MockBackend().call({}, [], {})
        assert isinstance(result, Ok)
        response = result.value
        assert response.content == "Mock response"
        assert response.finish_reason == FinishReason.STOP
        assert response.usage == {"input_tokens": 10, "output_tokens": len("Mock response")}
        assert response.metadata == {"backend": "mock", "model": "mock"}

    @pytest.mark.asyncio
    async def test_configured_response_and_usage(self):
        config = {"response": "hi", "usage": {"total_tokens": 3}, "finish_reason": "length", "model": "m1"}
        result = await MockBackend().call(config, [], {})
        assert result.value.content == "hi"
        assert result.value.usage == {"total_tokens": 3}
        assert result.value.finish_reason == "length"
        assert result.value.metadata["model"] == "m1"

    @pytest.mark.asyncio
    async def test_error(self):
        assert await MockBackend().call({"error": "rate_limited"}, [], {}) == Err("rate_limited")
        assert await MockBackend().stream({"error": "rate_limited"}, [], {}) == Err("rate_limited")

    @pytest.mark.asyncio
    async def test_delay(self):
        result = await MockBackend().call({"delay": 1}, [], {})
        assert isinstance(result, Ok)

    def test_introspect(self):
        info = MockBackend().introspect({"model": "m1"})
        assert info == {
            "provider": "mock",
            "model": "m1",
            "operation": "chat",
            "capabilities": ["streaming", "deterministic"],
        }


class TestQueuedMockBackend:
    @pytest.mark.asyncio
    async def test_pops_in_order_then_default(self):
        backend = QueuedMockBackend(["one", Err("boom"), {"k": "v"}])
        assert backend.expected == 3

        first = await backend.call({}, [], {})
        assert first.value.content == "one"
        assert await backend.call({}, [], {}) == Err("boom")
        third = await backend.call({}, [], {})
        assert third.value.content == {"k": "v"}
        assert backend.remaining == 0
        assert await backend.call({}, [], {}) == Err("mock_responses_exhausted")

    @pytest.mark.asyncio
    async def test_callable_receives_messages(self):
        backend = QueuedMockBackend([lambda messages: f"saw {len(messages)}"])
        result = await backend.call({}, [Message.new("user", "a"), Message.new("user", "b")], {})
        assert result.value.content == "saw 2"

    @pytest.mark.asyncio
    async def test_response_passthrough(self):
        scripted = Response(content="x", usage={"input_tokens": 1, "output_tokens": 1})
        backend = QueuedMockBackend([scripted])
        assert await backend.call({}, [], {}) == Ok(scripted)

    @pytest.mark.asyncio
    async def test_custom_default(self):
        backend = QueuedMockBackend([], default="fallback")
        result = await backend.call({}, [], {})
        assert result.value.content == "fallback"


# ---------------------------------------------------------------------------
# Anthropic formatting
# ---------------------------------------------------------------------------


class TestAnthropicFormatting:
    def test_part_to_block(self):
        assert part_to_block(text("hi")) == {"type": "text", "text": "hi"}
        assert part_to_block(image(b"\x89PNG", "image/png")) == {
            "type": "image",
            "source": {"type": "base64", "media_type": "image/png", "data": "iVBORw=="},
        }
        assert part_to_block(image_url("https://x.test/a.png")) == {
            "type": "image",
            "source": {"type": "url", "url": "https://x.test/a.png"},
        }

    def test_file_blocks(self):
        pdf = part_to_block(file(b"%PDF", "r.pdf", "application/pdf"))
        assert pdf["type"] == "document"
        assert pdf["source"]["type"] == "base64"
        assert pdf["title"] == "r.pdf"

        plain = part_to_block(file(b"notes", "n.txt", "text/plain"))
        assert plain["source"] == {"type": "text", "media_type": "text/plain", "data": "notes"}

    def test_format_messages_splits_system(self):
        system, formatted = format_messages(
            [
                Message.new("system", "Be brief."),
                Message.new("user", "hi"),
                Message.new("assistant", "hello"),
            ]
        )
        assert system == "Be brief."
        assert formatted == [
            {"role": "user", "content": [{"type": "text", "text": "hi"}]},
            {"role": "assistant", "content": [{"type": "text", "text": "hello"}]},
        ]

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("end_turn", FinishReason.STOP),
            ("stop_sequence", FinishReason.STOP),
            ("max_tokens", FinishReason.MAX_TOKENS),
            ("refusal", FinishReason.CONTENT_FILTER),
            ("tool_use", "tool_use"),
            (None, None),
        ],
    )
    def test_map_stop_reason(self, raw, expected):
        assert map_stop_reason(raw) == expected

    def test_parse_response(self):
        data = _api_message()
        data["content"].insert(0, {"type": "thinking", "thinking": "let me think"})
        response = parse_response(data)
        assert response.content == "Hello there"
        assert response.thinking == "let me think"
        assert response.finish_reason == FinishReason.STOP
        assert response.usage == {"input_tokens": 12, "output_tokens": 5}
        assert response.metadata == {
            "backend": "anthropic",
            "model": "claude-sonnet-4-5-20250514",
            "id": "msg_01",
        }


# ---------------------------------------------------------------------------
# Anthropic HTTP
# ---------------------------------------------------------------------------


class TestAnthropicStart:
    @pytest.mark.asyncio
    async def test_api_key_header(self):
        backend = AnthropicBackend(_make_settings(ANTHROPIC_API_KEY="sk-test"))
        await backend.start()
        try:
            assert backend._http.headers.get("x-api-key") == "sk-test"
            assert backend._http.headers.get("anthropic-version") == "2023-06-01"
        finally:
            await backend.close()

    @pytest.mark.asyncio
    async def test_auth_token_takes_precedence(self):
        backend = AnthropicBackend(_make_settings(ANTHROPIC_API_KEY="sk-test", ANTHROPIC_AUTH_TOKEN="tok"))
        await backend.start()
        try:
            assert backend._http.headers.get("authorization") == "Bearer tok"
            assert "x-api-key" not in backend._http.headers
        finally:
            await backend.close()

    @pytest.mark.asyncio
    async def test_no_credentials_warns(self, caplog):
        backend = AnthropicBackend(_make_settings())
        with caplog.at_level(logging.WARNING, logger="conduit.backends.anthropic"):
            await backend.start()
        try:
            assert any("API calls will fail" in record.message for record in caplog.records)
            assert backend._http is not None
        finally:
            await backend.close()
        assert backend._http is None


class TestAnthropicCall:
    @pytest.mark.asyncio
    async def test_call_payload_and_response(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.path, json.loads(request.content)))
            return httpx.Response(200, json=_api_message())

        backend = _make_backend(handler)
        messages = [Message.new("system", "Be brief."), Message.new("user", "hi")]
        result = await backend.call({"model": "claude-test", "max_tokens": 256}, messages, {"temperature": 0.2})

        assert isinstance(result, Ok)
        assert result.value.content == "Hello there"
        path, payload = seen[0]
        assert path == "/v1/messages"
        assert payload["model"] == "claude-test"
        assert payload["max_tokens"] == 256
        assert payload["temperature"] == 0.2
        assert payload["system"][0]["text"] == "Be brief."
        assert payload["messages"] == [{"role": "user", "content": [{"type": "text", "text": "hi"}]}]
        assert "stream" not in payload

    @pytest.mark.asyncio
    async def test_defaults_from_settings(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json=_api_message())

        backend = _make_backend(handler, model="claude-default", max_tokens=1000)
        await backend.call({}, [Message.new("user", "hi")], {})
        assert seen[0]["model"] == "claude-default"
        assert seen[0]["max_tokens"] == 1000
        assert "system" not in seen[0]

    @pytest.mark.asyncio
    async def test_api_error_status(self):
        def handler(request):
            return httpx.Response(
                429,
                json={"type": "error", "error": {"type": "rate_limit_error", "message": "Slow down"}},
            )

        result = await _make_backend(handler).call({}, [Message.new("user", "hi")], {})
        assert result == Err("HTTP 429: rate_limit_error - Slow down")

    @pytest.mark.asyncio
    async def test_non_json_error_body(self):
        def handler(request):
            return httpx.Response(502, content=b"Bad Gateway")

        result = await _make_backend(handler).call({}, [Message.new("user", "hi")], {})
        assert result == Err("HTTP 502: Bad Gateway")

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        result = await _make_backend(handler).call({}, [Message.new("user", "hi")], {})
        assert isinstance(result, Err)
        assert result.reason.startswith("timeout:")

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        result = await _make_backend(handler).call({}, [Message.new("user", "hi")], {})
        assert result.reason.startswith("http_error:")

    @pytest.mark.asyncio
    async def test_through_runtime(self):
        backend = _make_backend(lambda request: httpx.Response(200, json=_api_message("Hi!")))
        client = Client(backend, {"model": "claude-test"}, system_prompt="Be brief.")

        result = await call(client, "hello", Context.new())

        assert result.value.content == "Hi!"
        assert result.value.context.total_tokens == 17
        assert result.value.context.last_message.metadata["backend"] == "anthropic"

    @pytest.mark.asyncio
    async def test_error_through_runtime(self):
        backend = _make_backend(lambda request: httpx.Response(500, json={"error": {"type": "api_error", "message": "x"}}))
        result = await call(Client(backend), "hello", Context.new())
        assert result == Err(BackendError("anthropic", "HTTP 500: api_error - x"))


class TestAnthropicStream:
    @pytest.mark.asyncio
    async def test_stream_parses_sse(self):
        body = _sse(
            {"type": "message_start", "message": {"id": "msg_01"}},
            {"type": "ping"},
            {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hel"}},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "lo"}},
            {"type": "content_block_stop", "index": 0},
            {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 2}},
            {"type": "message_stop"},
        )
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

        result = await _make_backend(handler).stream({}, [Message.new("user", "hi")], {})

        assert isinstance(result, Ok)
        chunks = [chunk async for chunk in result.value]
        assert [(c.type, c.content) for c in chunks] == [
            ("content", "Hel"),
            ("content", "lo"),
            ("done", None),
        ]
        assert chunks[-1].metadata["finish_reason"] == FinishReason.STOP
        assert seen[0]["stream"] is True

    @pytest.mark.asyncio
    async def test_in_stream_error_ends_iteration(self):
        body = _sse(
            {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "partial"}},
            {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}},
            {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "never"}},
        )
        backend = _make_backend(lambda request: httpx.Response(200, content=body))
        result = await backend.stream({}, [Message.new("user", "hi")], {})
        chunks = [chunk async for chunk in result.value]
        assert [c.type for c in chunks] == ["content", "error"]

    @pytest.mark.asyncio
    async def test_stream_error_status(self):
        def handler(request):
            return httpx.Response(
                529,
                json={"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}},
            )

        result = await _make_backend(handler).stream({}, [Message.new("user", "hi")], {})
        assert result == Err("HTTP 529: overloaded_error - Overloaded")

    @pytest.mark.asyncio
    async def test_stream_through_runtime(self):
        body = _sse(
            {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hi"}},
            {"type": "content_block_delta", "delta": {"type": "text_delta", "text": " there"}},
            {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 2}},
        )
        backend = _make_backend(lambda request: httpx.Response(200, content=body))

        result = await stream(Client(backend), "hello", Context.new())
        ctx = await result.value.complete()

        assert [m.text for m in ctx.messages] == ["hello", "Hi there"]
