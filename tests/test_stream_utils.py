"""Tests for relaying vendor streams to clients and folding them into responses."""

import asyncio
import json

import pytest

from llm_gateway import GatewayError
from llm_gateway.adapters.anthropic import AnthropicStreamAdapter
from llm_gateway.adapters.openai import OpenAIStreamAdapter
from llm_gateway.providers import AnthropicProvider, OpenAIProvider
from llm_gateway.stream_utils import accumulate_stream, accumulate_stream_sync, relay_stream

from conftest import aiter_events, collect


def _chunk(delta=None, finish_reason=None):
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion.chunk",
        "created": 1700000000,
        "model": "gpt-4o",
        "choices": [{"index": 0, "delta": delta or {}, "finish_reason": finish_reason}],
    }


def _openai_tool_stream():
    return [
        _chunk({"role": "assistant", "content": "Sure"}),
        _chunk({"tool_calls": [{"index": 0, "id": "call_1", "type": "function", "function": {"name": "rm", "arguments": ""}}]}),
        _chunk({"tool_calls": [{"index": 0, "function": {"arguments": '{"path": "/"}'}}]}),
        _chunk({}, "tool_calls"),
    ]


def _anthropic_text_stream():
    return [
        {
            "type": "message_start",
            "message": {"id": "msg_1", "model": "claude-sonnet-4-5", "usage": {"input_tokens": 3, "output_tokens": 1}},
        },
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi"}},
        {"type": "content_block_stop", "index": 0},
        {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 2}},
        {"type": "message_stop"},
    ]


def _payloads(frames):
    text = "".join(frames)
    return [json.loads(part[len("data: "):]) for part in text.split("\n\n") if part.startswith("data: {")]


class _TrackedEvents:
    """Async iterator that records how far it was read and whether it was closed."""

    def __init__(self, events, fail_after=None):
        self._events = list(events)
        self._fail_after = fail_after
        self.consumed = 0
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._fail_after is not None and self.consumed >= self._fail_after:
            raise ConnectionError("socket closed")
        if self.consumed >= len(self._events):
            raise StopAsyncIteration
        event = self._events[self.consumed]
        self.consumed += 1
        return event

    async def aclose(self):
        self.closed = True


class _SpyOpenAIStreamAdapter(OpenAIStreamAdapter):
    def __init__(self, request=None):
        super().__init__(request)
        self.discarded = 0

    def discard_pending(self):
        self.discarded += 1
        super().discard_pending()


class TestRelayStream:
    def test_anthropic_stream_has_no_done_sentinel(self):
        frames = collect(relay_stream(AnthropicProvider(), AnthropicStreamAdapter(), aiter_events(_anthropic_text_stream())))

        assert frames[0].startswith("event: message_start\n")
        assert frames[-1] == 'event: message_stop\ndata: {"type":"message_stop"}\n\n'
        assert not any("[DONE]" in frame for frame in frames)

    def test_relay_stops_at_final_event_and_closes_source(self):
        events = _TrackedEvents(_anthropic_text_stream() + [{"type": "ping"}, {"type": "ping"}])

        frames = collect(relay_stream(AnthropicProvider(), AnthropicStreamAdapter(), events))

        assert events.consumed == len(_anthropic_text_stream())
        assert events.closed
        assert not any("ping" in frame for frame in frames)

    def test_openai_stream_without_gate_ends_with_done(self):
        frames = collect(relay_stream(OpenAIProvider(), OpenAIStreamAdapter(), aiter_events(_openai_tool_stream())))

        assert frames[-1] == "data: [DONE]\n\n"
        assert _payloads(frames)[-1]["choices"][0]["finish_reason"] == "tool_calls"

    def test_gate_allowing_tool_calls_keeps_order(self):
        seen = []

        def gate(tool_calls):
            seen.extend(tool_calls)
            return None

        frames = collect(
            relay_stream(OpenAIProvider(), OpenAIStreamAdapter(), aiter_events(_openai_tool_stream()), tool_call_gate=gate)
        )

        payloads = _payloads(frames)
        assert payloads[0]["choices"][0]["delta"]["content"] == "Sure"
        assert payloads[1]["choices"][0]["delta"]["tool_calls"][0]["function"]["name"] == "rm"
        assert payloads[-1]["choices"][0]["finish_reason"] == "tool_calls"
        assert frames[-1] == "data: [DONE]\n\n"
        assert [call.name for call in seen] == ["rm"]
        assert seen[0].arguments == {"path": "/"}

    def test_gate_refusal_replaces_tool_calls(self):
        adapter = OpenAIStreamAdapter()

        frames = collect(
            relay_stream(
                OpenAIProvider(),
                adapter,
                aiter_events(_openai_tool_stream()),
                tool_call_gate=lambda calls: "I can't delete the root directory.",
            )
        )

        text = "".join(frames)
        assert "I can't delete the root directory." in text
        assert '"rm"' not in text
        assert _payloads(frames)[-1]["choices"][0]["finish_reason"] == "stop"
        assert text.endswith("data: [DONE]\n\n")
        assert text.count("[DONE]") == 1
        assert adapter.get_tool_calls() == []

    def test_async_gate(self):
        async def gate(tool_calls):
            await asyncio.sleep(0)
            return "Blocked by policy"

        frames = collect(
            relay_stream(OpenAIProvider(), OpenAIStreamAdapter(), aiter_events(_openai_tool_stream()), tool_call_gate=gate)
        )

        assert "Blocked by policy" in "".join(frames)

    def test_stream_without_final_event_gets_end_frames(self):
        adapter = OpenAIStreamAdapter()

        frames = collect(relay_stream(OpenAIProvider(), adapter, aiter_events([_chunk({"content": "partial"})])))

        assert frames[-1] == adapter.format_end_sse()
        assert frames[-1].endswith("data: [DONE]\n\n")

    def test_vendor_failure_becomes_gateway_error(self):
        events = _TrackedEvents(_openai_tool_stream(), fail_after=2)
        adapter = _SpyOpenAIStreamAdapter()

        with pytest.raises(GatewayError) as excinfo:
            collect(relay_stream(OpenAIProvider(), adapter, events))

        assert str(excinfo.value).startswith("Connection problem")
        assert "socket closed" in str(excinfo.value)
        assert excinfo.value.provider == "openai"
        assert isinstance(excinfo.value.original_exc, ConnectionError)
        assert adapter.discarded == 1
        assert adapter.get_tool_calls() == []
        assert events.closed

    def test_gate_failure_propagates_unchanged(self):
        events = _TrackedEvents(_openai_tool_stream())
        adapter = _SpyOpenAIStreamAdapter()

        def gate(tool_calls):
            raise PermissionError("policy store down")

        with pytest.raises(PermissionError, match="policy store down"):
            collect(relay_stream(OpenAIProvider(), adapter, events, tool_call_gate=gate))

        assert adapter.discarded == 1
        assert events.closed

    def test_client_disconnect_discards_pending_fragments(self):
        events = _TrackedEvents(_openai_tool_stream())
        adapter = _SpyOpenAIStreamAdapter()

        async def consume_one():
            relay = relay_stream(OpenAIProvider(), adapter, events)
            first = await relay.__anext__()
            await relay.aclose()
            return first

        first = asyncio.run(consume_one())

        assert "Sure" in first
        assert adapter.discarded == 1
        assert events.closed


class TestAccumulateStream:
    def test_async_events(self):
        response = asyncio.run(accumulate_stream(AnthropicStreamAdapter(), aiter_events(_anthropic_text_stream())))

        assert response["id"] == "msg_1"
        assert response["content"] == [{"type": "text", "text": "Hi"}]
        assert response["stop_reason"] == "end_turn"

    def test_sync_events_stop_at_final_chunk(self):
        adapter = OpenAIStreamAdapter()
        events = _openai_tool_stream() + [_chunk({"content": "ignored"})]

        response = accumulate_stream_sync(adapter, events)

        assert response["choices"][0]["finish_reason"] == "tool_calls"
        assert adapter.get_text() == "Sure"
