"""OpenAI Chat Completions adapters for pure request/response/stream transformations."""

from __future__ import annotations

import logging
import math
from typing import Any, Mapping, Optional

from llm_gateway.adapters._utils import (
    SSE_HEADERS,
    coerce_mapping,
    deep_copy,
    parse_json_or_raw,
    parse_tool_arguments,
    sse_data,
)
from llm_gateway.compression import compress_tool_results, unwrap_tool_content
from llm_gateway.types import (
    UNKNOWN_TOOL_NAME,
    ChunkProcessingResult,
    CommonMessage,
    CommonTool,
    CommonToolCall,
    CommonToolResult,
    StreamAccumulatorState,
    ToonCompressionResult,
    Usage,
)

__all__ = ["OpenAIRequestAdapter", "OpenAIResponseAdapter", "OpenAIStreamAdapter"]

logger = logging.getLogger(__name__)

_ROLE_MAP = {
    "user": "user",
    "assistant": "assistant",
    "system": "system",
    "developer": "system",
    "tool": "tool",
}

DONE_FRAME = "data: [DONE]\n\n"


def _usage_from(raw: Any) -> Optional[Usage]:
    if not isinstance(raw, Mapping):
        return None
    return Usage(
        input_tokens=raw.get("prompt_tokens") or 0,
        output_tokens=raw.get("completion_tokens") or 0,
    )


class OpenAIRequestAdapter:
    """Adapter over a Chat Completions request body."""

    provider = "openai"

    def __init__(self, request: Mapping[str, Any], *, provider: Optional[str] = None) -> None:
        self._request = request
        self._model_override: Optional[str] = None
        self._tool_result_updates: dict[str, str] = {}
        if provider:
            self.provider = provider

    def get_model(self) -> str:
        return self._model_override or self._request.get("model", "")

    def set_model(self, model: str) -> None:
        self._model_override = model

    def is_streaming(self) -> bool:
        return bool(self._request.get("stream"))

    def get_original_request(self) -> Mapping[str, Any]:
        return self._request

    def _messages(self) -> list[Mapping[str, Any]]:
        return [m for m in self._request.get("messages") or [] if isinstance(m, Mapping)]

    def _find_tool_name(self, tool_call_id: str) -> str:
        # Walk assistant turns newest first; the matching call is usually the latest one
        for msg in reversed(self._messages()):
            if msg.get("role") != "assistant":
                continue
            for tc in msg.get("tool_calls") or []:
                if tc.get("id") == tool_call_id:
                    return (tc.get("function") or {}).get("name") or UNKNOWN_TOOL_NAME
        logger.debug("No assistant tool call matches %s, using %r", tool_call_id, UNKNOWN_TOOL_NAME)
        return UNKNOWN_TOOL_NAME

    def _tool_result_from(self, msg: Mapping[str, Any]) -> CommonToolResult:
        tool_call_id = msg.get("tool_call_id", "")
        content = msg.get("content")
        if isinstance(content, list):
            text = unwrap_tool_content(content)
            if text is not None:
                content = text
        return CommonToolResult(
            id=tool_call_id,
            name=self._find_tool_name(tool_call_id),
            content=parse_json_or_raw(content),
        )

    def get_messages(self) -> list[CommonMessage]:
        messages: list[CommonMessage] = []
        for msg in self._messages():
            role = _ROLE_MAP.get(msg.get("role", ""))
            if role is None:
                continue
            if role == "tool":
                messages.append(CommonMessage(role="tool", tool_calls=[self._tool_result_from(msg)]))
            else:
                messages.append(CommonMessage(role=role))
        return messages

    def get_tool_results(self) -> list[CommonToolResult]:
        return [self._tool_result_from(msg) for msg in self._messages() if msg.get("role") == "tool"]

    def get_tools(self) -> list[CommonTool]:
        tools: list[CommonTool] = []
        for tool in self._request.get("tools") or []:
            if not isinstance(tool, Mapping) or tool.get("type") != "function":
                continue
            func = tool.get("function") or {}
            tools.append(
                CommonTool(
                    name=func.get("name", ""),
                    description=func.get("description"),
                    input_schema=dict(func.get("parameters") or {}),
                )
            )
        return tools

    def has_tools(self) -> bool:
        return bool(self.get_tools())

    def update_tool_result(self, tool_call_id: str, new_content: str) -> None:
        self._tool_result_updates[tool_call_id] = new_content

    def apply_tool_result_updates(self, updates: Mapping[str, str]) -> None:
        self._tool_result_updates.update(updates)

    def apply_toon_compression(self, model: str) -> ToonCompressionResult:
        entries = [
            (msg["tool_call_id"], self._tool_result_updates.get(msg["tool_call_id"], msg.get("content")))
            for msg in self._messages()
            if msg.get("role") == "tool" and msg.get("tool_call_id") and msg.get("content") is not None
        ]
        updates, stats = compress_tool_results(entries, model, vendor="openai", provider=self.provider)
        self.apply_tool_result_updates(updates)
        return stats

    def to_provider_request(self) -> dict[str, Any]:
        request = deep_copy(dict(self._request))
        if self._model_override:
            request["model"] = self._model_override
        if self._tool_result_updates:
            for msg in request.get("messages") or []:
                if not isinstance(msg, dict) or msg.get("role") != "tool":
                    continue
                if msg.get("tool_call_id") in self._tool_result_updates:
                    msg["content"] = self._tool_result_updates[msg["tool_call_id"]]
        return request


class OpenAIResponseAdapter:
    """Read-only view over a ChatCompletion (dict or ``openai`` SDK model)."""

    provider = "openai"

    def __init__(self, response: Any, *, provider: Optional[str] = None) -> None:
        self._response = coerce_mapping(response)
        if provider:
            self.provider = provider

    def _message(self) -> Mapping[str, Any]:
        choices = self._response.get("choices") or []
        if not choices or not isinstance(choices[0], Mapping):
            return {}
        return choices[0].get("message") or {}

    def get_id(self) -> str:
        return self._response.get("id", "")

    def get_model(self) -> str:
        return self._response.get("model", "")

    def get_text(self) -> str:
        content = self._message().get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return "".join(
                part.get("text", "") for part in content if isinstance(part, Mapping) and part.get("type") == "text"
            )
        return ""

    def get_tool_calls(self) -> list[CommonToolCall]:
        tool_calls: list[CommonToolCall] = []
        for tc in self._message().get("tool_calls") or []:
            func = tc.get("function")
            if not func:
                continue
            tool_calls.append(
                CommonToolCall(
                    id=tc.get("id", ""),
                    name=func.get("name", ""),
                    arguments=parse_tool_arguments(func.get("arguments")),
                )
            )
        return tool_calls

    def has_tool_calls(self) -> bool:
        return bool(self._message().get("tool_calls"))

    def get_usage(self) -> Usage:
        return _usage_from(self._response.get("usage")) or Usage()

    def get_original_response(self) -> dict[str, Any]:
        return self._response

    def to_refusal_response(self, refusal_message: str, content_message: str) -> dict[str, Any]:
        return {
            **self._response,
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": content_message, "refusal": None},
                    "finish_reason": "stop",
                    "logprobs": None,
                }
            ],
        }


class OpenAIStreamAdapter:
    """Folds ``chat.completion.chunk`` events into one logical completion.

    Tool-call fragments are withheld per ``index`` and released together with
    the chunk that carries ``finish_reason``. When the request asked for
    ``stream_options.include_usage`` the trailing usage-only chunk is the
    terminal one instead.
    """

    provider = "openai"
    done_sentinel = DONE_FRAME

    def __init__(self, request: Optional[Mapping[str, Any]] = None, *, provider: Optional[str] = None) -> None:
        self.state = StreamAccumulatorState()
        stream_options = (request or {}).get("stream_options") or {}
        self._expect_usage_chunk = bool(stream_options.get("include_usage"))
        self._finish_seen = False
        self._calls_by_index: dict[int, dict[str, str]] = {}
        self._held_frames: list[str] = []
        self._raw_arguments: dict[str, str] = {}
        self._created: Optional[int] = None
        if provider:
            self.provider = provider

    def process_chunk(self, chunk: Any) -> ChunkProcessingResult:
        event = coerce_mapping(chunk)
        self.state.mark_chunk()

        if event.get("id"):
            self.state.response_id = event["id"]
        if event.get("model"):
            self.state.model = event["model"]
        if self._created is None and event.get("created"):
            self._created = event["created"]
        usage = _usage_from(event.get("usage"))
        if usage is not None:
            self.state.usage = usage

        choices = event.get("choices") or []
        if not choices:
            # usage-only chunk sent after the finish chunk
            return ChunkProcessingResult(sse_data=sse_data(event), is_final=self._finish_seen)

        choice = choices[0]
        delta = choice.get("delta") or {}
        if isinstance(delta.get("content"), str):
            self.state.text += delta["content"]

        fragments = delta.get("tool_calls") or []
        for fragment in fragments:
            self._accumulate(fragment)
        if fragments:
            self.state.raw_tool_call_events.append(event)

        finish_reason = choice.get("finish_reason")
        if finish_reason:
            return self._finish(event, finish_reason)

        if fragments:
            self._held_frames.append(sse_data(event))
            return ChunkProcessingResult(is_tool_call_chunk=True)
        return ChunkProcessingResult(sse_data=sse_data(event))

    def _accumulate(self, fragment: Mapping[str, Any]) -> None:
        entry = self._calls_by_index.setdefault(fragment.get("index", 0), {"id": "", "name": "", "arguments": ""})
        if fragment.get("id"):
            entry["id"] = fragment["id"]
        func = fragment.get("function") or {}
        if func.get("name"):
            entry["name"] += func["name"]
        if func.get("arguments"):
            entry["arguments"] += func["arguments"]

    def _finish(self, event: dict[str, Any], finish_reason: str) -> ChunkProcessingResult:
        released = bool(self._calls_by_index)
        for index in sorted(self._calls_by_index):
            entry = self._calls_by_index[index]
            self._raw_arguments[entry["id"]] = entry["arguments"]
            self.state.tool_calls.append(
                CommonToolCall(
                    id=entry["id"],
                    name=entry["name"],
                    arguments=parse_tool_arguments(entry["arguments"]),
                )
            )
        self._calls_by_index.clear()

        frames = "".join(self._held_frames) + sse_data(event)
        self._held_frames.clear()
        self._finish_seen = True
        self.state.stop_reason = finish_reason
        return ChunkProcessingResult(
            sse_data=frames,
            is_tool_call_chunk=released,
            is_final=not self._expect_usage_chunk,
        )

    def get_sse_headers(self) -> dict[str, str]:
        return dict(SSE_HEADERS)

    def get_text(self) -> str:
        return self.state.text

    def get_tool_calls(self) -> list[CommonToolCall]:
        return list(self.state.tool_calls)

    def get_usage(self) -> Optional[Usage]:
        return self.state.usage

    def get_raw_tool_call_events(self) -> str:
        return "".join(sse_data(event) for event in self.state.raw_tool_call_events)

    def discard_pending(self) -> None:
        self._calls_by_index.clear()
        self._held_frames.clear()

    def _chunk(self, delta: dict[str, Any], finish_reason: Optional[str] = None) -> dict[str, Any]:
        return {
            "id": self.state.response_id,
            "object": "chat.completion.chunk",
            "created": self._created_at(),
            "model": self.state.model,
            "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
        }

    def _created_at(self) -> int:
        if self._created is not None:
            return self._created
        return math.floor(self.state.timing.start_time / 1000)

    def format_text_delta_sse(self, text: str) -> str:
        return sse_data(self._chunk({"content": text}))

    def format_complete_text_sse(self, text: str) -> str:
        return sse_data(self._chunk({"role": "assistant", "content": text}))

    def format_end_sse(self) -> str:
        return sse_data(self._chunk({}, self.state.stop_reason or "stop")) + DONE_FRAME

    def _completion(self, message: dict[str, Any], finish_reason: str) -> dict[str, Any]:
        completion: dict[str, Any] = {
            "id": self.state.response_id,
            "object": "chat.completion",
            "created": self._created_at(),
            "model": self.state.model,
            "choices": [{"index": 0, "message": message, "finish_reason": finish_reason, "logprobs": None}],
        }
        if self.state.usage is not None:
            completion["usage"] = {
                "prompt_tokens": self.state.usage.input_tokens,
                "completion_tokens": self.state.usage.output_tokens,
                "total_tokens": self.state.usage.input_tokens + self.state.usage.output_tokens,
            }
        return completion

    def to_provider_response(self) -> dict[str, Any]:
        message: dict[str, Any] = {"role": "assistant", "content": self.state.text or None}
        if self.state.tool_calls:
            message["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": self._raw_arguments.get(call.id, "{}")},
                }
                for call in self.state.tool_calls
            ]
        elif message["content"] is None:
            message["content"] = ""
        return self._completion(message, self.state.stop_reason or "stop")

    def to_provider_refusal_response(self, refusal_message: str, content_message: str) -> dict[str, Any]:
        return self._completion({"role": "assistant", "content": content_message, "refusal": None}, "stop")
