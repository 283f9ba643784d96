"""OpenAI Responses API adapters.

The Responses API is a separate wire protocol from Chat Completions: requests
carry an ``input`` item list, responses an ``output`` item list, and streams
use a typed event union (``response.created``, ``response.output_item.added``,
``response.function_call_arguments.delta``, ...).

Function-call argument deltas are never forwarded as they arrive. They are
assembled per ``output_index`` and released together with the
``response.output_item.done`` event, so callers only ever see complete calls.
"""
from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable, Mapping, Optional

from llm_gateway.adapters._utils import (
    SSE_HEADERS,
    coerce_mapping,
    deep_copy,
    parse_json_or_raw,
    parse_tool_arguments,
    sse_data,
)
from llm_gateway.compression import compress_tool_results
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

__all__ = [
    "OpenAIResponsesRequestAdapter",
    "OpenAIResponsesResponseAdapter",
    "OpenAIResponsesStreamAdapter",
    "STREAM_EVENT_TYPES",
]

logger = logging.getLogger(__name__)

PROVIDER = "openai-responses"

_ROLE_MAP = {"user": "user", "assistant": "assistant", "system": "system", "developer": "system"}

# Events that change accumulator state; each has a handler on the stream adapter.
_STATEFUL_EVENTS = frozenset(
    {
        "response.created",
        "response.in_progress",
        "response.completed",
        "response.failed",
        "response.incomplete",
        "response.output_item.added",
        "response.output_item.done",
        "response.output_text.delta",
        "response.output_text.done",
        "response.function_call_arguments.delta",
        "response.function_call_arguments.done",
        "error",
    }
)

# Events that carry no state for the accumulator and are forwarded verbatim:
# content parts, refusals, annotations, built-in tools and reasoning.
_PASSTHROUGH_EVENTS = frozenset(
    {
        "response.queued",
        "response.content_part.added",
        "response.content_part.done",
        "response.output_text.annotation.added",
        "response.refusal.delta",
        "response.refusal.done",
        "response.file_search_call.in_progress",
        "response.file_search_call.searching",
        "response.file_search_call.completed",
        "response.web_search_call.in_progress",
        "response.web_search_call.searching",
        "response.web_search_call.completed",
        "response.code_interpreter_call.in_progress",
        "response.code_interpreter_call.interpreting",
        "response.code_interpreter_call.completed",
        "response.code_interpreter_call_code.delta",
        "response.code_interpreter_call_code.done",
        "response.image_generation_call.in_progress",
        "response.image_generation_call.generating",
        "response.image_generation_call.partial_image",
        "response.image_generation_call.completed",
        "response.mcp_call.in_progress",
        "response.mcp_call.completed",
        "response.mcp_call.failed",
        "response.mcp_call_arguments.delta",
        "response.mcp_call_arguments.done",
        "response.mcp_list_tools.in_progress",
        "response.mcp_list_tools.completed",
        "response.mcp_list_tools.failed",
        "response.custom_tool_call_input.delta",
        "response.custom_tool_call_input.done",
        "response.reasoning_summary_part.added",
        "response.reasoning_summary_part.done",
        "response.reasoning_summary_text.delta",
        "response.reasoning_summary_text.done",
        "response.reasoning_text.delta",
        "response.reasoning_text.done",
    }
)


# stream stop reason -> response status; anything else finished normally
_RESPONSE_STATUS = {"error": "failed", "incomplete": "incomplete"}


def _is_function_call_output(item: Any) -> bool:
    return isinstance(item, Mapping) and item.get("type") == "function_call_output"


def _now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


class OpenAIResponsesRequestAdapter:
    """Wraps a Responses API request; staged changes are applied only on build."""

    provider = PROVIDER

    def __init__(self, request: Mapping[str, Any]) -> None:
        self._request = request
        self._model_override: Optional[str] = None
        self._tool_result_updates: dict[str, str] = {}

    def get_model(self) -> str:
        return self._model_override or self._request.get("model", "")

    def set_model(self, model: str) -> None:
        self._model_override = model

    def is_streaming(self) -> bool:
        return bool(self._request.get("stream"))

    def get_original_request(self) -> Mapping[str, Any]:
        return self._request

    def _input_items(self) -> list[Any]:
        items = self._request.get("input")
        return items if isinstance(items, list) else []

    def _find_function_name(self, call_id: str) -> str:
        for item in self._input_items():
            if (
                isinstance(item, Mapping)
                and item.get("type") == "function_call"
                and item.get("call_id") == call_id
                and item.get("name")
            ):
                return item["name"]
        logger.debug("No function_call found for call_id %s, using %r", call_id, UNKNOWN_TOOL_NAME)
        return UNKNOWN_TOOL_NAME

    def _tool_result_from_item(self, item: Mapping[str, Any]) -> CommonToolResult:
        call_id = item.get("call_id", "")
        return CommonToolResult(
            id=call_id,
            name=self._find_function_name(call_id),
            content=parse_json_or_raw(item.get("output")),
        )

    def get_messages(self) -> list[CommonMessage]:
        if isinstance(self._request.get("input"), str):
            return [CommonMessage(role="user")]

        messages: list[CommonMessage] = []
        for item in self._input_items():
            if not isinstance(item, Mapping):
                continue
            if _is_function_call_output(item):
                messages.append(CommonMessage(role="tool", tool_calls=[self._tool_result_from_item(item)]))
                continue
            role = _ROLE_MAP.get(item.get("role", ""))
            if role is not None and item.get("type", "message") == "message":
                messages.append(CommonMessage(role=role))
        return messages

    def get_tool_results(self) -> list[CommonToolResult]:
        return [
            self._tool_result_from_item(item)
            for item in self._input_items()
            if _is_function_call_output(item) and isinstance(item.get("output"), str)
        ]

    def get_tools(self) -> list[CommonTool]:
        tools: list[CommonTool] = []
        for tool in self._request.get("tools") or []:
            # built-in tools (web_search, file_search, ...) run on OpenAI's side
            if isinstance(tool, Mapping) and tool.get("type") == "function":
                tools.append(
                    CommonTool(
                        name=tool.get("name", ""),
                        description=tool.get("description"),
                        input_schema=dict(tool.get("parameters") or {}),
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
            (item["call_id"], self._tool_result_updates.get(item["call_id"], item["output"]))
            for item in self._input_items()
            if _is_function_call_output(item)
            and isinstance(item.get("output"), str)
            and "call_id" in item
        ]
        updates, stats = compress_tool_results(entries, model, vendor="openai", provider=self.provider)
        self.apply_tool_result_updates(updates)
        return stats

    def to_provider_request(self) -> dict[str, Any]:
        request = deep_copy(dict(self._request))
        if self._model_override:
            request["model"] = self._model_override
        if self._tool_result_updates and isinstance(request.get("input"), list):
            for item in request["input"]:
                if _is_function_call_output(item) and item.get("call_id") in self._tool_result_updates:
                    item["output"] = self._tool_result_updates[item["call_id"]]
        return request


# ---------------------------------------------------------------------------
# Response
# ---------------------------------------------------------------------------


class OpenAIResponsesResponseAdapter:
    provider = PROVIDER

    def __init__(self, response: Any) -> None:
        self._response = coerce_mapping(response)

    def _output(self) -> list[Mapping[str, Any]]:
        return [item for item in self._response.get("output") or [] if isinstance(item, Mapping)]

    def get_id(self) -> str:
        return self._response.get("id", "")

    def get_model(self) -> str:
        return self._response.get("model", "")

    def get_text(self) -> str:
        parts: list[str] = []
        for item in self._output():
            if item.get("type") == "message" and item.get("role") == "assistant":
                for part in item.get("content") or []:
                    if isinstance(part, Mapping) and part.get("type") == "output_text":
                        parts.append(part.get("text", ""))
        return "".join(parts)

    def get_tool_calls(self) -> list[CommonToolCall]:
        return [
            CommonToolCall(
                id=item.get("call_id", ""),
                name=item.get("name", ""),
                arguments=parse_tool_arguments(item.get("arguments")),
            )
            for item in self._output()
            if item.get("type") == "function_call"
        ]

    def has_tool_calls(self) -> bool:
        return any(item.get("type") == "function_call" for item in self._output())

    def get_usage(self) -> Usage:
        usage = self._response.get("usage") or {}
        return Usage(
            input_tokens=usage.get("input_tokens") or 0,
            output_tokens=usage.get("output_tokens") or 0,
        )

    def get_original_response(self) -> dict[str, Any]:
        return self._response

    def to_refusal_response(self, refusal_message: str, content_message: str) -> dict[str, Any]:
        return {
            **self._response,
            "output": [
                {
                    "type": "message",
                    "id": f"msg_refusal_{_now_ms()}",
                    "role": "assistant",
                    "status": "completed",
                    "content": [{"type": "output_text", "text": content_message, "annotations": []}],
                }
            ],
        }


# ---------------------------------------------------------------------------
# Stream
# ---------------------------------------------------------------------------


class OpenAIResponsesStreamAdapter:
    """Folds Responses API stream events into one logical response."""

    provider = PROVIDER
    done_sentinel = "data: [DONE]\n\n"

    def __init__(self) -> None:
        self.state = StreamAccumulatorState()
        # per output_index buffers; entries are removed when their item is done
        self._text_by_output: dict[int, str] = {}
        self._args_by_output: dict[int, str] = {}
        self._calls_by_output: dict[int, dict[str, str]] = {}
        self._held_by_output: dict[int, list[str]] = {}
        # raw argument strings by call_id, kept for wire-faithful rebuilds
        self._raw_arguments: dict[str, str] = {}

        self._handlers: dict[str, Callable[[dict[str, Any]], ChunkProcessingResult]] = {
            "response.created": self._on_lifecycle,
            "response.in_progress": self._on_lifecycle,
            "response.completed": self._on_completed,
            "response.failed": self._on_failed,
            "response.incomplete": self._on_incomplete,
            "response.output_item.added": self._on_output_item_added,
            "response.output_item.done": self._on_output_item_done,
            "response.output_text.delta": self._on_output_text_delta,
            "response.output_text.done": self._on_output_text_done,
            "response.function_call_arguments.delta": self._on_arguments_delta,
            "response.function_call_arguments.done": self._on_arguments_done,
            "error": self._on_error,
        }

    # -- transitions --------------------------------------------------------

    def process_chunk(self, chunk: Any) -> ChunkProcessingResult:
        event = coerce_mapping(chunk)
        self.state.mark_chunk()

        event_type = event.get("type", "")
        handler = self._handlers.get(event_type)
        if handler is not None:
            return handler(event)
        if event_type not in _PASSTHROUGH_EVENTS:
            logger.debug("Forwarding unrecognised Responses stream event %r", event_type)
        return ChunkProcessingResult(sse_data=sse_data(event))

    def _capture_response(self, response: Mapping[str, Any]) -> None:
        if response.get("id"):
            self.state.response_id = response["id"]
        if response.get("model"):
            self.state.model = response["model"]
        usage = response.get("usage")
        if isinstance(usage, Mapping):
            self.state.usage = Usage(
                input_tokens=usage.get("input_tokens") or 0,
                output_tokens=usage.get("output_tokens") or 0,
            )

    def _on_lifecycle(self, event: dict[str, Any]) -> ChunkProcessingResult:
        self._capture_response(event.get("response") or {})
        return ChunkProcessingResult(sse_data=sse_data(event))

    def _finish(self, event: dict[str, Any], stop_reason: str) -> ChunkProcessingResult:
        self._capture_response(event.get("response") or {})
        self.state.stop_reason = stop_reason
        return ChunkProcessingResult(sse_data=sse_data(event), is_final=True)

    def _on_completed(self, event: dict[str, Any]) -> ChunkProcessingResult:
        return self._finish(event, "stop")

    def _on_failed(self, event: dict[str, Any]) -> ChunkProcessingResult:
        return self._finish(event, "error")

    def _on_incomplete(self, event: dict[str, Any]) -> ChunkProcessingResult:
        return self._finish(event, "incomplete")

    def _on_error(self, event: dict[str, Any]) -> ChunkProcessingResult:
        logger.warning("Responses stream reported an error: %s", event.get("message"))
        self.state.stop_reason = "error"
        return ChunkProcessingResult(sse_data=sse_data(event), is_final=True)

    def _on_output_item_added(self, event: dict[str, Any]) -> ChunkProcessingResult:
        index = event.get("output_index", 0)
        item = event.get("item") or {}
        if item.get("type") != "function_call":
            if item.get("type") == "message":
                self._text_by_output[index] = ""
            return ChunkProcessingResult(sse_data=sse_data(event))

        self._calls_by_output[index] = {
            "call_id": item.get("call_id", ""),
            "name": item.get("name", ""),
        }
        self._args_by_output[index] = item.get("arguments") or ""
        self._held_by_output[index] = []
        self.state.raw_tool_call_events.append(event)
        return ChunkProcessingResult(sse_data=sse_data(event), is_tool_call_chunk=True)

    def _on_output_text_delta(self, event: dict[str, Any]) -> ChunkProcessingResult:
        index = event.get("output_index", 0)
        delta = event.get("delta") or ""
        self._text_by_output[index] = self._text_by_output.get(index, "") + delta
        self.state.text += delta
        return ChunkProcessingResult(sse_data=sse_data(event))

    def _on_output_text_done(self, event: dict[str, Any]) -> ChunkProcessingResult:
        self._text_by_output.pop(event.get("output_index", 0), None)
        return ChunkProcessingResult(sse_data=sse_data(event))

    def _on_arguments_delta(self, event: dict[str, Any]) -> ChunkProcessingResult:
        index = event.get("output_index", 0)
        self._args_by_output[index] = self._args_by_output.get(index, "") + (event.get("delta") or "")
        return ChunkProcessingResult(is_tool_call_chunk=True)

    def _on_arguments_done(self, event: dict[str, Any]) -> ChunkProcessingResult:
        index = event.get("output_index", 0)
        if isinstance(event.get("arguments"), str):
            self._args_by_output[index] = event["arguments"]
        self._held_by_output.setdefault(index, []).append(sse_data(event))
        self.state.raw_tool_call_events.append(event)
        return ChunkProcessingResult(is_tool_call_chunk=True)

    def _on_output_item_done(self, event: dict[str, Any]) -> ChunkProcessingResult:
        index = event.get("output_index", 0)
        item = event.get("item") or {}
        if item.get("type") != "function_call":
            self._text_by_output.pop(index, None)
            return ChunkProcessingResult(sse_data=sse_data(event))

        registered = self._calls_by_output.pop(index, {})
        buffered = self._args_by_output.pop(index, "")
        held = self._held_by_output.pop(index, [])

        call_id = item.get("call_id") or registered.get("call_id", "")
        name = item.get("name") or registered.get("name", "")
        arguments = item.get("arguments") if isinstance(item.get("arguments"), str) else buffered

        self._raw_arguments[call_id] = arguments
        self.state.tool_calls.append(
            CommonToolCall(id=call_id, name=name, arguments=parse_tool_arguments(arguments))
        )
        self.state.raw_tool_call_events.append(event)
        return ChunkProcessingResult(sse_data="".join(held) + sse_data(event), is_tool_call_chunk=True)

    # -- queries ------------------------------------------------------------

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
        """Drop half-assembled items; they are never finalized."""
        self._text_by_output.clear()
        self._args_by_output.clear()
        self._calls_by_output.clear()
        self._held_by_output.clear()

    # -- synthetic frames ---------------------------------------------------

    def format_text_delta_sse(self, text: str) -> str:
        return sse_data(
            {
                "type": "response.output_text.delta",
                "output_index": 0,
                "content_index": 0,
                "delta": text,
            }
        )

    def format_complete_text_sse(self, text: str) -> str:
        events = [
            {
                "type": "response.output_item.added",
                "output_index": 0,
                "item": {
                    "type": "message",
                    "id": f"msg_{_now_ms()}",
                    "role": "assistant",
                    "status": "in_progress",
                    "content": [],
                },
            },
            {
                "type": "response.content_part.added",
                "output_index": 0,
                "content_index": 0,
                "part": {"type": "output_text", "text": ""},
            },
            {
                "type": "response.output_text.delta",
                "output_index": 0,
                "content_index": 0,
                "delta": text,
            },
            {
                "type": "response.output_text.done",
                "output_index": 0,
                "content_index": 0,
                "text": text,
            },
        ]
        return "".join(sse_data(event) for event in events)

    def format_end_sse(self) -> str:
        completed = {"type": "response.completed", "response": self.to_provider_response()}
        return sse_data(completed) + "data: [DONE]\n\n"

    # -- rebuilds -----------------------------------------------------------

    def _envelope(self, output: list[dict[str, Any]], status: str = "completed") -> dict[str, Any]:
        response: dict[str, Any] = {
            "id": self.state.response_id,
            "object": "response",
            "created_at": math.floor(self.state.timing.start_time / 1000),
            "model": self.state.model,
            "status": status,
            "output": output,
        }
        if self.state.usage is not None:
            response["usage"] = {
                "input_tokens": self.state.usage.input_tokens,
                "output_tokens": self.state.usage.output_tokens,
                "total_tokens": self.state.usage.input_tokens + self.state.usage.output_tokens,
            }
        return response

    def to_provider_response(self) -> dict[str, Any]:
        output: list[dict[str, Any]] = []
        if self.state.text:
            output.append(
                {
                    "type": "message",
                    "id": f"msg_{self.state.response_id}_text",
                    "role": "assistant",
                    "status": "completed",
                    "content": [{"type": "output_text", "text": self.state.text, "annotations": []}],
                }
            )
        for call in self.state.tool_calls:
            output.append(
                {
                    "type": "function_call",
                    "id": f"fc_{call.id}",
                    "call_id": call.id,
                    "name": call.name,
                    "arguments": self._raw_arguments.get(call.id, "{}"),
                    "status": "completed",
                }
            )
        return self._envelope(output, _RESPONSE_STATUS.get(self.state.stop_reason or "", "completed"))

    def to_provider_refusal_response(self, refusal_message: str, content_message: str) -> dict[str, Any]:
        return self._envelope(
            [
                {
                    "type": "message",
                    "id": f"msg_refusal_{_now_ms()}",
                    "role": "assistant",
                    "status": "completed",
                    "content": [{"type": "output_text", "text": content_message, "annotations": []}],
                }
            ]
        )


STREAM_EVENT_TYPES: frozenset[str] = _STATEFUL_EVENTS | _PASSTHROUGH_EVENTS
