"""Anthropic Messages adapters for pure request/response/stream transformations."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional

from llm_gateway.adapters._utils import (
    SSE_HEADERS,
    coerce_mapping,
    deep_copy,
    dumps,
    parse_json_or_raw,
    parse_tool_arguments,
    sse_event,
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

__all__ = [
    "AnthropicRequestAdapter",
    "AnthropicResponseAdapter",
    "AnthropicStreamAdapter",
]

logger = logging.getLogger(__name__)

PROVIDER = "anthropic"


def _blocks(message: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    content = message.get("content")
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, Mapping)]


def _tool_result_text(content: Any) -> Any:
    if isinstance(content, list):
        text = unwrap_tool_content(content)
        # image and document blocks stay structured
        return content if text is None else text
    return content


class AnthropicRequestAdapter:
    """Adapter over a Messages API request body."""

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

    def _messages(self) -> list[Mapping[str, Any]]:
        return [m for m in self._request.get("messages") or [] if isinstance(m, Mapping)]

    def _find_tool_name(self, tool_use_id: str) -> str:
        for message in reversed(self._messages()):
            if message.get("role") != "assistant":
                continue
            for block in _blocks(message):
                if block.get("type") == "tool_use" and block.get("id") == tool_use_id:
                    return block.get("name") or UNKNOWN_TOOL_NAME
        logger.debug("No tool_use block matches %s, using %r", tool_use_id, UNKNOWN_TOOL_NAME)
        return UNKNOWN_TOOL_NAME

    def _tool_results_in(self, message: Mapping[str, Any]) -> list[CommonToolResult]:
        if message.get("role") != "user":
            return []
        results: list[CommonToolResult] = []
        for block in _blocks(message):
            if block.get("type") != "tool_result":
                continue
            tool_use_id = block.get("tool_use_id", "")
            content = parse_json_or_raw(_tool_result_text(block.get("content")))
            is_error = bool(block.get("is_error"))
            results.append(
                CommonToolResult(
                    id=tool_use_id,
                    name=self._find_tool_name(tool_use_id),
                    content=content,
                    is_error=is_error,
                    error=(content if isinstance(content, str) else dumps(content)) if is_error else None,
                )
            )
        return results

    def get_messages(self) -> list[CommonMessage]:
        messages: list[CommonMessage] = []
        for message in self._messages():
            results = self._tool_results_in(message)
            messages.append(CommonMessage(role=message.get("role", "user"), tool_calls=results or None))
        return messages

    def get_tool_results(self) -> list[CommonToolResult]:
        return [result for message in self._messages() for result in self._tool_results_in(message)]

    def get_tools(self) -> list[CommonTool]:
        tools: list[CommonTool] = []
        for tool in self._request.get("tools") or []:
            # server tools (web_search_*, bash_*, ...) carry a versioned type
            if not isinstance(tool, Mapping) or tool.get("type") not in (None, "custom"):
                continue
            tools.append(
                CommonTool(
                    name=tool.get("name", ""),
                    description=tool.get("description"),
                    input_schema=dict(tool.get("input_schema") or {}),
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
        entries = []
        for message in self._messages():
            if message.get("role") != "user":
                continue
            for block in _blocks(message):
                if block.get("type") != "tool_result" or block.get("is_error") or "tool_use_id" not in block:
                    continue
                tool_use_id = block["tool_use_id"]
                entries.append((tool_use_id, self._tool_result_updates.get(tool_use_id, block.get("content"))))
        updates, stats = compress_tool_results(entries, model, vendor="anthropic", provider=self.provider)
        self.apply_tool_result_updates(updates)
        return stats

    def to_provider_request(self) -> dict[str, Any]:
        request = deep_copy(dict(self._request))
        if self._model_override:
            request["model"] = self._model_override
        if not self._tool_result_updates:
            return request
        for message in request.get("messages") or []:
            if not isinstance(message, dict) or message.get("role") != "user":
                continue
            if not isinstance(message.get("content"), list):
                continue
            for block in message["content"]:
                if not isinstance(block, dict) or block.get("type") != "tool_result":
                    continue
                if block.get("tool_use_id") in self._tool_result_updates:
                    block["content"] = self._tool_result_updates[block["tool_use_id"]]
        return request


class AnthropicResponseAdapter:
    """Read-only view over a Message (dict or ``anthropic`` SDK model)."""

    provider = PROVIDER

    def __init__(self, response: Any) -> None:
        self._response = coerce_mapping(response)

    def get_id(self) -> str:
        return self._response.get("id", "")

    def get_model(self) -> str:
        return self._response.get("model", "")

    def get_text(self) -> str:
        return "".join(block.get("text", "") for block in _blocks(self._response) if block.get("type") == "text")

    def get_tool_calls(self) -> list[CommonToolCall]:
        return [
            CommonToolCall(
                id=block.get("id", ""),
                name=block.get("name", ""),
                arguments=parse_tool_arguments(block.get("input")),
            )
            for block in _blocks(self._response)
            if block.get("type") == "tool_use"
        ]

    def has_tool_calls(self) -> bool:
        return any(block.get("type") == "tool_use" for block in _blocks(self._response))

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
            "content": [{"type": "text", "text": content_message}],
            "stop_reason": "end_turn",
        }


class AnthropicStreamAdapter:
    """Folds Messages API stream events into one logical message.

    ``tool_use`` content blocks are withheld from ``content_block_start``
    through every ``input_json_delta`` and released as a unit at their
    ``content_block_stop``.
    """

    provider = PROVIDER
    done_sentinel = ""

    def __init__(self) -> None:
        self.state = StreamAccumulatorState()
        self._tool_blocks: dict[int, dict[str, str]] = {}
        self._held_by_index: dict[int, list[str]] = {}
        self._raw_arguments: dict[str, str] = {}
        self._next_index = 0

        self._handlers: dict[str, Callable[[dict[str, Any]], ChunkProcessingResult]] = {
            "message_start": self._on_message_start,
            "content_block_start": self._on_block_start,
            "content_block_delta": self._on_block_delta,
            "content_block_stop": self._on_block_stop,
            "message_delta": self._on_message_delta,
            "message_stop": self._on_message_stop,
            "error": self._on_error,
            "ping": self._forward,
        }

    def process_chunk(self, chunk: Any) -> ChunkProcessingResult:
        event = coerce_mapping(chunk)
        self.state.mark_chunk()
        handler = self._handlers.get(event.get("type", ""))
        if handler is None:
            logger.debug("Forwarding unrecognised Anthropic stream event %r", event.get("type"))
            return self._forward(event)
        return handler(event)

    @staticmethod
    def _frame(event: Mapping[str, Any]) -> str:
        return sse_event(event.get("type", ""), event)

    def _forward(self, event: dict[str, Any]) -> ChunkProcessingResult:
        return ChunkProcessingResult(sse_data=self._frame(event))

    def _on_message_start(self, event: dict[str, Any]) -> ChunkProcessingResult:
        message = event.get("message") or {}
        self.state.response_id = message.get("id", self.state.response_id)
        self.state.model = message.get("model", self.state.model)
        usage = message.get("usage") or {}
        self.state.usage = Usage(
            input_tokens=usage.get("input_tokens") or 0,
            output_tokens=usage.get("output_tokens") or 0,
        )
        return self._forward(event)

    def _on_block_start(self, event: dict[str, Any]) -> ChunkProcessingResult:
        index = event.get("index", 0)
        self._next_index = max(self._next_index, index + 1)
        block = event.get("content_block") or {}
        if block.get("type") != "tool_use":
            return self._forward(event)

        initial_input = block.get("input")
        self._tool_blocks[index] = {
            "id": block.get("id", ""),
            "name": block.get("name", ""),
            "arguments": dumps(initial_input) if initial_input else "",
        }
        self._held_by_index[index] = [self._frame(event)]
        self.state.raw_tool_call_events.append(event)
        return ChunkProcessingResult(is_tool_call_chunk=True)

    def _on_block_delta(self, event: dict[str, Any]) -> ChunkProcessingResult:
        index = event.get("index", 0)
        delta = event.get("delta") or {}
        if delta.get("type") == "text_delta":
            self.state.text += delta.get("text", "")
            return self._forward(event)

        if delta.get("type") == "input_json_delta" and index in self._tool_blocks:
            self._tool_blocks[index]["arguments"] += delta.get("partial_json", "")
            self._held_by_index[index].append(self._frame(event))
            self.state.raw_tool_call_events.append(event)
            return ChunkProcessingResult(is_tool_call_chunk=True)

        return self._forward(event)

    def _on_block_stop(self, event: dict[str, Any]) -> ChunkProcessingResult:
        index = event.get("index", 0)
        block = self._tool_blocks.pop(index, None)
        if block is None:
            return self._forward(event)

        held = self._held_by_index.pop(index, [])
        arguments = block["arguments"] or "{}"
        self._raw_arguments[block["id"]] = arguments
        self.state.tool_calls.append(
            CommonToolCall(id=block["id"], name=block["name"], arguments=parse_tool_arguments(arguments))
        )
        self.state.raw_tool_call_events.append(event)
        return ChunkProcessingResult(sse_data="".join(held) + self._frame(event), is_tool_call_chunk=True)

    def _on_message_delta(self, event: dict[str, Any]) -> ChunkProcessingResult:
        delta = event.get("delta") or {}
        if delta.get("stop_reason"):
            self.state.stop_reason = delta["stop_reason"]
        usage = event.get("usage") or {}
        if usage:
            current = self.state.usage or Usage()
            self.state.usage = Usage(
                input_tokens=usage.get("input_tokens") or current.input_tokens,
                output_tokens=usage.get("output_tokens") or current.output_tokens,
            )
        return self._forward(event)

    def _on_message_stop(self, event: dict[str, Any]) -> ChunkProcessingResult:
        if self.state.stop_reason is None:
            self.state.stop_reason = "end_turn"
        return ChunkProcessingResult(sse_data=self._frame(event), is_final=True)

    def _on_error(self, event: dict[str, Any]) -> ChunkProcessingResult:
        logger.warning("Anthropic stream reported an error: %s", event.get("error"))
        self.state.stop_reason = "error"
        return ChunkProcessingResult(sse_data=self._frame(event), is_final=True)

    def get_sse_headers(self) -> dict[str, str]:
        return dict(SSE_HEADERS)

    def get_text(self) -> str:
        return self.state.text

    def get_tool_calls(self) -> list[CommonToolCall]:
        return list(self.state.tool_calls)

    def get_usage(self) -> Optional[Usage]:
        return self.state.usage

    def get_raw_tool_call_events(self) -> str:
        return "".join(self._frame(event) for event in self.state.raw_tool_call_events)

    def discard_pending(self) -> None:
        self._tool_blocks.clear()
        self._held_by_index.clear()

    def format_text_delta_sse(self, text: str) -> str:
        index = max(self._next_index - 1, 0)
        return sse_event(
            "content_block_delta",
            {"type": "content_block_delta", "index": index, "delta": {"type": "text_delta", "text": text}},
        )

    def format_complete_text_sse(self, text: str) -> str:
        index = self._next_index
        self._next_index += 1
        return "".join(
            [
                sse_event(
                    "content_block_start",
                    {"type": "content_block_start", "index": index, "content_block": {"type": "text", "text": ""}},
                ),
                sse_event(
                    "content_block_delta",
                    {"type": "content_block_delta", "index": index, "delta": {"type": "text_delta", "text": text}},
                ),
                sse_event("content_block_stop", {"type": "content_block_stop", "index": index}),
            ]
        )

    def format_end_sse(self) -> str:
        usage = self.state.usage or Usage()
        return sse_event(
            "message_delta",
            {
                "type": "message_delta",
                "delta": {"stop_reason": self.state.stop_reason or "end_turn", "stop_sequence": None},
                "usage": {"output_tokens": usage.output_tokens},
            },
        ) + sse_event("message_stop", {"type": "message_stop"})

    def _message(self, content: list[dict[str, Any]], stop_reason: str) -> dict[str, Any]:
        usage = self.state.usage or Usage()
        return {
            "id": self.state.response_id,
            "type": "message",
            "role": "assistant",
            "model": self.state.model,
            "content": content,
            "stop_reason": stop_reason,
            "stop_sequence": None,
            "usage": {"input_tokens": usage.input_tokens, "output_tokens": usage.output_tokens},
        }

    def to_provider_response(self) -> dict[str, Any]:
        content: list[dict[str, Any]] = []
        if self.state.text:
            content.append({"type": "text", "text": self.state.text})
        for call in self.state.tool_calls:
            content.append(
                {
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.name,
                    "input": parse_tool_arguments(self._raw_arguments.get(call.id)),
                }
            )
        return self._message(content, self.state.stop_reason or "end_turn")

    def to_provider_refusal_response(self, refusal_message: str, content_message: str) -> dict[str, Any]:
        return self._message([{"type": "text", "text": content_message}], "end_turn")
