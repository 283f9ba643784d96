"""Amazon Bedrock Converse adapters.

Converse payloads use camelCase single-key content blocks (``{"text": ...}``,
``{"toolUse": {...}}``, ``{"toolResult": {...}}``) and stream events are
single-key dicts (``{"contentBlockDelta": {...}}``). Streams are re-emitted to
clients with Anthropic-style ``event:``/``data:`` framing.
"""
from __future__ import annotations

import logging
import random
import string
import time
from typing import Any, Mapping, Optional

from llm_gateway.adapters._utils import (
    SSE_HEADERS,
    coerce_mapping,
    deep_copy,
    dumps,
    parse_json_or_raw,
    parse_tool_arguments,
    sse_event,
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
    "BedrockRequestAdapter",
    "BedrockResponseAdapter",
    "BedrockStreamAdapter",
    "build_tool_name_mapping",
    "encode_tool_name",
    "generate_message_id",
]

logger = logging.getLogger(__name__)

PROVIDER = "bedrock"

EXCEPTION_EVENTS = frozenset(
    {
        "internalServerException",
        "modelStreamErrorException",
        "validationException",
        "throttlingException",
        "serviceUnavailableException",
    }
)


def encode_tool_name(name: str) -> str:
    """Some Bedrock model families (Nova) reject hyphens in tool names."""
    return name.replace("-", "_")


def build_tool_name_mapping(request: Optional[Mapping[str, Any]]) -> dict[str, str]:
    """Map encoded tool names back to the names the client declared."""
    mapping: dict[str, str] = {}
    for tool in ((request or {}).get("toolConfig") or {}).get("tools") or []:
        name = (tool.get("toolSpec") or {}).get("name")
        if name and encode_tool_name(name) != name:
            mapping[encode_tool_name(name)] = name
    return mapping


def generate_message_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"msg_bedrock_{int(time.time() * 1000)}_{suffix}"


def _content(message: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    return [block for block in message.get("content") or [] if isinstance(block, Mapping)]


def _usage_from(raw: Any) -> Optional[Usage]:
    if not isinstance(raw, Mapping):
        return None
    return Usage(input_tokens=raw.get("inputTokens") or 0, output_tokens=raw.get("outputTokens") or 0)


class BedrockRequestAdapter:
    """Adapter over a Converse request body."""

    provider = PROVIDER

    def __init__(self, request: Mapping[str, Any]) -> None:
        self._request = request
        self._model_override: Optional[str] = None
        self._tool_result_updates: dict[str, str] = {}

    def get_model(self) -> str:
        return self._model_override or self._request.get("modelId", "")

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
            for block in _content(message):
                tool_use = block.get("toolUse")
                if tool_use and tool_use.get("toolUseId") == tool_use_id:
                    return tool_use.get("name") or UNKNOWN_TOOL_NAME
        logger.debug("No toolUse block matches %s, using %r", tool_use_id, UNKNOWN_TOOL_NAME)
        return UNKNOWN_TOOL_NAME

    def _tool_results_in(self, message: Mapping[str, Any]) -> list[CommonToolResult]:
        if message.get("role") != "user":
            return []
        results: list[CommonToolResult] = []
        for block in _content(message):
            tool_result = block.get("toolResult")
            if not tool_result:
                continue
            tool_use_id = tool_result.get("toolUseId", "")
            items = tool_result.get("content") or []
            first = items[0] if items and isinstance(items[0], Mapping) else {}
            if "text" in first:
                content = parse_json_or_raw(first["text"])
            elif "json" in first:
                content = first["json"]
            else:
                content = items
            is_error = tool_result.get("status") == "error"
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
        return [
            CommonMessage(role=message.get("role", "user"), tool_calls=self._tool_results_in(message) or None)
            for message in self._messages()
        ]

    def get_tool_results(self) -> list[CommonToolResult]:
        return [result for message in self._messages() for result in self._tool_results_in(message)]

    def get_tools(self) -> list[CommonTool]:
        tools: list[CommonTool] = []
        for tool in (self._request.get("toolConfig") or {}).get("tools") or []:
            spec = tool.get("toolSpec") if isinstance(tool, Mapping) else None
            if not spec:
                continue
            tools.append(
                CommonTool(
                    name=spec.get("name", ""),
                    description=spec.get("description"),
                    input_schema=dict((spec.get("inputSchema") or {}).get("json") or {}),
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
            for block in _content(message):
                tool_result = block.get("toolResult")
                if not tool_result or tool_result.get("status") == "error" or "toolUseId" not in tool_result:
                    continue
                tool_use_id = tool_result["toolUseId"]
                if tool_use_id in self._tool_result_updates:
                    entries.append((tool_use_id, self._tool_result_updates[tool_use_id]))
                    continue
                items = tool_result.get("content") or []
                first = items[0] if items and isinstance(items[0], Mapping) else {}
                if isinstance(first.get("text"), str):
                    entries.append((tool_use_id, first["text"]))
                elif "json" in first:
                    entries.append((tool_use_id, dumps(first["json"])))
        # Claude tokenizer is a reasonable approximation across Bedrock models
        updates, stats = compress_tool_results(entries, model, vendor="anthropic", provider=self.provider)
        self.apply_tool_result_updates(updates)
        return stats

    def to_provider_request(self) -> dict[str, Any]:
        request = deep_copy(dict(self._request))
        if self._model_override:
            request["modelId"] = self._model_override
        if not self._tool_result_updates:
            return request
        for message in request.get("messages") or []:
            if not isinstance(message, dict) or message.get("role") != "user":
                continue
            for block in message.get("content") or []:
                tool_result = block.get("toolResult") if isinstance(block, dict) else None
                if isinstance(tool_result, dict) and tool_result.get("toolUseId") in self._tool_result_updates:
                    tool_result["content"] = [{"text": self._tool_result_updates[tool_result["toolUseId"]]}]
        return request


class BedrockResponseAdapter:
    """Read-only view over a Converse response."""

    provider = PROVIDER

    def __init__(self, response: Any, request: Optional[Mapping[str, Any]] = None) -> None:
        self._response = coerce_mapping(response)
        self._model = (request or {}).get("modelId", "")
        self._tool_names = build_tool_name_mapping(request)
        request_id = (self._response.get("$metadata") or {}).get("requestId")
        self._id = request_id or generate_message_id()

    def _content(self) -> list[Mapping[str, Any]]:
        message = (self._response.get("output") or {}).get("message") or {}
        return _content(message)

    def get_id(self) -> str:
        return self._id

    def get_model(self) -> str:
        return self._model

    def get_text(self) -> str:
        return "".join(block["text"] for block in self._content() if isinstance(block.get("text"), str))

    def get_tool_calls(self) -> list[CommonToolCall]:
        calls: list[CommonToolCall] = []
        for block in self._content():
            tool_use = block.get("toolUse")
            if not tool_use:
                continue
            name = tool_use.get("name", "")
            calls.append(
                CommonToolCall(
                    id=tool_use.get("toolUseId", ""),
                    name=self._tool_names.get(name, name),
                    arguments=parse_tool_arguments(tool_use.get("input")),
                )
            )
        return calls

    def has_tool_calls(self) -> bool:
        return any(block.get("toolUse") for block in self._content())

    def get_usage(self) -> Usage:
        return _usage_from(self._response.get("usage")) or Usage()

    def get_original_response(self) -> dict[str, Any]:
        return self._response

    def to_refusal_response(self, refusal_message: str, content_message: str) -> dict[str, Any]:
        return {
            **self._response,
            "output": {"message": {"role": "assistant", "content": [{"text": content_message}]}},
            "stopReason": "end_turn",
        }


class BedrockStreamAdapter:
    """Folds ConverseStream events and re-emits them as Anthropic-style frames.

    ``messageStop`` only records the stop reason: Bedrock sends usage in a
    trailing ``metadata`` event, which is where the closing frames go out.
    """

    provider = PROVIDER
    done_sentinel = ""

    def __init__(self, request: Optional[Mapping[str, Any]] = None) -> None:
        self.state = StreamAccumulatorState(
            response_id=generate_message_id(),
            model=(request or {}).get("modelId", ""),
        )
        self._tool_names = build_tool_name_mapping(request)
        self._tool_blocks: dict[int, dict[str, str]] = {}
        self._held_by_index: dict[int, list[str]] = {}
        self._open_text_blocks: set[int] = set()
        self._raw_arguments: dict[str, str] = {}
        self._message_stopped = False
        self._next_index = 0

    def _decode(self, name: str) -> str:
        return self._tool_names.get(name, name)

    def process_chunk(self, chunk: Any) -> ChunkProcessingResult:
        event = coerce_mapping(chunk)
        self.state.mark_chunk()

        if "messageStart" in event:
            return ChunkProcessingResult(sse_data=self._message_start_frame())
        if "contentBlockStart" in event:
            return self._on_block_start(event)
        if "contentBlockDelta" in event:
            return self._on_block_delta(event)
        if "contentBlockStop" in event:
            return self._on_block_stop(event)
        if "messageStop" in event:
            self.state.stop_reason = event["messageStop"].get("stopReason") or "end_turn"
            self._message_stopped = True
            return ChunkProcessingResult()
        if "metadata" in event:
            return self._on_metadata(event["metadata"])

        exception_key = next((key for key in event if key in EXCEPTION_EVENTS), None)
        if exception_key is not None:
            return self._on_exception(exception_key, event[exception_key])

        logger.debug("Ignoring unrecognised Bedrock stream event %s", list(event))
        return ChunkProcessingResult()

    def _message_start_frame(self) -> str:
        return sse_event(
            "message_start",
            {
                "type": "message_start",
                "message": {
                    "id": self.state.response_id,
                    "type": "message",
                    "role": "assistant",
                    "model": self.state.model,
                    "content": [],
                    "stop_reason": None,
                    "stop_sequence": None,
                    "usage": {"input_tokens": 0, "output_tokens": 0},
                },
            },
        )

    def _tool_frame(self, event: Mapping[str, Any]) -> str:
        """Anthropic-style frame for a held toolUse event."""
        if "contentBlockStart" in event:
            body = event["contentBlockStart"]
            tool_use = (body.get("start") or {}).get("toolUse") or {}
            return sse_event(
                "content_block_start",
                {
                    "type": "content_block_start",
                    "index": body.get("contentBlockIndex", 0),
                    "content_block": {
                        "type": "tool_use",
                        "id": tool_use.get("toolUseId", ""),
                        "name": self._decode(tool_use.get("name", "")),
                        "input": {},
                    },
                },
            )
        if "contentBlockDelta" in event:
            body = event["contentBlockDelta"]
            partial = ((body.get("delta") or {}).get("toolUse") or {}).get("input", "")
            return sse_event(
                "content_block_delta",
                {
                    "type": "content_block_delta",
                    "index": body.get("contentBlockIndex", 0),
                    "delta": {"type": "input_json_delta", "partial_json": partial},
                },
            )
        body = event.get("contentBlockStop") or {}
        return sse_event(
            "content_block_stop",
            {"type": "content_block_stop", "index": body.get("contentBlockIndex", 0)},
        )

    def _text_block_start(self, index: int) -> str:
        self._open_text_blocks.add(index)
        self._next_index = max(self._next_index, index + 1)
        return sse_event(
            "content_block_start",
            {"type": "content_block_start", "index": index, "content_block": {"type": "text", "text": ""}},
        )

    def _on_block_start(self, event: dict[str, Any]) -> ChunkProcessingResult:
        body = event["contentBlockStart"]
        index = body.get("contentBlockIndex", 0)
        self._next_index = max(self._next_index, index + 1)
        tool_use = (body.get("start") or {}).get("toolUse")
        if not tool_use:
            return ChunkProcessingResult(sse_data=self._text_block_start(index))

        self._tool_blocks[index] = {
            "id": tool_use.get("toolUseId", ""),
            "name": self._decode(tool_use.get("name", "")),
            "arguments": "",
        }
        self._held_by_index[index] = [self._tool_frame(event)]
        self.state.raw_tool_call_events.append(event)
        return ChunkProcessingResult(is_tool_call_chunk=True)

    def _on_block_delta(self, event: dict[str, Any]) -> ChunkProcessingResult:
        body = event["contentBlockDelta"]
        index = body.get("contentBlockIndex", 0)
        delta = body.get("delta") or {}

        if "toolUse" in delta and index in self._tool_blocks:
            self._tool_blocks[index]["arguments"] += (delta["toolUse"] or {}).get("input", "")
            self._held_by_index[index].append(self._tool_frame(event))
            self.state.raw_tool_call_events.append(event)
            return ChunkProcessingResult(is_tool_call_chunk=True)

        if isinstance(delta.get("text"), str):
            frames = "" if index in self._open_text_blocks else self._text_block_start(index)
            self.state.text += delta["text"]
            frames += sse_event(
                "content_block_delta",
                {"type": "content_block_delta", "index": index, "delta": {"type": "text_delta", "text": delta["text"]}},
            )
            return ChunkProcessingResult(sse_data=frames)

        # reasoning content and other deltas have no Anthropic text equivalent here
        return ChunkProcessingResult()

    def _on_block_stop(self, event: dict[str, Any]) -> ChunkProcessingResult:
        index = (event["contentBlockStop"] or {}).get("contentBlockIndex", 0)
        block = self._tool_blocks.pop(index, None)
        if block is None:
            self._open_text_blocks.discard(index)
            return ChunkProcessingResult(
                sse_data=sse_event("content_block_stop", {"type": "content_block_stop", "index": index})
            )

        held = self._held_by_index.pop(index, [])
        arguments = block["arguments"] or "{}"
        self._raw_arguments[block["id"]] = arguments
        self.state.tool_calls.append(
            CommonToolCall(id=block["id"], name=block["name"], arguments=parse_tool_arguments(arguments))
        )
        self.state.raw_tool_call_events.append(event)
        return ChunkProcessingResult(sse_data="".join(held) + self._tool_frame(event), is_tool_call_chunk=True)

    def _on_metadata(self, metadata: Mapping[str, Any]) -> ChunkProcessingResult:
        usage = _usage_from(metadata.get("usage"))
        if usage is not None:
            self.state.usage = usage
        if not self._message_stopped:
            return ChunkProcessingResult()
        return ChunkProcessingResult(sse_data=self.format_end_sse(), is_final=True)

    def _on_exception(self, key: str, body: Any) -> ChunkProcessingResult:
        message = body.get("message", key) if isinstance(body, Mapping) else str(body)
        logger.warning("Bedrock stream reported %s: %s", key, message)
        self.state.stop_reason = "error"
        return ChunkProcessingResult(
            sse_data=sse_event("error", {"type": "error", "error": {"type": key, "message": message}}),
            is_final=True,
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
        return "".join(self._tool_frame(event) for event in self.state.raw_tool_call_events)

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
        return (
            self._text_block_start(index)
            + sse_event(
                "content_block_delta",
                {"type": "content_block_delta", "index": index, "delta": {"type": "text_delta", "text": text}},
            )
            + sse_event("content_block_stop", {"type": "content_block_stop", "index": index})
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

    def _response(self, content: list[dict[str, Any]], stop_reason: str) -> dict[str, Any]:
        usage = self.state.usage or Usage()
        return {
            "$metadata": {"requestId": self.state.response_id},
            "output": {"message": {"role": "assistant", "content": content}},
            "stopReason": stop_reason,
            "usage": {
                "inputTokens": usage.input_tokens,
                "outputTokens": usage.output_tokens,
                "totalTokens": usage.input_tokens + usage.output_tokens,
            },
        }

    def to_provider_response(self) -> dict[str, Any]:
        content: list[dict[str, Any]] = []
        if self.state.text:
            content.append({"text": self.state.text})
        for call in self.state.tool_calls:
            content.append(
                {
                    "toolUse": {
                        "toolUseId": call.id,
                        "name": call.name,
                        "input": parse_tool_arguments(self._raw_arguments.get(call.id)),
                    }
                }
            )
        return self._response(content, self.state.stop_reason or "end_turn")

    def to_provider_refusal_response(self, refusal_message: str, content_message: str) -> dict[str, Any]:
        return self._response([{"text": content_message}], "end_turn")
