"""Structural interfaces for the three adapter roles and the provider record."""
from __future__ import annotations

from typing import Any, AsyncIterator, Mapping, Optional, Protocol

from llm_gateway.types.common import (
    ChunkProcessingResult,
    CommonMessage,
    CommonTool,
    CommonToolCall,
    CommonToolResult,
    StreamAccumulatorState,
    ToonCompressionResult,
    Usage,
)

__all__ = ["RequestAdapter", "ResponseAdapter", "StreamAdapter", "LLMProvider", "Headers"]

Headers = Mapping[str, "str | list[str] | None"]


class RequestAdapter(Protocol):
    """Read, modify and rebuild one vendor request without touching the original."""

    provider: str

    def get_model(self) -> str: ...

    def set_model(self, model: str) -> None: ...

    def is_streaming(self) -> bool: ...

    def get_messages(self) -> list[CommonMessage]: ...

    def get_tool_results(self) -> list[CommonToolResult]: ...

    def get_tools(self) -> list[CommonTool]: ...

    def has_tools(self) -> bool: ...

    def update_tool_result(self, tool_call_id: str, new_content: str) -> None: ...

    def apply_tool_result_updates(self, updates: Mapping[str, str]) -> None: ...

    def apply_toon_compression(self, model: str) -> ToonCompressionResult: ...

    def to_provider_request(self) -> dict[str, Any]: ...


class ResponseAdapter(Protocol):
    """Read-only view over one non-streaming vendor response."""

    provider: str

    def get_id(self) -> str: ...

    def get_model(self) -> str: ...

    def get_text(self) -> str: ...

    def get_tool_calls(self) -> list[CommonToolCall]: ...

    def has_tool_calls(self) -> bool: ...

    def get_usage(self) -> Usage: ...

    def get_original_response(self) -> dict[str, Any]: ...

    def to_refusal_response(self, refusal_message: str, content_message: str) -> dict[str, Any]: ...


class StreamAdapter(Protocol):
    """Per-request state machine over a vendor event stream."""

    provider: str
    state: StreamAccumulatorState
    # sent after the final chunk; empty when the final frame already ends the stream
    done_sentinel: str

    def process_chunk(self, chunk: Any) -> ChunkProcessingResult: ...

    def get_sse_headers(self) -> dict[str, str]: ...

    def get_text(self) -> str: ...

    def get_tool_calls(self) -> list[CommonToolCall]: ...

    def get_usage(self) -> Optional[Usage]: ...

    def get_raw_tool_call_events(self) -> str: ...

    def discard_pending(self) -> None: ...

    def format_text_delta_sse(self, text: str) -> str: ...

    def format_complete_text_sse(self, text: str) -> str: ...

    def format_end_sse(self) -> str: ...

    def to_provider_response(self) -> dict[str, Any]: ...

    def to_provider_refusal_response(self, refusal_message: str, content_message: str) -> dict[str, Any]: ...


class LLMProvider(Protocol):
    """Everything the gateway needs to talk to one wire protocol."""

    provider: str
    interaction_type: str

    def create_request_adapter(self, request: Mapping[str, Any]) -> RequestAdapter: ...

    def create_response_adapter(
        self, response: Any, request: Optional[Mapping[str, Any]] = None
    ) -> ResponseAdapter: ...

    def create_stream_adapter(self, request: Optional[Mapping[str, Any]] = None) -> StreamAdapter: ...

    def extract_api_key(self, headers: Headers) -> Optional[str]: ...

    def get_base_url(self) -> Optional[str]: ...

    def get_span_name(self, streaming: bool = False) -> str: ...

    def create_client(self, api_key: Optional[str], options: Any = None) -> Any: ...

    async def execute(self, client: Any, request: Mapping[str, Any]) -> dict[str, Any]: ...

    def execute_stream(self, client: Any, request: Mapping[str, Any]) -> AsyncIterator[Any]: ...

    def extract_error_message(self, error: BaseException) -> str: ...
