"""
Vendor-neutral types shared by every adapter.

Everything provider-specific lives in adapters; these stay minimal.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal, Optional

__all__ = [
    "Role",
    "CommonToolCall",
    "CommonToolResult",
    "CommonMessage",
    "CommonTool",
    "Usage",
    "ChunkProcessingResult",
    "StreamTiming",
    "StreamAccumulatorState",
    "SavingsStatus",
    "ToonCompressionResult",
    "UNKNOWN_TOOL_NAME",
]

Role = Literal["user", "assistant", "system", "tool"]

# Used when a tool result cannot be matched to the tool call that produced it.
UNKNOWN_TOOL_NAME = "unknown"


@dataclass(slots=True)
class CommonToolCall:
    """A tool call requested by the model."""
    id: str                     # vendor correlation id, joins to CommonToolResult.id
    name: str
    arguments: dict[str, Any]


@dataclass(slots=True)
class CommonToolResult:
    """Outcome of executing a tool call, as found in a request."""
    id: str
    name: str
    content: Any
    is_error: bool = False
    error: Optional[str] = None


@dataclass(slots=True)
class CommonMessage:
    role: Role
    tool_calls: list[CommonToolResult] | None = None


@dataclass(slots=True)
class CommonTool:
    """A user-defined function tool declared in a request."""
    name: str
    description: Optional[str] = None
    input_schema: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(slots=True)
class ChunkProcessingResult:
    """What the caller should do with one vendor stream event.

    Attributes:
        sse_data: Frames to forward to the client now, or None to forward nothing.
        is_tool_call_chunk: The event belongs to a tool call (possibly withheld).
        is_final: The vendor stream has reached a terminal event.
    """
    sse_data: Optional[str] = None
    is_tool_call_chunk: bool = False
    is_final: bool = False


def _now_ms() -> float:
    return time.time() * 1000


@dataclass(slots=True)
class StreamTiming:
    start_time: float = field(default_factory=_now_ms)
    first_chunk_time: Optional[float] = None


@dataclass(slots=True)
class StreamAccumulatorState:
    """Mutable per-request state folded from stream events.

    Owned by a single stream adapter. ``text`` is append-only until the stream ends.
    """
    response_id: str = ""
    model: str = ""
    text: str = ""
    tool_calls: list[CommonToolCall] = field(default_factory=list)
    raw_tool_call_events: list[Any] = field(default_factory=list)
    usage: Optional[Usage] = None
    stop_reason: Optional[str] = None
    timing: StreamTiming = field(default_factory=StreamTiming)

    def mark_chunk(self) -> None:
        if self.timing.first_chunk_time is None:
            self.timing.first_chunk_time = _now_ms()


class SavingsStatus(StrEnum):
    NO_TOOL_RESULTS = "no_tool_results"
    NO_TOKENS_SAVED = "no_tokens_saved"
    NO_PRICE = "no_price"
    COMPUTED = "computed"


@dataclass(slots=True)
class ToonCompressionResult:
    """Token accounting for one compression pass.

    ``tokens_before``/``tokens_after`` are None when no tool result was compressed.
    ``cost_savings`` is None unless ``savings_status`` is COMPUTED.
    """
    tokens_before: Optional[int] = None
    tokens_after: Optional[int] = None
    cost_savings: Optional[float] = None
    savings_status: SavingsStatus = SavingsStatus.NO_TOOL_RESULTS
