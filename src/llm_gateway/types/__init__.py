from .common import (
    UNKNOWN_TOOL_NAME,
    ChunkProcessingResult,
    CommonMessage,
    CommonTool,
    CommonToolCall,
    CommonToolResult,
    Role,
    SavingsStatus,
    StreamAccumulatorState,
    StreamTiming,
    ToonCompressionResult,
    Usage,
)
from .adapter import Headers, LLMProvider, RequestAdapter, ResponseAdapter, StreamAdapter

__all__ = [
    "UNKNOWN_TOOL_NAME",
    "ChunkProcessingResult",
    "CommonMessage",
    "CommonTool",
    "CommonToolCall",
    "CommonToolResult",
    "Role",
    "SavingsStatus",
    "StreamAccumulatorState",
    "StreamTiming",
    "ToonCompressionResult",
    "Usage",
    "Headers",
    "LLMProvider",
    "RequestAdapter",
    "ResponseAdapter",
    "StreamAdapter",
]
