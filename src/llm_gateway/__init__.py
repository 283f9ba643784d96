"""
LLM Gateway - provider protocol adapters and streaming normalization.
"""
import logging

from .config import Provider, get_api_key, get_settings
from .types import (
    ChunkProcessingResult,
    CommonMessage,
    CommonTool,
    CommonToolCall,
    CommonToolResult,
    SavingsStatus,
    StreamAccumulatorState,
    ToonCompressionResult,
    Usage,
)
from .providers import BaseProvider, CreateClientOptions
from .factory import get_provider
from .stream_utils import accumulate_stream, relay_stream
from ._exceptions import GatewayError, classify_error

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "Provider",
    "get_api_key",
    "get_settings",
    "ChunkProcessingResult",
    "CommonMessage",
    "CommonTool",
    "CommonToolCall",
    "CommonToolResult",
    "SavingsStatus",
    "StreamAccumulatorState",
    "ToonCompressionResult",
    "Usage",
    "BaseProvider",
    "CreateClientOptions",
    "get_provider",
    "accumulate_stream",
    "relay_stream",
    "GatewayError",
    "classify_error",
]
