"""Pure transformation adapters, one module per wire protocol."""

from .openai import OpenAIRequestAdapter, OpenAIResponseAdapter, OpenAIStreamAdapter
from .openai_responses import (
    OpenAIResponsesRequestAdapter,
    OpenAIResponsesResponseAdapter,
    OpenAIResponsesStreamAdapter,
)
from .anthropic import AnthropicRequestAdapter, AnthropicResponseAdapter, AnthropicStreamAdapter
from .bedrock import BedrockRequestAdapter, BedrockResponseAdapter, BedrockStreamAdapter
from .zhipuai import ZhipuaiRequestAdapter, ZhipuaiResponseAdapter, ZhipuaiStreamAdapter

__all__ = [
    "OpenAIRequestAdapter",
    "OpenAIResponseAdapter",
    "OpenAIStreamAdapter",
    "OpenAIResponsesRequestAdapter",
    "OpenAIResponsesResponseAdapter",
    "OpenAIResponsesStreamAdapter",
    "AnthropicRequestAdapter",
    "AnthropicResponseAdapter",
    "AnthropicStreamAdapter",
    "BedrockRequestAdapter",
    "BedrockResponseAdapter",
    "BedrockStreamAdapter",
    "ZhipuaiRequestAdapter",
    "ZhipuaiResponseAdapter",
    "ZhipuaiStreamAdapter",
]
