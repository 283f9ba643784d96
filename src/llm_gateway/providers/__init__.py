"""Provider records: one per wire protocol."""

from .base import BaseProvider, CreateClientOptions
from .openai import OpenAIProvider
from .openai_responses import OpenAIResponsesProvider
from .anthropic import AnthropicProvider
from .bedrock import BedrockClient, BedrockProvider, get_command_input
from .zhipuai import ZhipuaiProvider

__all__ = [
    "BaseProvider",
    "CreateClientOptions",
    "OpenAIProvider",
    "OpenAIResponsesProvider",
    "AnthropicProvider",
    "BedrockClient",
    "BedrockProvider",
    "ZhipuaiProvider",
    "get_command_input",
]
