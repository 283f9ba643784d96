from __future__ import annotations

import logging
from typing import Type

from llm_gateway.config import Provider
from llm_gateway.providers import (
    AnthropicProvider,
    BaseProvider,
    BedrockProvider,
    OpenAIProvider,
    OpenAIResponsesProvider,
    ZhipuaiProvider,
)

# map Provider enum to its provider record
_PROVIDER_REGISTRY: dict[Provider, Type[BaseProvider]] = {
    Provider.OPENAI: OpenAIProvider,
    Provider.OPENAI_RESPONSES: OpenAIResponsesProvider,
    Provider.ANTHROPIC: AnthropicProvider,
    Provider.BEDROCK: BedrockProvider,
    Provider.ZHIPUAI: ZhipuaiProvider,
}


def get_provider(
    provider: Provider | str,
    *,
    logger: logging.Logger | None = None,
) -> BaseProvider:
    """
    Resolve the provider record for a wire protocol.

    Args:
        provider: A Provider member or its value ("openai", "openai-responses",
            "anthropic", "bedrock", "zhipuai").
        logger: Optional custom logger handed to the record.
    """
    try:
        provider_cls = _PROVIDER_REGISTRY[Provider(provider)]
    except (KeyError, ValueError) as exc:
        raise ValueError(f"Unsupported provider: {provider}") from exc

    return provider_cls(logger=logger)


def supported_providers() -> list[Provider]:
    return list(_PROVIDER_REGISTRY)
