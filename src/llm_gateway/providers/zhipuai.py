from __future__ import annotations

from typing import Optional

from llm_gateway.config import Provider, get_settings
from llm_gateway.providers.openai import OpenAIProvider


class ZhipuaiProvider(OpenAIProvider):
    """Zhipuai (GLM) over its OpenAI-compatible Chat Completions endpoint."""

    provider = Provider.ZHIPUAI.value
    interaction_type = "zhipuai:chatCompletions"

    def get_base_url(self) -> Optional[str]:
        return get_settings().zhipuai_base_url

    def get_span_name(self, streaming: bool = False) -> str:
        return "zhipuai.chat.completions"
