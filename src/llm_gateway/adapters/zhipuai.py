"""Zhipuai adapters.

Zhipuai serves an OpenAI-compatible Chat Completions API, so the OpenAI
adapters are reused and only relabelled.
"""
from __future__ import annotations

from functools import partial

from .openai import OpenAIRequestAdapter, OpenAIResponseAdapter, OpenAIStreamAdapter

PROVIDER = "zhipuai"

ZhipuaiRequestAdapter = partial(OpenAIRequestAdapter, provider=PROVIDER)
ZhipuaiResponseAdapter = partial(OpenAIResponseAdapter, provider=PROVIDER)
ZhipuaiStreamAdapter = partial(OpenAIStreamAdapter, provider=PROVIDER)

__all__ = ["ZhipuaiRequestAdapter", "ZhipuaiResponseAdapter", "ZhipuaiStreamAdapter"]
