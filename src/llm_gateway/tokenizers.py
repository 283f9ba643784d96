"""
Approximate tokenizers used to estimate token counts before a request is sent.

Exact counts for stats and billing come from the usage block of the vendor
response; these are only for estimates such as compression savings.
"""
from __future__ import annotations

import math
from typing import Any, Mapping, Sequence

__all__ = [
    "BaseTokenizer",
    "OpenAITokenizer",
    "AnthropicTokenizer",
    "get_tokenizer",
]

_CHARS_PER_TOKEN = 4


class BaseTokenizer:
    """Character-count heuristic: one token per four characters, rounded up."""

    def count_tokens(self, messages: Sequence[Mapping[str, Any]] | Mapping[str, Any] | str) -> int:
        if isinstance(messages, str):
            return self._estimate(messages)
        if isinstance(messages, Mapping):
            return self.count_message_tokens(messages)
        return sum(self.count_message_tokens(message) for message in messages)

    def count_message_tokens(self, message: Mapping[str, Any]) -> int:
        return self._estimate(self.get_message_text(message))

    def get_message_text(self, message: Mapping[str, Any]) -> str:
        content = message.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return "".join(
                block["text"]
                for block in content
                if isinstance(block, Mapping)
                and block.get("type") == "text"
                and isinstance(block.get("text"), str)
            )

        # Responses API function_call_output items carry `output` instead of `content`
        output = message.get("output")
        if isinstance(output, str):
            return output
        return ""

    @staticmethod
    def _estimate(text: str) -> int:
        return math.ceil(len(text) / _CHARS_PER_TOKEN)


class OpenAITokenizer(BaseTokenizer):
    pass


class AnthropicTokenizer(BaseTokenizer):
    """Counts the role marker together with the text, as Claude models see it."""

    def count_message_tokens(self, message: Mapping[str, Any]) -> int:
        role = message.get("role") or ""
        return self._estimate(f"{role}{self.get_message_text(message)}")


_TOKENIZER_CLASSES: dict[str, type[BaseTokenizer]] = {
    "openai": OpenAITokenizer,
    "anthropic": AnthropicTokenizer,
}

# one instance per vendor, shared read-only across requests
_TOKENIZER_CACHE: dict[str, BaseTokenizer] = {}


def get_tokenizer(vendor: str) -> BaseTokenizer:
    """Return the cached tokenizer for *vendor*; unknown vendors use the base heuristic."""
    tokenizer = _TOKENIZER_CACHE.get(vendor)
    if tokenizer is None:
        tokenizer = _TOKENIZER_CLASSES.get(vendor, BaseTokenizer)()
        _TOKENIZER_CACHE[vendor] = tokenizer
    return tokenizer
