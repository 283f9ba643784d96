"""
TOON compression of tool results.

Every tool result whose text parses as JSON is re-encoded as TOON with the
``toon_format`` encoder; token counts before and after are estimated with the
vendor's tokenizer. Non-text content (images, documents) and text that is not
JSON are left alone and do not count towards the totals.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

import toon_format

from llm_gateway.pricing import PriceLookup, get_price_lookup
from llm_gateway.tokenizers import get_tokenizer
from llm_gateway.types import SavingsStatus, ToonCompressionResult

__all__ = ["CompressedToolResult", "compress_tool_result", "compress_tool_results", "unwrap_tool_content"]

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CompressedToolResult:
    original: str
    compressed: str
    tokens_before: int
    tokens_after: int


def _join_text_blocks(blocks: Any) -> Optional[str]:
    if not isinstance(blocks, list) or not blocks:
        return None
    parts: list[str] = []
    for block in blocks:
        if not isinstance(block, Mapping) or block.get("type") != "text":
            return None
        text = block.get("text")
        if not isinstance(text, str):
            return None
        parts.append(text)
    return "".join(parts)


def unwrap_tool_content(content: Any) -> Optional[str]:
    """Return the text a tool produced, unwrapping MCP-style ``[{"type": "text", ...}]`` lists.

    Anything else (image or document blocks, bare objects) is not text and yields None.
    """
    if isinstance(content, str):
        if content.lstrip().startswith("["):
            try:
                joined = _join_text_blocks(json.loads(content))
            except json.JSONDecodeError:
                joined = None
            if joined is not None:
                return joined
        return content
    return _join_text_blocks(content)


def compress_tool_result(content: Any, *, vendor: str = "openai") -> Optional[CompressedToolResult]:
    """Compress one tool result, or return None when its content is not JSON text."""
    original = unwrap_tool_content(content)
    if original is None:
        return None
    try:
        parsed = json.loads(original)
    except json.JSONDecodeError:
        return None

    compressed = toon_format.encode(parsed)
    tokenizer = get_tokenizer(vendor)
    return CompressedToolResult(
        original=original,
        compressed=compressed,
        tokens_before=tokenizer.count_tokens([{"role": "user", "content": original}]),
        tokens_after=tokenizer.count_tokens([{"role": "user", "content": compressed}]),
    )


def compress_tool_results(
    tool_results: Iterable[tuple[str, Any]],
    model: str,
    *,
    vendor: str = "openai",
    provider: str = "",
    price_lookup: PriceLookup | None = None,
) -> tuple[dict[str, str], ToonCompressionResult]:
    """Compress ``(tool_call_id, content)`` pairs.

    Returns the compressed text per tool call id (only for compressed items)
    and the token/cost accounting for the whole pass.
    """
    updates: dict[str, str] = {}
    total_before = 0
    total_after = 0

    for tool_call_id, content in tool_results:
        result = compress_tool_result(content, vendor=vendor)
        if result is None:
            logger.info(
                "Skipping TOON conversion, content is not JSON text",
                extra={"call_id": tool_call_id, "provider": provider},
            )
            continue

        updates[tool_call_id] = result.compressed
        total_before += result.tokens_before
        total_after += result.tokens_after
        logger.info(
            "Compressed tool result %s: %d -> %d chars, %d -> %d tokens",
            tool_call_id,
            len(result.original),
            len(result.compressed),
            result.tokens_before,
            result.tokens_after,
            extra={"provider": provider},
        )

    logger.info("TOON compression finished: %d tool result(s) compressed", len(updates))

    if not updates:
        return updates, ToonCompressionResult()

    stats = ToonCompressionResult(
        tokens_before=total_before,
        tokens_after=total_after,
        savings_status=SavingsStatus.NO_TOKENS_SAVED,
    )
    tokens_saved = total_before - total_after
    if tokens_saved > 0:
        price = (price_lookup or get_price_lookup()).find_by_model(model)
        if price is None:
            stats.savings_status = SavingsStatus.NO_PRICE
        else:
            stats.cost_savings = tokens_saved * price.input_price_per_token
            stats.savings_status = SavingsStatus.COMPUTED
    return updates, stats
