"""Helpers shared by the per-provider adapters."""
from __future__ import annotations

import copy
import json
import logging
from typing import Any, Mapping

__all__ = [
    "SSE_HEADERS",
    "coerce_mapping",
    "deep_copy",
    "dumps",
    "parse_json_or_raw",
    "parse_tool_arguments",
    "sse_data",
    "sse_event",
]

logger = logging.getLogger(__name__)

SSE_HEADERS: dict[str, str] = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def coerce_mapping(value: Any) -> dict[str, Any]:
    """Return a plain dict for a mapping or an SDK model; anything else becomes {}."""
    if isinstance(value, Mapping):
        return dict(value)

    if hasattr(value, "model_dump"):
        dumped = value.model_dump(mode="json", exclude_unset=True)
        if isinstance(dumped, Mapping):
            return dict(dumped)

    if hasattr(value, "to_dict"):
        dumped = value.to_dict()
        if isinstance(dumped, Mapping):
            return dict(dumped)

    return {}


def deep_copy(value: Any) -> Any:
    return copy.deepcopy(value)


def dumps(value: Any) -> str:
    """Compact JSON, byte-compatible with what JavaScript clients emit."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def parse_json_or_raw(value: Any) -> Any:
    """Parse a JSON string payload, falling back to the raw value."""
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.debug("Tool content is not JSON, keeping raw string")
        return value


def parse_tool_arguments(raw_args: Any) -> dict[str, Any]:
    """Parse model-produced tool arguments; malformed input becomes {}."""
    if isinstance(raw_args, Mapping):
        return dict(raw_args)
    if not isinstance(raw_args, str) or not raw_args.strip():
        return {}
    try:
        parsed = json.loads(raw_args)
    except json.JSONDecodeError:
        logger.debug("Malformed tool arguments, degrading to {}: %.100s", raw_args)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def sse_data(event: Any) -> str:
    """Frame an event the OpenAI way: ``data: <json>``."""
    return f"data: {dumps(event)}\n\n"


def sse_event(event_type: str, data: Any) -> str:
    """Frame an event the Anthropic way: ``event: <type>`` plus ``data: <json>``."""
    return f"event: {event_type}\ndata: {dumps(data)}\n\n"
