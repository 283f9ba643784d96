"""
Request-header helpers: authorization parsing, correlation ids and redaction.

Header names are matched case-insensitively; values may be a string or a
list of strings (first element wins), as delivered by most ASGI servers.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

__all__ = [
    "META_HEADER",
    "EXECUTION_ID_HEADER",
    "ParsedMetaHeader",
    "extract_bearer_token",
    "get_header",
    "get_execution_id",
    "parse_meta_header",
    "redact_headers",
]

META_HEADER = "X-Archestra-Meta"
EXECUTION_ID_HEADER = "X-Archestra-Execution-Id"

SENSITIVE_HEADERS = frozenset(
    {
        "authorization",
        "x-api-key",
        "x-amz-secret-access-key",
        "x-amz-session-token",
    }
)

REDACTED = "[REDACTED]"


def get_header(headers: Mapping[str, Any], name: str) -> Optional[str]:
    """Return the first non-blank value of header *name*, stripped."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() != wanted:
            continue
        if isinstance(value, (list, tuple)):
            value = value[0] if value else None
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def extract_bearer_token(value: Optional[str]) -> Optional[str]:
    """``Bearer <token>`` -> token; a bare token is returned unchanged.

    Any other scheme (``Basic ...``, ``AWS4-HMAC-SHA256 ...``) yields None.
    """
    if not value:
        return None
    value = value.strip()
    scheme, _, token = value.partition(" ")
    if scheme.lower() == "bearer":
        return token.strip() or None
    if " " in value:
        return None
    return value


@dataclass(frozen=True, slots=True)
class ParsedMetaHeader:
    external_agent_id: Optional[str] = None
    execution_id: Optional[str] = None
    session_id: Optional[str] = None


def parse_meta_header(headers: Mapping[str, Any]) -> ParsedMetaHeader:
    """Parse ``external-agent-id/execution-id/session-id``; any segment may be empty.

    Only the composite header is read here; dedicated headers take
    precedence in the callers that support them.
    """
    raw = get_header(headers, META_HEADER)
    if raw is None:
        return ParsedMetaHeader()

    segments = [segment.strip() or None for segment in raw.split("/")]
    segments += [None] * (3 - len(segments))
    return ParsedMetaHeader(
        external_agent_id=segments[0],
        execution_id=segments[1],
        session_id=segments[2],
    )


def get_execution_id(headers: Mapping[str, Any]) -> Optional[str]:
    return get_header(headers, EXECUTION_ID_HEADER) or parse_meta_header(headers).execution_id


def redact_headers(headers: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of *headers* that is safe to log."""
    return {key: REDACTED if key.lower() in SENSITIVE_HEADERS else value for key, value in headers.items()}
