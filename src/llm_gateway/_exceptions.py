"""
Translate noisy provider tracebacks into a unified `GatewayError`, while
preserving the original exception for full tracebacks.
"""

from __future__ import annotations

import logging
from typing import Final, Optional, Type

import anthropic
import openai
from botocore.exceptions import ClientError, EndpointConnectionError

__all__: tuple[str, ...] = ("GatewayError", "classify_error")


class GatewayError(RuntimeError):
    """Public gateway-level exception.

    Attributes:
        original_exc: The underlying provider exception.
        provider: Wire protocol that raised, when known.
    """

    original_exc: Exception

    def __init__(self, message: str, original_exc: Exception, provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.original_exc = original_exc
        self.provider = provider
        self.__cause__ = original_exc


API_ERRORS: Final[tuple[Type[Exception], ...]] = (
    openai.APIError,
    anthropic.APIError,
    ClientError,
)

CONN_ERRORS: Final[tuple[Type[Exception], ...]] = (
    openai.APIConnectionError,
    anthropic.APIConnectionError,
    EndpointConnectionError,
    TimeoutError,
    ConnectionError,
)

RATE_LIMIT_ERRORS: Final[tuple[Type[Exception], ...]] = (
    openai.RateLimitError,
    anthropic.RateLimitError,
)

_AWS_THROTTLING_CODES: Final = frozenset({"ThrottlingException", "TooManyRequestsException"})


def _is_rate_limited(exc: Exception) -> bool:
    if isinstance(exc, RATE_LIMIT_ERRORS):
        return True
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code") in _AWS_THROTTLING_CODES
    return False


def classify_error(
    exc: Exception,
    logger: Optional[logging.Logger] = None,
    *,
    detail: Optional[str] = None,
    provider: Optional[str] = None,
) -> GatewayError:
    """Wrap an SDK exception in GatewayError with a friendly, concise message.

    ``detail`` replaces ``str(exc)`` in the message; callers pass the
    provider's ``extract_error_message`` result there.
    """
    log = logger or logging.getLogger("llm_gateway.exceptions")

    if _is_rate_limited(exc):
        msg = "Rate-limit exceeded, please retry later"
    elif isinstance(exc, CONN_ERRORS):
        msg = "Connection problem, unable to reach the LLM provider"
    elif isinstance(exc, API_ERRORS):
        msg = "Provider reported an error"
    else:
        msg = exc.__class__.__name__

    log.warning("Wrapping provider exception", extra={"exc": exc, "provider": provider})
    return GatewayError(f"{msg}: {detail or exc}", exc, provider=provider)
