"""Base class for provider records: the one place that talks to vendor SDKs."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Mapping, Optional

from llm_gateway.types import Headers, RequestAdapter, ResponseAdapter, StreamAdapter

__all__ = ["BaseProvider", "CreateClientOptions", "FALLBACK_ERROR_MESSAGE"]

FALLBACK_ERROR_MESSAGE = "Internal server error"


@dataclass(slots=True)
class CreateClientOptions:
    """Knobs for ``create_client``; unset values fall back to gateway settings."""
    base_url: Optional[str] = None
    timeout: float = 600.0
    max_retries: int = 2
    default_headers: dict[str, str] = field(default_factory=dict)


def message_from_error_body(body: Any) -> Optional[str]:
    """Pull the message out of an ``{"error": {"message": ...}}`` style envelope."""
    if not isinstance(body, Mapping):
        return None
    nested = body.get("error")
    if isinstance(nested, Mapping) and isinstance(nested.get("message"), str):
        return nested["message"]
    if isinstance(body.get("message"), str):
        return body["message"]
    return None


class BaseProvider(ABC):
    """
    Base class for all provider records. Execution is async-first.

    Subclasses bind one wire protocol to its adapters and its SDK client.
    """

    provider: str
    interaction_type: str

    def __init__(
        self,
        *,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ) -> None:
        """
        Args:
            logger: Optional logger instance. If None, a logger named after
                    this module will be used.
            name: Optional name for this component, used in logging.
                  If None, defaults to the concrete class's name.
        """
        self.logger = logger or logging.getLogger(__name__)
        self.name = name if name is not None else self.__class__.__name__

    # adapters

    @abstractmethod
    def create_request_adapter(self, request: Mapping[str, Any]) -> RequestAdapter: ...

    @abstractmethod
    def create_response_adapter(
        self, response: Any, request: Optional[Mapping[str, Any]] = None
    ) -> ResponseAdapter: ...

    @abstractmethod
    def create_stream_adapter(self, request: Optional[Mapping[str, Any]] = None) -> StreamAdapter: ...

    # transport

    @abstractmethod
    def extract_api_key(self, headers: Headers) -> Optional[str]: ...

    def get_base_url(self) -> Optional[str]:
        return None

    @abstractmethod
    def get_span_name(self, streaming: bool = False) -> str: ...

    @abstractmethod
    def create_client(self, api_key: Optional[str], options: Optional[CreateClientOptions] = None) -> Any: ...

    @abstractmethod
    async def execute(self, client: Any, request: Mapping[str, Any]) -> dict[str, Any]:
        """Send a non-streaming request and return the vendor response as a dict."""
        ...

    @abstractmethod
    def execute_stream(self, client: Any, request: Mapping[str, Any]) -> AsyncIterator[Any]:
        """Send a streaming request; yields vendor events in arrival order."""
        ...

    def extract_error_message(self, error: BaseException) -> str:
        message = str(error)
        return message or FALLBACK_ERROR_MESSAGE

    def _log(self, message: str, level: int = logging.INFO) -> None:
        self.logger.log(level, f"[{self.name}] {message}")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(provider={self.provider!r})"
