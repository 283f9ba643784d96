from __future__ import annotations

from typing import Any, AsyncIterator, Mapping, Optional

import anthropic
from anthropic import AsyncAnthropic

from llm_gateway.adapters._utils import coerce_mapping
from llm_gateway.adapters.anthropic import (
    AnthropicRequestAdapter,
    AnthropicResponseAdapter,
    AnthropicStreamAdapter,
)
from llm_gateway.config import Provider, get_settings
from llm_gateway.headers import extract_bearer_token, get_header
from llm_gateway.providers.base import (
    FALLBACK_ERROR_MESSAGE,
    BaseProvider,
    CreateClientOptions,
    message_from_error_body,
)
from llm_gateway.types import Headers


class AnthropicProvider(BaseProvider):
    """
    Anthropic Messages API over ``AsyncAnthropic``.

    Clients authenticate with ``x-api-key``; a Bearer ``Authorization`` header
    is accepted as a fallback.
    """

    provider = Provider.ANTHROPIC.value
    interaction_type = "anthropic:messages"

    def create_request_adapter(self, request: Mapping[str, Any]) -> AnthropicRequestAdapter:
        return AnthropicRequestAdapter(request)

    def create_response_adapter(
        self, response: Any, request: Optional[Mapping[str, Any]] = None
    ) -> AnthropicResponseAdapter:
        return AnthropicResponseAdapter(response)

    def create_stream_adapter(self, request: Optional[Mapping[str, Any]] = None) -> AnthropicStreamAdapter:
        return AnthropicStreamAdapter()

    def extract_api_key(self, headers: Headers) -> Optional[str]:
        return get_header(headers, "x-api-key") or extract_bearer_token(get_header(headers, "authorization"))

    def get_base_url(self) -> Optional[str]:
        return get_settings().anthropic_base_url

    def get_span_name(self, streaming: bool = False) -> str:
        return "anthropic.messages"

    def create_client(self, api_key: Optional[str], options: Optional[CreateClientOptions] = None) -> AsyncAnthropic:
        options = options or CreateClientOptions()
        return AsyncAnthropic(
            api_key=api_key,
            base_url=options.base_url or self.get_base_url(),
            timeout=options.timeout,
            max_retries=options.max_retries,
            default_headers=options.default_headers or None,
        )

    async def execute(self, client: AsyncAnthropic, request: Mapping[str, Any]) -> dict[str, Any]:
        self._log(f"Sending request to model {request.get('model')} (Stream: False)")
        body = {key: value for key, value in request.items() if key != "stream"}
        message = await client.messages.create(**body)
        return coerce_mapping(message)

    async def execute_stream(self, client: AsyncAnthropic, request: Mapping[str, Any]) -> AsyncIterator[dict[str, Any]]:
        self._log(f"Sending request to model {request.get('model')} (Stream: True)")
        body = {key: value for key, value in request.items() if key != "stream"}
        stream = await client.messages.create(**body, stream=True)
        async with stream:
            async for event in stream:
                yield coerce_mapping(event)

    def extract_error_message(self, error: BaseException) -> str:
        if isinstance(error, anthropic.APIError):
            message = message_from_error_body(error.body)
            if message:
                return message
            if error.message:
                return error.message
        return str(error) or FALLBACK_ERROR_MESSAGE
