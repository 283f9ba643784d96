from __future__ import annotations

from typing import Any, AsyncIterator, Mapping, Optional

import openai
from openai import AsyncOpenAI

from llm_gateway.adapters._utils import coerce_mapping
from llm_gateway.adapters.openai import OpenAIRequestAdapter, OpenAIResponseAdapter, OpenAIStreamAdapter
from llm_gateway.config import Provider, get_settings
from llm_gateway.headers import extract_bearer_token, get_header
from llm_gateway.providers.base import (
    FALLBACK_ERROR_MESSAGE,
    BaseProvider,
    CreateClientOptions,
    message_from_error_body,
)
from llm_gateway.types import Headers


def _request_body(request: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in request.items() if key != "stream"}


def openai_error_message(error: BaseException) -> str:
    """Message from an OpenAI-style ``{"error": {"message": ...}}`` envelope."""
    if isinstance(error, openai.APIError):
        message = message_from_error_body(error.body)
        if message:
            return message
        if error.message:
            return error.message
    return str(error) or FALLBACK_ERROR_MESSAGE


class OpenAIProvider(BaseProvider):
    """
    OpenAI Chat Completions (``/chat/completions``) over ``AsyncOpenAI``.
    """

    provider = Provider.OPENAI.value
    interaction_type = "openai:chatCompletions"

    def create_request_adapter(self, request: Mapping[str, Any]) -> OpenAIRequestAdapter:
        return OpenAIRequestAdapter(request, provider=self.provider)

    def create_response_adapter(
        self, response: Any, request: Optional[Mapping[str, Any]] = None
    ) -> OpenAIResponseAdapter:
        return OpenAIResponseAdapter(response, provider=self.provider)

    def create_stream_adapter(self, request: Optional[Mapping[str, Any]] = None) -> OpenAIStreamAdapter:
        return OpenAIStreamAdapter(request, provider=self.provider)

    def extract_api_key(self, headers: Headers) -> Optional[str]:
        return extract_bearer_token(get_header(headers, "authorization"))

    def get_base_url(self) -> Optional[str]:
        return get_settings().openai_base_url

    def get_span_name(self, streaming: bool = False) -> str:
        return "openai.chat.completions"

    def create_client(self, api_key: Optional[str], options: Optional[CreateClientOptions] = None) -> AsyncOpenAI:
        options = options or CreateClientOptions()
        return AsyncOpenAI(
            api_key=api_key,
            base_url=options.base_url or self.get_base_url(),
            timeout=options.timeout,
            max_retries=options.max_retries,
            default_headers=options.default_headers or None,
        )

    async def execute(self, client: AsyncOpenAI, request: Mapping[str, Any]) -> dict[str, Any]:
        self._log(f"Sending request to model {request.get('model')} (Stream: False)")
        completion = await client.chat.completions.create(**_request_body(request), stream=False)
        return coerce_mapping(completion)

    async def execute_stream(self, client: AsyncOpenAI, request: Mapping[str, Any]) -> AsyncIterator[dict[str, Any]]:
        self._log(f"Sending request to model {request.get('model')} (Stream: True)")
        stream = await client.chat.completions.create(**_request_body(request), stream=True)
        async with stream:
            async for chunk in stream:
                yield coerce_mapping(chunk)

    def extract_error_message(self, error: BaseException) -> str:
        return openai_error_message(error)
