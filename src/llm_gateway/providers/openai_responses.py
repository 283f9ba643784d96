from __future__ import annotations

from typing import Any, AsyncIterator, Mapping, Optional

from openai import AsyncOpenAI

from llm_gateway.adapters._utils import coerce_mapping
from llm_gateway.adapters.openai_responses import (
    OpenAIResponsesRequestAdapter,
    OpenAIResponsesResponseAdapter,
    OpenAIResponsesStreamAdapter,
)
from llm_gateway.config import Provider
from llm_gateway.providers.openai import OpenAIProvider, _request_body


class OpenAIResponsesProvider(OpenAIProvider):
    """OpenAI Responses API (``/responses``); same client and auth as Chat Completions."""

    provider = Provider.OPENAI_RESPONSES.value
    interaction_type = "openai:responses"

    def create_request_adapter(self, request: Mapping[str, Any]) -> OpenAIResponsesRequestAdapter:
        return OpenAIResponsesRequestAdapter(request)

    def create_response_adapter(
        self, response: Any, request: Optional[Mapping[str, Any]] = None
    ) -> OpenAIResponsesResponseAdapter:
        return OpenAIResponsesResponseAdapter(response)

    def create_stream_adapter(self, request: Optional[Mapping[str, Any]] = None) -> OpenAIResponsesStreamAdapter:
        return OpenAIResponsesStreamAdapter()

    def get_span_name(self, streaming: bool = False) -> str:
        return "openai.responses"

    async def execute(self, client: AsyncOpenAI, request: Mapping[str, Any]) -> dict[str, Any]:
        self._log(f"Sending request to model {request.get('model')} (Stream: False)")
        response = await client.responses.create(**_request_body(request), stream=False)
        return coerce_mapping(response)

    async def execute_stream(self, client: AsyncOpenAI, request: Mapping[str, Any]) -> AsyncIterator[dict[str, Any]]:
        self._log(f"Sending request to model {request.get('model')} (Stream: True)")
        stream = await client.responses.create(**_request_body(request), stream=True)
        async with stream:
            async for event in stream:
                yield coerce_mapping(event)
