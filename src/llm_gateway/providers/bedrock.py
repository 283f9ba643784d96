"""
Amazon Bedrock Converse over ``aioboto3``.

Credentials arrive either as a composite ``access:secret:session[:region]``
key built from ``x-amz-*`` headers (signed with SigV4) or as a Bedrock API
key, which is sent as ``Authorization: Bearer`` on an unsigned client.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, AsyncIterator, Mapping, Optional

import aioboto3
from botocore import UNSIGNED
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from llm_gateway.adapters._utils import deep_copy
from llm_gateway.adapters.bedrock import (
    BedrockRequestAdapter,
    BedrockResponseAdapter,
    BedrockStreamAdapter,
    encode_tool_name,
)
from llm_gateway.config import Provider, get_settings
from llm_gateway.headers import extract_bearer_token, get_header
from llm_gateway.providers.base import FALLBACK_ERROR_MESSAGE, BaseProvider, CreateClientOptions
from llm_gateway.types import Headers

__all__ = ["BedrockClient", "BedrockProvider", "get_command_input"]

SERVICE_NAME = "bedrock-runtime"

# Converse / ConverseStream parameters forwarded from the request body
_COMMAND_KEYS = (
    "modelId",
    "messages",
    "system",
    "inferenceConfig",
    "toolConfig",
    "guardrailConfig",
    "additionalModelRequestFields",
    "additionalModelResponseFieldPaths",
    "requestMetadata",
    "performanceConfig",
)


@dataclass(slots=True)
class BedrockClient:
    """Everything needed to open a ``bedrock-runtime`` client for one request."""
    session: aioboto3.Session
    region: str
    endpoint_url: Optional[str] = None
    bearer_token: Optional[str] = None

    def runtime(self) -> Any:
        """Return an async client context manager, as ``aioboto3`` hands them out."""
        config = Config(signature_version=UNSIGNED) if self.bearer_token else None
        client = self.session.client(
            SERVICE_NAME,
            region_name=self.region,
            endpoint_url=self.endpoint_url,
            config=config,
        )
        if self.bearer_token:
            client = _BearerAuthClient(client, self.bearer_token)
        return client


class _BearerAuthClient:
    """Registers the Bearer header hook once the runtime client is created."""

    def __init__(self, context: Any, token: str) -> None:
        self._context = context
        self._token = token

    async def __aenter__(self) -> Any:
        runtime = await self._context.__aenter__()
        runtime.meta.events.register(f"before-send.{SERVICE_NAME}.*", self._add_authorization)
        return runtime

    async def __aexit__(self, *exc_info: Any) -> Any:
        return await self._context.__aexit__(*exc_info)

    def _add_authorization(self, request: Any, **kwargs: Any) -> None:
        request.headers["Authorization"] = f"Bearer {self._token}"


def _encode_tool_config(tool_config: Mapping[str, Any]) -> dict[str, Any]:
    encoded = deep_copy(dict(tool_config))
    for tool in encoded.get("tools") or []:
        spec = tool.get("toolSpec") if isinstance(tool, dict) else None
        if spec and spec.get("name"):
            spec["name"] = encode_tool_name(spec["name"])
    choice = (encoded.get("toolChoice") or {}).get("tool")
    if isinstance(choice, dict) and choice.get("name"):
        choice["name"] = encode_tool_name(choice["name"])
    return encoded


def _encode_history(messages: list[Any]) -> list[Any]:
    encoded = deep_copy(messages)
    for message in encoded:
        if not isinstance(message, dict):
            continue
        for block in message.get("content") or []:
            tool_use = block.get("toolUse") if isinstance(block, dict) else None
            if tool_use and tool_use.get("name"):
                tool_use["name"] = encode_tool_name(tool_use["name"])
    return encoded


def get_command_input(request: Mapping[str, Any]) -> dict[str, Any]:
    """Build Converse keyword arguments from a request body.

    Tool names are encoded in both the tool config and the history, so the
    model sees one consistent name for each tool.
    """
    command: dict[str, Any] = {}
    for key in _COMMAND_KEYS:
        value = request.get(key)
        if value is not None:
            command[key] = value
    if "toolConfig" in command:
        command["toolConfig"] = _encode_tool_config(command["toolConfig"])
    if "messages" in command:
        command["messages"] = _encode_history(command["messages"])
    return command


def _to_wire_response(raw: Mapping[str, Any]) -> dict[str, Any]:
    response = {key: value for key, value in raw.items() if key != "ResponseMetadata"}
    metadata = raw.get("ResponseMetadata") or {}
    response["$metadata"] = {
        "requestId": metadata.get("RequestId"),
        "httpStatusCode": metadata.get("HTTPStatusCode"),
    }
    return response


class BedrockProvider(BaseProvider):
    """Bedrock Converse / ConverseStream."""

    provider = Provider.BEDROCK.value
    interaction_type = "bedrock:converse"

    def create_request_adapter(self, request: Mapping[str, Any]) -> BedrockRequestAdapter:
        return BedrockRequestAdapter(request)

    def create_response_adapter(
        self, response: Any, request: Optional[Mapping[str, Any]] = None
    ) -> BedrockResponseAdapter:
        return BedrockResponseAdapter(response, request)

    def create_stream_adapter(self, request: Optional[Mapping[str, Any]] = None) -> BedrockStreamAdapter:
        return BedrockStreamAdapter(request)

    def extract_api_key(self, headers: Headers) -> Optional[str]:
        access_key_id = get_header(headers, "x-amz-access-key-id")
        secret_access_key = get_header(headers, "x-amz-secret-access-key")
        if access_key_id and secret_access_key:
            parts = [access_key_id, secret_access_key, get_header(headers, "x-amz-session-token") or ""]
            region = get_header(headers, "x-amz-region")
            if region:
                parts.append(region)
            return ":".join(parts)
        return extract_bearer_token(get_header(headers, "authorization"))

    def get_base_url(self) -> Optional[str]:
        return get_settings().bedrock.base_url

    def get_span_name(self, streaming: bool = False) -> str:
        return "bedrock.converse.stream" if streaming else "bedrock.converse"

    def create_client(self, api_key: Optional[str], options: Optional[CreateClientOptions] = None) -> BedrockClient:
        settings = get_settings().bedrock
        options = options or CreateClientOptions()
        endpoint_url = options.base_url or self.get_base_url()

        if api_key and ":" not in api_key:
            self._log("Using Bedrock API key authentication")
            return BedrockClient(
                session=aioboto3.Session(),
                region=settings.region,
                endpoint_url=endpoint_url,
                bearer_token=api_key,
            )

        parts = api_key.split(":") if api_key else []
        access_key_id = (parts[0] if len(parts) >= 2 else None) or settings.access_key_id
        secret_access_key = (parts[1] if len(parts) >= 2 else None) or settings.secret_access_key
        session_token = (parts[2] if len(parts) >= 3 else None) or settings.session_token
        region = (parts[3] if len(parts) >= 4 else None) or settings.region

        # no explicit credentials: boto's default chain (env, profile, role) applies
        session = aioboto3.Session(
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            aws_session_token=session_token,
        )
        return BedrockClient(session=session, region=region, endpoint_url=endpoint_url)

    async def execute(self, client: BedrockClient, request: Mapping[str, Any]) -> dict[str, Any]:
        self._log(f"Sending request to model {request.get('modelId')} (Stream: False)")
        async with client.runtime() as runtime:
            raw = await runtime.converse(**get_command_input(request))
        return _to_wire_response(raw)

    async def execute_stream(self, client: BedrockClient, request: Mapping[str, Any]) -> AsyncIterator[dict[str, Any]]:
        self._log(f"Sending request to model {request.get('modelId')} (Stream: True)")
        async with client.runtime() as runtime:
            response = await runtime.converse_stream(**get_command_input(request))
            async for event in response["stream"]:
                yield event

    def extract_error_message(self, error: BaseException) -> str:
        if isinstance(error, ClientError):
            details = error.response.get("Error") or {}
            if details.get("Message"):
                return details["Message"]
            return f"AWS Error: {details.get('Code') or error.__class__.__name__}"
        if isinstance(error, BotoCoreError):
            return str(error) or f"AWS Error: {error.__class__.__name__}"
        return str(error) or FALLBACK_ERROR_MESSAGE
