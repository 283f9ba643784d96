"""Tests for the Bedrock Converse adapters and provider record."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

from botocore import UNSIGNED
from botocore.exceptions import ClientError

from llm_gateway.adapters.bedrock import (
    BedrockRequestAdapter,
    BedrockResponseAdapter,
    BedrockStreamAdapter,
    build_tool_name_mapping,
    encode_tool_name,
    generate_message_id,
)
from llm_gateway.providers.bedrock import BedrockClient, BedrockProvider, get_command_input
from llm_gateway.types import CommonToolCall, SavingsStatus, Usage

from conftest import aiter_events, collect

MODEL_ID = "anthropic.claude-3-5-sonnet-20240620-v1:0"


def _request(**extra):
    request = {
        "modelId": MODEL_ID,
        "system": [{"text": "Be brief."}],
        "messages": [
            {"role": "user", "content": [{"text": "Weather in Paris?"}]},
            {
                "role": "assistant",
                "content": [
                    {"toolUse": {"toolUseId": "tu_1", "name": "get-weather", "input": {"city": "Paris"}}},
                    {"toolUse": {"toolUseId": "tu_2", "name": "get-forecast", "input": {"city": "Paris"}}},
                ],
            },
            {
                "role": "user",
                "content": [
                    {"toolResult": {"toolUseId": "tu_1", "content": [{"text": '{"temp": 21, "unit": "C"}'}]}},
                    {
                        "toolResult": {
                            "toolUseId": "tu_2",
                            "content": [{"text": "service down"}],
                            "status": "error",
                        }
                    },
                ],
            },
        ],
        "toolConfig": {
            "tools": [
                {"toolSpec": {"name": "get-weather", "description": "Weather", "inputSchema": {"json": {"type": "object"}}}},
                {"toolSpec": {"name": "get-forecast", "inputSchema": {"json": {"type": "object"}}}},
            ],
            "toolChoice": {"tool": {"name": "get-weather"}},
        },
        "inferenceConfig": None,
    }
    request.update(extra)
    return request


def _stream_events():
    return [
        {"messageStart": {"role": "assistant"}},
        {"contentBlockDelta": {"contentBlockIndex": 0, "delta": {"text": "Checking"}}},
        {"contentBlockStop": {"contentBlockIndex": 0}},
        {"contentBlockStart": {"contentBlockIndex": 1, "start": {"toolUse": {"toolUseId": "tu_9", "name": "get_weather"}}}},
        {"contentBlockDelta": {"contentBlockIndex": 1, "delta": {"toolUse": {"input": '{"city":'}}}},
        {"contentBlockDelta": {"contentBlockIndex": 1, "delta": {"toolUse": {"input": '"Paris"}'}}}},
        {"contentBlockStop": {"contentBlockIndex": 1}},
        {"messageStop": {"stopReason": "tool_use"}},
        {"metadata": {"usage": {"inputTokens": 10, "outputTokens": 7, "totalTokens": 17}, "metrics": {"latencyMs": 90}}},
    ]


def _build_runtime_mock(response=None, events=()):
    """Build a mock bedrock-runtime client context manager."""
    runtime = MagicMock()
    runtime.__aenter__ = AsyncMock(return_value=runtime)
    runtime.__aexit__ = AsyncMock(return_value=None)
    runtime.converse = AsyncMock(return_value=response or {})
    runtime.converse_stream = AsyncMock(return_value={"stream": aiter_events(events)})
    return runtime


class TestToolNames:
    def test_encode_and_mapping(self):
        assert encode_tool_name("get-weather") == "get_weather"
        assert encode_tool_name("plain") == "plain"
        assert build_tool_name_mapping(_request()) == {"get_weather": "get-weather", "get_forecast": "get-forecast"}
        assert build_tool_name_mapping(None) == {}

    def test_generated_message_id(self):
        message_id = generate_message_id()

        assert message_id.startswith("msg_bedrock_")
        assert len(message_id.rsplit("_", 1)[1]) == 9

    def test_command_input_encodes_names_without_touching_request(self):
        request = _request(stream=True)

        command = get_command_input(request)

        assert "stream" not in command
        assert "inferenceConfig" not in command
        assert command["system"] == [{"text": "Be brief."}]
        assert [t["toolSpec"]["name"] for t in command["toolConfig"]["tools"]] == ["get_weather", "get_forecast"]
        assert command["toolConfig"]["toolChoice"]["tool"]["name"] == "get_weather"
        assert command["messages"][1]["content"][0]["toolUse"]["name"] == "get_weather"
        assert request["messages"][1]["content"][0]["toolUse"]["name"] == "get-weather"
        assert request["toolConfig"]["tools"][0]["toolSpec"]["name"] == "get-weather"


class TestBedrockRequestAdapter:
    def test_tool_results(self):
        results = BedrockRequestAdapter(_request()).get_tool_results()

        assert [r.name for r in results] == ["get-weather", "get-forecast"]
        assert results[0].content == {"temp": 21, "unit": "C"}
        assert results[1].is_error is True
        assert results[1].error == "service down"

    def test_json_content_block(self):
        request = {
            "modelId": MODEL_ID,
            "messages": [
                {"role": "user", "content": [{"toolResult": {"toolUseId": "tu_x", "content": [{"json": {"a": 1}}]}}]}
            ],
        }

        result = BedrockRequestAdapter(request).get_tool_results()[0]

        assert result.content == {"a": 1}
        assert result.name == "unknown"

    def test_tools_and_model(self):
        adapter = BedrockRequestAdapter(_request())
        adapter.set_model("amazon.nova-pro-v1:0")

        assert [t.name for t in adapter.get_tools()] == ["get-weather", "get-forecast"]
        assert adapter.get_tools()[0].input_schema == {"type": "object"}
        assert adapter.to_provider_request()["modelId"] == "amazon.nova-pro-v1:0"
        assert adapter.get_model() == "amazon.nova-pro-v1:0"

    def test_round_trip_and_update(self):
        request = _request()
        adapter = BedrockRequestAdapter(request)
        assert adapter.to_provider_request() == request

        adapter.update_tool_result("tu_1", "temp: 21")
        rebuilt = adapter.to_provider_request()

        assert rebuilt["messages"][2]["content"][0]["toolResult"]["content"] == [{"text": "temp: 21"}]
        assert request["messages"][2]["content"][0]["toolResult"]["content"] == [{"text": '{"temp": 21, "unit": "C"}'}]

    def test_compression_skips_error_results(self):
        adapter = BedrockRequestAdapter(_request())

        stats = adapter.apply_toon_compression(MODEL_ID)
        blocks = adapter.to_provider_request()["messages"][2]["content"]

        assert blocks[0]["toolResult"]["content"] == [{"text": "temp: 21\nunit: C"}]
        assert blocks[1]["toolResult"]["content"] == [{"text": "service down"}]
        assert stats.savings_status in (SavingsStatus.NO_PRICE, SavingsStatus.COMPUTED)

    def test_compression_encodes_json_blocks(self):
        request = _request()
        request["messages"][2]["content"][0]["toolResult"]["content"] = [{"json": {"temp": 21, "unit": "C"}}]
        adapter = BedrockRequestAdapter(request)

        adapter.apply_toon_compression(MODEL_ID)

        blocks = adapter.to_provider_request()["messages"][2]["content"]
        assert blocks[0]["toolResult"]["content"] == [{"text": "temp: 21\nunit: C"}]

    def test_image_tool_result_is_left_structured(self):
        image = [{"image": {"format": "png", "source": {"bytes": b"\x89PNG"}}}]
        request = _request()
        request["messages"][2]["content"][0]["toolResult"]["content"] = image
        adapter = BedrockRequestAdapter(request)

        stats = adapter.apply_toon_compression(MODEL_ID)

        assert stats.savings_status == SavingsStatus.NO_TOOL_RESULTS
        assert adapter.get_tool_results()[0].content == image
        assert adapter.to_provider_request() == request

    def test_updates_skip_non_dict_entries(self):
        request = _request()
        request["messages"].insert(0, "stray text")
        request["messages"][3]["content"].insert(0, "stray block")
        adapter = BedrockRequestAdapter(request)
        adapter.update_tool_result("tu_1", "temp: 21")

        built = adapter.to_provider_request()

        assert built["messages"][0] == "stray text"
        assert built["messages"][3]["content"][0] == "stray block"
        assert built["messages"][3]["content"][1]["toolResult"]["content"] == [{"text": "temp: 21"}]


class TestBedrockResponseAdapter:
    def _response(self):
        return {
            "$metadata": {"requestId": "req-123", "httpStatusCode": 200},
            "output": {
                "message": {
                    "role": "assistant",
                    "content": [
                        {"text": "Checking."},
                        {"toolUse": {"toolUseId": "tu_1", "name": "get_weather", "input": {"city": "Paris"}}},
                    ],
                }
            },
            "stopReason": "tool_use",
            "usage": {"inputTokens": 50, "outputTokens": 25, "totalTokens": 75},
        }

    def test_reads_response_and_decodes_names(self):
        adapter = BedrockResponseAdapter(self._response(), _request())

        assert adapter.get_id() == "req-123"
        assert adapter.get_model() == MODEL_ID
        assert adapter.get_text() == "Checking."
        assert adapter.get_tool_calls() == [CommonToolCall(id="tu_1", name="get-weather", arguments={"city": "Paris"})]
        assert adapter.get_usage() == Usage(input_tokens=50, output_tokens=25)

    def test_id_is_generated_without_request_id(self):
        response = self._response()
        del response["$metadata"]

        adapter = BedrockResponseAdapter(response)

        assert adapter.get_id().startswith("msg_bedrock_")
        assert adapter.get_id() == adapter.get_id()
        assert adapter.get_tool_calls()[0].name == "get_weather"

    def test_refusal_response(self):
        refusal = BedrockResponseAdapter(self._response()).to_refusal_response("blocked", "Not allowed")

        assert refusal["output"]["message"]["content"] == [{"text": "Not allowed"}]
        assert refusal["stopReason"] == "end_turn"


class TestBedrockStreamAdapter:
    def test_events_become_anthropic_frames(self):
        adapter = BedrockStreamAdapter(_request())
        results = [adapter.process_chunk(event) for event in _stream_events()]

        assert results[0].sse_data.startswith("event: message_start\n")
        assert results[1].sse_data.count("event: ") == 2
        assert [r.sse_data for r in results[3:6]] == [None, None, None]
        assert results[6].sse_data.count("event: ") == 4
        assert '"name":"get-weather"' in results[6].sse_data

        stop, metadata = results[7], results[8]
        assert stop.sse_data is None
        assert not stop.is_final
        assert metadata.is_final
        assert metadata.sse_data.endswith('event: message_stop\ndata: {"type":"message_stop"}\n\n')

        assert adapter.get_text() == "Checking"
        assert adapter.get_tool_calls() == [CommonToolCall(id="tu_9", name="get-weather", arguments={"city": "Paris"})]
        assert adapter.get_usage() == Usage(input_tokens=10, output_tokens=7)
        assert adapter.state.stop_reason == "tool_use"
        assert adapter.state.model == MODEL_ID

    def test_exception_event_is_final(self):
        adapter = BedrockStreamAdapter()

        result = adapter.process_chunk({"throttlingException": {"message": "Too many requests"}})

        assert result.is_final
        assert "Too many requests" in result.sse_data
        assert adapter.state.stop_reason == "error"

    def test_stream_matches_non_streaming_response(self):
        request = _request()
        adapter = BedrockStreamAdapter(request)
        for event in _stream_events():
            adapter.process_chunk(event)

        rebuilt = BedrockResponseAdapter(adapter.to_provider_response(), request)

        assert rebuilt.get_text() == adapter.get_text()
        assert rebuilt.get_tool_calls() == adapter.get_tool_calls()
        assert rebuilt.get_id() == adapter.state.response_id


class TestBedrockProvider:
    def test_extract_api_key(self):
        provider = BedrockProvider()

        composite = provider.extract_api_key(
            {"x-amz-access-key-id": "AKIA1", "x-amz-secret-access-key": "s3cr3t", "x-amz-region": "us-west-2"}
        )
        assert composite == "AKIA1:s3cr3t::us-west-2"
        assert provider.extract_api_key({"authorization": "Bearer my-api-key-123"}) == "my-api-key-123"
        assert provider.extract_api_key({"authorization": "raw-api-key-456"}) == "raw-api-key-456"
        assert provider.extract_api_key({"authorization": "Basic dXNlcjpwYXNz"}) is None
        assert provider.extract_api_key({}) is None

    def test_span_names(self):
        provider = BedrockProvider()

        assert provider.get_span_name(False) == "bedrock.converse"
        assert provider.get_span_name(True) == "bedrock.converse.stream"

    def test_create_client_with_composite_key(self):
        with patch("llm_gateway.providers.bedrock.aioboto3.Session") as mock_session:
            client = BedrockProvider().create_client("AKIA1:s3cr3t::us-west-2")

        kwargs = mock_session.call_args.kwargs
        assert kwargs["aws_access_key_id"] == "AKIA1"
        assert kwargs["aws_secret_access_key"] == "s3cr3t"
        assert client.region == "us-west-2"
        assert client.bearer_token is None

    def test_execute_converts_response_metadata(self):
        raw = {
            "ResponseMetadata": {"RequestId": "req-9", "HTTPStatusCode": 200},
            "output": {"message": {"role": "assistant", "content": [{"text": "Hello from Bedrock!"}]}},
            "stopReason": "end_turn",
            "usage": {"inputTokens": 5, "outputTokens": 4, "totalTokens": 9},
        }
        runtime = _build_runtime_mock(response=raw)

        with patch("llm_gateway.providers.bedrock.aioboto3.Session") as mock_session:
            mock_session.return_value.client.return_value = runtime
            provider = BedrockProvider()
            client = provider.create_client("AKIA1:s3cr3t")
            response = asyncio.run(provider.execute(client, _request()))

        assert "ResponseMetadata" not in response
        assert response["$metadata"] == {"requestId": "req-9", "httpStatusCode": 200}
        assert BedrockResponseAdapter(response, _request()).get_text() == "Hello from Bedrock!"
        sent = runtime.converse.call_args.kwargs
        assert sent["modelId"] == MODEL_ID
        assert sent["toolConfig"]["tools"][0]["toolSpec"]["name"] == "get_weather"
        assert mock_session.return_value.client.call_args.args[0] == "bedrock-runtime"

    def test_execute_stream_with_bearer_key(self):
        runtime = _build_runtime_mock(events=_stream_events())

        with patch("llm_gateway.providers.bedrock.aioboto3.Session") as mock_session:
            mock_session.return_value.client.return_value = runtime
            provider = BedrockProvider()
            client = provider.create_client("bedrock-api-key")
            events = collect(provider.execute_stream(client, _request()))

        assert isinstance(client, BedrockClient)
        assert client.bearer_token == "bedrock-api-key"
        assert events == _stream_events()
        assert mock_session.return_value.client.call_args.kwargs["config"].signature_version is UNSIGNED

        event_name, handler = runtime.meta.events.register.call_args.args
        assert event_name == "before-send.bedrock-runtime.*"
        outgoing = SimpleNamespace(headers={})
        handler(request=outgoing)
        assert outgoing.headers["Authorization"] == "Bearer bedrock-api-key"

    def test_extract_error_message(self):
        provider = BedrockProvider()
        with_message = ClientError({"Error": {"Code": "ValidationException", "Message": "Bad input"}}, "Converse")
        without_message = ClientError({"Error": {"Code": "AccessDeniedException"}}, "Converse")

        assert provider.extract_error_message(with_message) == "Bad input"
        assert provider.extract_error_message(without_message) == "AWS Error: AccessDeniedException"
        assert provider.extract_error_message(ValueError("")) == "Internal server error"
