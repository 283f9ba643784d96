#!/usr/bin/env python
"""
Relay an Anthropic Messages stream through the gateway, gating tool calls.

Execute with: ANTHROPIC_API_KEY=sk-ant-... python examples/relay_stream.py
"""
import asyncio
import logging

from llm_gateway import Provider, get_api_key, get_provider, relay_stream

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MODEL_NAME = "claude-sonnet-4-5"

BLOCKED_TOOLS = {"delete_file"}


def gate(tool_calls):
    """Refuse any stream that tries to call a blocked tool."""
    blocked = [call.name for call in tool_calls if call.name in BLOCKED_TOOLS]
    if blocked:
        return f"I am not allowed to call {', '.join(blocked)}."
    return None


async def main():
    provider = get_provider(Provider.ANTHROPIC)
    request = {
        "model": MODEL_NAME,
        "max_tokens": 512,
        "stream": True,
        "system": "You are a file-system assistant.",
        "messages": [{"role": "user", "content": "Remove /tmp/report.txt please."}],
        "tools": [
            {
                "name": "delete_file",
                "description": "Delete a file",
                "input_schema": {"type": "object", "properties": {"path": {"type": "string"}}},
            }
        ],
    }

    adapter = provider.create_request_adapter(request)
    stats = adapter.apply_toon_compression(MODEL_NAME)
    logger.info("Compression: %s", stats)

    client = provider.create_client(get_api_key(Provider.ANTHROPIC))
    stream_adapter = provider.create_stream_adapter(request)
    events = provider.execute_stream(client, adapter.to_provider_request())

    async for frame in relay_stream(provider, stream_adapter, events, tool_call_gate=gate):
        print(frame, end="")

    print("\n=== Accumulated ===")
    print(f"Text: {stream_adapter.get_text()!r}")
    print(f"Tool calls: {stream_adapter.get_tool_calls()}")
    print(f"Usage: {stream_adapter.get_usage()}")


if __name__ == "__main__":
    asyncio.run(main())
