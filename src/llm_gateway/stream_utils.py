"""Shared streaming utilities: relaying vendor streams to clients and folding them."""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable, Optional, Union

from llm_gateway._exceptions import classify_error
from llm_gateway.types import CommonToolCall, LLMProvider, StreamAdapter

__all__ = ["ToolCallGate", "relay_stream", "accumulate_stream", "accumulate_stream_sync"]

logger = logging.getLogger(__name__)

# Returns None to let the tool calls through, or refusal text to send instead.
ToolCallGate = Callable[[list[CommonToolCall]], Union[Optional[str], Awaitable[Optional[str]]]]


async def _run_gate(gate: ToolCallGate, tool_calls: list[CommonToolCall]) -> Optional[str]:
    verdict = gate(tool_calls)
    if inspect.isawaitable(verdict):
        verdict = await verdict
    return verdict


async def _close(events: Any) -> None:
    aclose = getattr(events, "aclose", None)
    if aclose is not None:
        await aclose()


async def relay_stream(
    provider: LLMProvider,
    stream_adapter: StreamAdapter,
    events: AsyncIterable[Any],
    *,
    tool_call_gate: Optional[ToolCallGate] = None,
) -> AsyncIterator[str]:
    """
    Drive *stream_adapter* over vendor *events* and yield SSE text for the client.

    Frames are forwarded as the adapter produces them and relaying stops at
    the first final chunk, followed by the protocol's terminal sentinel.

    With a *tool_call_gate* installed, frames are held from the first tool-call
    chunk onward, so order is preserved. At the end of the stream the gate sees
    the finalized tool calls. None releases the held frames. A string discards
    them, drops the calls from the adapter state and sends that text as a
    complete assistant message instead.

    Failures while reading the vendor stream are re-raised as GatewayError;
    errors raised by the gate itself propagate unchanged. On failure or
    cancellation unfinished tool-call buffers are discarded and the vendor
    stream is closed.
    """
    held: list[str] = []
    completed = False

    try:
        final_seen = False
        try:
            async for event in events:
                result = stream_adapter.process_chunk(event)
                if tool_call_gate is not None and (result.is_tool_call_chunk or held):
                    if result.sse_data:
                        held.append(result.sse_data)
                elif result.sse_data:
                    yield result.sse_data
                if result.is_final:
                    final_seen = True
                    break
        except Exception as exc:
            raise classify_error(
                exc,
                detail=provider.extract_error_message(exc),
                provider=provider.provider,
            ) from exc

        if held:
            tool_calls = stream_adapter.get_tool_calls()
            refusal = await _run_gate(tool_call_gate, tool_calls)
            if refusal is not None:
                logger.info(
                    "Tool calls blocked, sending refusal instead",
                    extra={"provider": provider.provider, "tool_calls": len(tool_calls)},
                )
                # the refused calls never reach the client, so the end frames must not mention them
                stream_adapter.state.tool_calls.clear()
                stream_adapter.state.stop_reason = None
                yield stream_adapter.format_complete_text_sse(refusal) + stream_adapter.format_end_sse()
                completed = True
                return
            yield "".join(held)

        if final_seen:
            if stream_adapter.done_sentinel:
                yield stream_adapter.done_sentinel
        else:
            logger.debug("Vendor stream ended without a final event", extra={"provider": provider.provider})
            yield stream_adapter.format_end_sse()
        completed = True
    finally:
        if not completed:
            stream_adapter.discard_pending()
        await _close(events)


async def accumulate_stream(
    stream_adapter: StreamAdapter,
    events: Union[AsyncIterable[Any], Iterable[Any]],
) -> dict[str, Any]:
    """
    Fold a whole event sequence and return the equivalent non-streaming response.

    Args:
        stream_adapter: A fresh stream adapter for the request.
        events: Vendor stream events, sync or async.

    Returns:
        The vendor-shaped response built by ``to_provider_response()``.
    """
    if hasattr(events, "__aiter__"):
        async for event in events:
            if stream_adapter.process_chunk(event).is_final:
                break
    else:
        for event in events:
            if stream_adapter.process_chunk(event).is_final:
                break
    return stream_adapter.to_provider_response()


def accumulate_stream_sync(stream_adapter: StreamAdapter, events: Iterable[Any]) -> dict[str, Any]:
    """Synchronous wrapper around ``accumulate_stream``."""
    return asyncio.run(accumulate_stream(stream_adapter, events))
