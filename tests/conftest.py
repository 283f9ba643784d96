import asyncio
import sys
import pathlib

import pytest

# Ensure the src directory is on the path for importing llm_gateway modules directly
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1] / "src"))

from llm_gateway.pricing import set_price_lookup  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_price_lookup():
    yield
    set_price_lookup(None)


async def aiter_events(events):
    for event in events:
        yield event


def collect(agen) -> list:
    """Drain an async iterator from synchronous test code."""

    async def _drain():
        return [item async for item in agen]

    return asyncio.run(_drain())
