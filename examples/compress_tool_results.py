#!/usr/bin/env python
"""
TOON-compress the tool results of a Chat Completions request, offline.

Execute with: python examples/compress_tool_results.py
"""
import json
import logging

from llm_gateway import get_provider
from llm_gateway.pricing import InMemoryPriceTable, TokenPrice, set_price_lookup

logging.basicConfig(level=logging.INFO)

MODEL_NAME = "gpt-4o"

ORDERS = [
    {"id": 1001, "customer": "Ada", "total": 42.5, "status": "shipped"},
    {"id": 1002, "customer": "Linus", "total": 13.0, "status": "pending"},
    {"id": 1003, "customer": "Grace", "total": 99.99, "status": "shipped"},
]


def main():
    set_price_lookup(InMemoryPriceTable({MODEL_NAME: TokenPrice(MODEL_NAME, 2.5, 10.0)}))

    request = {
        "model": MODEL_NAME,
        "messages": [
            {"role": "user", "content": "Which orders are still pending?"},
            {
                "role": "assistant",
                "content": None,
                "tool_calls": [
                    {"id": "call_1", "type": "function", "function": {"name": "list_orders", "arguments": "{}"}}
                ],
            },
            {"role": "tool", "tool_call_id": "call_1", "content": json.dumps(ORDERS)},
        ],
    }

    adapter = get_provider("openai").create_request_adapter(request)
    stats = adapter.apply_toon_compression(MODEL_NAME)

    print("=== Compressed tool message ===")
    print(adapter.to_provider_request()["messages"][2]["content"])
    print(f"\nTokens: {stats.tokens_before} -> {stats.tokens_after} ({stats.savings_status})")
    if stats.cost_savings is not None:
        print(f"Estimated savings: ${stats.cost_savings:.8f}")


if __name__ == "__main__":
    main()
