"""Token price lookup used for cost-savings estimates."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Protocol

from llm_gateway.config import get_settings

__all__ = [
    "TokenPrice",
    "PriceLookup",
    "InMemoryPriceTable",
    "get_price_lookup",
    "set_price_lookup",
]


@dataclass(frozen=True, slots=True)
class TokenPrice:
    model: str
    price_per_million_input: float
    price_per_million_output: float = 0.0

    @property
    def input_price_per_token(self) -> float:
        return self.price_per_million_input / 1_000_000


class PriceLookup(Protocol):
    def find_by_model(self, model: str) -> Optional[TokenPrice]: ...


class InMemoryPriceTable:
    """Exact-match price table keyed by model id."""

    def __init__(self, prices: Mapping[str, TokenPrice] | None = None) -> None:
        self._prices: dict[str, TokenPrice] = dict(prices or {})

    @classmethod
    def from_settings(cls) -> "InMemoryPriceTable":
        table = cls()
        for model, price in get_settings().token_prices.items():
            table.set(
                TokenPrice(
                    model=model,
                    price_per_million_input=price.get("input", 0.0),
                    price_per_million_output=price.get("output", 0.0),
                )
            )
        return table

    def set(self, price: TokenPrice) -> None:
        self._prices[price.model] = price

    def find_by_model(self, model: str) -> Optional[TokenPrice]:
        return self._prices.get(model)


_price_lookup: PriceLookup | None = None


def get_price_lookup() -> PriceLookup:
    global _price_lookup
    if _price_lookup is None:
        _price_lookup = InMemoryPriceTable.from_settings()
    return _price_lookup


def set_price_lookup(lookup: PriceLookup | None) -> None:
    """Install the lookup backing cost estimates; None restores the env-seeded table."""
    global _price_lookup
    _price_lookup = lookup
