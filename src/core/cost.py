# src/core/cost.py
"""Pre-flight cost estimation and admission control.

Token counts are a character-ratio heuristic (4 chars ~ 1 token by default),
an upper-bound estimate rather than billing truth. Everything here is pure:
the same inputs always give the same estimate and nothing is cached.

Example:
    >>> table = PriceTable({"m": ModelPrice(Decimal("1"), Decimal("2"))})
    >>> estimate = build_estimate("hello world", "m", table, output_tokens=100)
    >>> should_reject(estimate.cost, Decimal("0.10"))
    False
"""

import math
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Any

from src.core.errors import UnknownModel

DEFAULT_CHARS_PER_TOKEN = 4
TOKENS_PER_PRICE_UNIT = Decimal(1_000_000)


@dataclass(frozen=True)
class ModelPrice:
    """Unit prices for one model, in USD per 1M tokens."""

    input_per_million: Decimal
    output_per_million: Decimal


class PriceTable:
    """Read-only mapping from model identifier to ModelPrice.

    Loaded once at startup and injected into whoever needs pricing.
    """

    def __init__(self, prices: Mapping[str, ModelPrice]) -> None:
        self._prices = MappingProxyType(dict(prices))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Mapping[str, Any]]) -> "PriceTable":
        """Build from ``{model: {"input": x, "output": y}}`` mappings."""
        return cls(
            {
                model_id: ModelPrice(
                    input_per_million=Decimal(str(prices["input"])),
                    output_per_million=Decimal(str(prices["output"])),
                )
                for model_id, prices in raw.items()
            }
        )

    @classmethod
    def from_settings(cls, settings: Any) -> "PriceTable":
        return cls.from_mapping(settings.price_table)

    def lookup(self, model_id: str) -> ModelPrice:
        """Get prices for a model.

        Raises:
            UnknownModel: If the model has no entry. There is no default price.
        """
        try:
            return self._prices[model_id]
        except KeyError:
            raise UnknownModel(model_id) from None

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._prices

    def __len__(self) -> int:
        return len(self._prices)


@dataclass(frozen=True)
class CostEstimate:
    """Estimated tokens and cost for a single model call."""

    input_tokens: int
    output_tokens: int
    model_id: str
    price: ModelPrice
    cost: Decimal


def estimate_tokens(text: str | None, chars_per_token: int = DEFAULT_CHARS_PER_TOKEN) -> int:
    """Estimate token count from character length.

    Args:
        text: Text to measure.
        chars_per_token: Characters assumed per token.

    Returns:
        Rounded-up token estimate; 0 for empty text.
    """
    if chars_per_token < 1:
        raise ValueError("chars_per_token must be >= 1")
    if not text:
        return 0
    return math.ceil(len(text) / chars_per_token)


def estimate_cost(
    input_tokens: int, output_tokens: int, model_id: str, price_table: PriceTable
) -> Decimal:
    """Compute the monetary cost of a call from token counts.

    Raises:
        UnknownModel: If model_id is not in the price table.
    """
    price = price_table.lookup(model_id)
    return (
        Decimal(input_tokens) * price.input_per_million
        + Decimal(output_tokens) * price.output_per_million
    ) / TOKENS_PER_PRICE_UNIT


def should_reject(estimated_cost: Decimal, ceiling: Decimal) -> bool:
    """True only when the estimate is strictly above the ceiling."""
    return estimated_cost > ceiling


def build_estimate(
    text: str,
    model_id: str,
    price_table: PriceTable,
    output_tokens: int,
    chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
) -> CostEstimate:
    """Estimate input tokens for ``text`` and price the call.

    Args:
        text: Full prompt that will be sent to the model.
        model_id: Model identifier to price against.
        price_table: Injected price table.
        output_tokens: Projected output tokens (policy default).
        chars_per_token: Characters assumed per token.

    Returns:
        CostEstimate for the call.

    Raises:
        UnknownModel: If model_id is not in the price table.
    """
    input_tokens = estimate_tokens(text, chars_per_token)
    price = price_table.lookup(model_id)
    cost = estimate_cost(input_tokens, output_tokens, model_id, price_table)
    return CostEstimate(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        model_id=model_id,
        price=price,
        cost=cost,
    )
