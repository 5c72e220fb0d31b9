"""
Per-model pricing and cost calculation.

Rates are USD per 1K tokens. Models missing from a table are priced at the
table's default rate when it has one.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_UP
from typing import Dict, Optional

from .models import TokenUsage


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    prompt_cost_per_1k: Decimal
    completion_cost_per_1k: Decimal

    @classmethod
    def flat(cls, cost_per_1k: str) -> "ModelPricing":
        """Same rate for prompt and completion tokens."""
        return cls(Decimal(cost_per_1k), Decimal(cost_per_1k))


@dataclass(frozen=True)
class PricingTable:
    """Pricing table for one provider."""
    prices: Dict[str, ModelPricing]
    default: Optional[ModelPricing] = None

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a specific model.

        Raises:
            ValueError: If the model is unknown and there is no default rate
        """
        if model in self.prices:
            return self.prices[model]
        if self.default is not None:
            return self.default
        raise ValueError(f"Unsupported model: {model}")


OPENROUTER_PRICING = PricingTable(
    prices={
        "openai/gpt-5-nano": ModelPricing.flat("0.00005"),
        "openai/gpt-5-mini": ModelPricing.flat("0.00025"),
        "openai/gpt-5-chat": ModelPricing.flat("0.00125"),
        "openai/gpt-5": ModelPricing.flat("0.00125"),
        "openai/gpt-4.1-nano": ModelPricing.flat("0.002"),
        "openai/gpt-4": ModelPricing.flat("0.03"),
        "openai/gpt-4o-mini": ModelPricing.flat("0.00015"),
        "openai/gpt-4o": ModelPricing.flat("0.005"),
        "anthropic/claude-3-haiku": ModelPricing.flat("0.00025"),
        "anthropic/claude-3-sonnet": ModelPricing.flat("0.003"),
    },
    default=ModelPricing.flat("0.002"),
)

ANTHROPIC_PRICING = PricingTable(
    prices={
        "claude-3-sonnet-20240229": ModelPricing(Decimal("0.003"), Decimal("0.015")),
        "claude-3-haiku-20240307": ModelPricing(Decimal("0.00025"), Decimal("0.00125")),
        "claude-3-opus-20240229": ModelPricing(Decimal("0.015"), Decimal("0.075")),
    },
    default=ModelPricing(Decimal("0.003"), Decimal("0.015")),
)


def calculate_cost(table: PricingTable, model: str, usage: TokenUsage) -> float:
    """Cost of ``usage`` on ``model``, rounded UP to a millionth of a dollar.

    Raises:
        ValueError: If the model is not priced by ``table``
    """
    pricing = table.get_pricing(model)

    prompt_cost = (Decimal(usage.prompt_tokens) / Decimal("1000")) * pricing.prompt_cost_per_1k
    completion_cost = (Decimal(usage.completion_tokens) / Decimal("1000")) * pricing.completion_cost_per_1k

    total_cost = prompt_cost + completion_cost
    return float(total_cost.quantize(Decimal("0.000001"), rounding=ROUND_UP))
