"""
Pricing calculations and rate management.

Maps (model, input tokens, output tokens) to a cost in integer cents using
a static per-model rate table.
"""

from dataclasses import dataclass
from decimal import ROUND_UP, Decimal
from typing import Dict, Union

from .errors import AccountingError
from .types import AIModel

# Fractional cents round UP (ceiling), not half up: any non-zero usage
# costs at least 1 cent.
COST_ROUNDING = ROUND_UP


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model, in USD."""
    input_cost_per_1k: Decimal
    output_cost_per_1k: Decimal


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for supported models."""
    prices: Dict[AIModel, ModelPricing]

    def get_pricing(self, model: Union[AIModel, str]) -> ModelPricing:
        """Get pricing for a specific model.

        Args:
            model: Model enum member or identifier string

        Returns:
            ModelPricing for the model

        Raises:
            AccountingError: If the model has no row in the table
        """
        try:
            key = AIModel(model)
        except ValueError:
            raise AccountingError(f"Unsupported model: {model}") from None
        if key not in self.prices:
            raise AccountingError(f"Unsupported model: {model}")
        return self.prices[key]


# Fixed pricing table - no dynamic fetching, no defaults
PRICING_TABLE = PricingTable({
    AIModel.GPT_4: ModelPricing(
        input_cost_per_1k=Decimal("0.03"),
        output_cost_per_1k=Decimal("0.06"),
    ),
    AIModel.GPT_4_TURBO: ModelPricing(
        input_cost_per_1k=Decimal("0.01"),
        output_cost_per_1k=Decimal("0.03"),
    ),
    AIModel.GPT_4O_MINI: ModelPricing(
        input_cost_per_1k=Decimal("0.00015"),
        output_cost_per_1k=Decimal("0.0006"),
    ),
    AIModel.GPT_35_TURBO: ModelPricing(
        input_cost_per_1k=Decimal("0.0015"),
        output_cost_per_1k=Decimal("0.002"),
    ),
    AIModel.CLAUDE_3_OPUS: ModelPricing(
        input_cost_per_1k=Decimal("0.015"),
        output_cost_per_1k=Decimal("0.075"),
    ),
    AIModel.CLAUDE_3_SONNET: ModelPricing(
        input_cost_per_1k=Decimal("0.003"),
        output_cost_per_1k=Decimal("0.015"),
    ),
    AIModel.CLAUDE_3_HAIKU: ModelPricing(
        input_cost_per_1k=Decimal("0.00025"),
        output_cost_per_1k=Decimal("0.00125"),
    ),
    AIModel.GEMINI_25_FLASH: ModelPricing(
        input_cost_per_1k=Decimal("0.0003"),
        output_cost_per_1k=Decimal("0.0025"),
    ),
    AIModel.GEMINI_15_PRO: ModelPricing(
        input_cost_per_1k=Decimal("0.00125"),
        output_cost_per_1k=Decimal("0.005"),
    ),
    # Chatbase bills by subscription, not per token
    AIModel.CHATBASE: ModelPricing(
        input_cost_per_1k=Decimal("0"),
        output_cost_per_1k=Decimal("0"),
    ),
    AIModel.MOCK: ModelPricing(
        input_cost_per_1k=Decimal("0.0015"),
        output_cost_per_1k=Decimal("0.002"),
    ),
})


def calculate_cost(model: Union[AIModel, str], input_tokens: int, output_tokens: int) -> int:
    """Calculate the cost of one call in integer cents.

    Args:
        model: Model identifier
        input_tokens: Prompt tokens reported by the vendor
        output_tokens: Completion tokens reported by the vendor

    Returns:
        Cost in cents, rounded UP to the next whole cent

    Raises:
        AccountingError: If the model is not in the pricing table
        ValueError: If a token count is negative
    """
    if input_tokens < 0 or output_tokens < 0:
        raise ValueError("token counts cannot be negative")

    pricing = PRICING_TABLE.get_pricing(model)

    input_cost = (Decimal(input_tokens) / Decimal("1000")) * pricing.input_cost_per_1k
    output_cost = (Decimal(output_tokens) / Decimal("1000")) * pricing.output_cost_per_1k

    total_cents = (input_cost + output_cost) * Decimal("100")
    return int(total_cents.quantize(Decimal("1"), rounding=COST_ROUNDING))
