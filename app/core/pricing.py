"""Static per-model token pricing (USD per 1M tokens)."""

from __future__ import annotations

from app.schemas.usage import CostBreakdown

# Update here without touching the rest of the app
MODEL_PRICING: dict[str, dict[str, float]] = {
    "gpt-4o": {"input_per_1m": 5.0, "output_per_1m": 15.0},
}


def calculate_cost(
    model: str,
    input_tokens: int | None,
    output_tokens: int | None,
) -> CostBreakdown:
    """Cost of one call. Absent counts and unknown models cost nothing."""
    pricing = MODEL_PRICING.get(model)
    if pricing is None:
        return CostBreakdown()

    input_cost = (input_tokens / 1_000_000) * pricing["input_per_1m"] if input_tokens is not None else 0.0
    output_cost = (output_tokens / 1_000_000) * pricing["output_per_1m"] if output_tokens is not None else 0.0
    return CostBreakdown(input=input_cost, output=output_cost, total=input_cost + output_cost)
