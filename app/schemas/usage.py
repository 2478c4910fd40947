"""Usage schemas — token counts and derived cost for one turn."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class TokenUsage(BaseModel):
    """Token counts as reported by the generation service (each may be absent)."""

    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None
    reasoning_tokens: int | None = None
    cached_input_tokens: int | None = None


class CostBreakdown(BaseModel):
    input: float = 0.0
    output: float = 0.0
    total: float = 0.0


class TurnUsageCreate(BaseModel):
    model: str
    latency_ms: int
    finish_reason: str | None = None
    role: str | None = None
    patient_id: str | None = None
    conversation_id: str | None = None
    last_user_text: str | None = None
    assistant_text: str | None = None
    usage: TokenUsage
    cost_usd: CostBreakdown


class TurnUsageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    model: str
    latency_ms: int
    finish_reason: str | None = None
    conversation_id: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None
    cost_input_usd: float
    cost_output_usd: float
    cost_total_usd: float
    created_at: datetime
