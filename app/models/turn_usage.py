"""Turn usage model — append-only per-turn timing, token and cost record."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class TurnUsage(Base):
    """One row per completed turn. Never updated."""

    __tablename__ = "turn_usage"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    model: Mapped[str] = mapped_column(String(100), nullable=False)
    latency_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    finish_reason: Mapped[str | None] = mapped_column(String(50))

    role: Mapped[str | None] = mapped_column(String(20))
    patient_id: Mapped[str | None] = mapped_column(String(128))
    conversation_id: Mapped[str | None] = mapped_column(String(128), index=True)

    last_user_text: Mapped[str | None] = mapped_column(Text)
    assistant_text: Mapped[str | None] = mapped_column(Text)

    input_tokens: Mapped[int | None] = mapped_column(Integer)
    output_tokens: Mapped[int | None] = mapped_column(Integer)
    total_tokens: Mapped[int | None] = mapped_column(Integer)
    # Flexible: reasoning_tokens, cached_input_tokens
    usage_details: Mapped[dict | None] = mapped_column(JSON)

    cost_input_usd: Mapped[float] = mapped_column(Float, default=0.0)
    cost_output_usd: Mapped[float] = mapped_column(Float, default=0.0)
    cost_total_usd: Mapped[float] = mapped_column(Float, default=0.0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        index=True,
    )
