"""Usage logger — appends one timing/token/cost record per turn."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import LogWriteFailure
from app.core.logging import get_logger
from app.models.turn_usage import TurnUsage
from app.schemas.usage import TurnUsageCreate

logger = get_logger(__name__)


class UsageLogger:
    """Owns the append-only ``turn_usage`` table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker

    async def append(self, entry: TurnUsageCreate) -> None:
        """Insert one record. Raises LogWriteFailure."""
        usage = entry.usage
        row = TurnUsage(
            model=entry.model,
            latency_ms=entry.latency_ms,
            finish_reason=entry.finish_reason,
            role=entry.role,
            patient_id=entry.patient_id,
            conversation_id=entry.conversation_id,
            last_user_text=entry.last_user_text,
            assistant_text=entry.assistant_text,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            total_tokens=usage.total_tokens,
            usage_details={
                "reasoning_tokens": usage.reasoning_tokens,
                "cached_input_tokens": usage.cached_input_tokens,
            },
            cost_input_usd=entry.cost_usd.input,
            cost_output_usd=entry.cost_usd.output,
            cost_total_usd=entry.cost_usd.total,
        )
        try:
            async with self._session_maker() as db:
                db.add(row)
                await db.commit()
        except SQLAlchemyError as e:
            raise LogWriteFailure(f"Failed to write usage record: {e}") from e

    async def record(self, entry: TurnUsageCreate) -> bool:
        """Append a record; failures go to the application log instead."""
        try:
            await self.append(entry)
        except LogWriteFailure as e:
            logger.error(
                "usage_log_write_failed",
                error=str(e),
                model=entry.model,
                cost_total_usd=entry.cost_usd.total,
            )
            return False

        logger.info(
            "turn_usage_recorded",
            model=entry.model,
            latency_ms=entry.latency_ms,
            input_tokens=entry.usage.input_tokens,
            output_tokens=entry.usage.output_tokens,
            cost_total_usd=entry.cost_usd.total,
        )
        return True

    async def recent(self, conversation_id: str, limit: int = 20) -> list[TurnUsage]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(TurnUsage)
                .where(TurnUsage.conversation_id == conversation_id)
                .order_by(TurnUsage.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
