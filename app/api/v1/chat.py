"""Chat endpoint — validates a turn, retrieves memory, streams the reply (SSE)."""

import time

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from app.core.logging import bind_turn_context, get_logger
from app.core.validation import validate_turn
from app.deps import Orchestrator

logger = get_logger(__name__)

router = APIRouter()


@router.post("")
async def chat(request: Request, orchestrator: Orchestrator) -> StreamingResponse:
    """Submit one turn for a patient conversation.

    Flow:
    1. Validate the raw body (400 before any external call)
    2. Search the fact graph for this patient + role
    3. Start generation; relay chunks as SSE
    4. Transcript, fact graph and usage writes run after delivery
    """
    started_at = time.perf_counter()
    turn = validate_turn(await request.body())

    bind_turn_context(turn.chat_id, turn.patient_id, turn.role.value)
    logger.info("chat_turn_received", message_count=len(turn.messages))

    prepared = await orchestrator.prepare(turn, started_at=started_at)
    frames = await orchestrator.start(turn, prepared)

    return StreamingResponse(
        frames,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
