"""Conversation endpoints — transcript list, replay and creation."""

from __future__ import annotations

from fastapi import APIRouter, Query, status

from app.deps import Transcripts, Usage
from app.schemas.conversation import ConversationCreated, ConversationSummary
from app.schemas.usage import TurnUsageRead

router = APIRouter()


@router.get("", response_model=list[ConversationSummary])
async def list_conversations(transcripts: Transcripts) -> list[ConversationSummary]:
    """All conversations, most recently updated first."""
    return await transcripts.list()


@router.post("", response_model=ConversationCreated, status_code=status.HTTP_201_CREATED)
async def create_conversation(transcripts: Transcripts) -> ConversationCreated:
    return ConversationCreated(id=await transcripts.create())


@router.get("/{conversation_id}")
async def get_conversation(conversation_id: str, transcripts: Transcripts) -> list[dict]:
    """Stored message list; empty for an unknown id."""
    return await transcripts.get(conversation_id)


@router.get("/{conversation_id}/usage", response_model=list[TurnUsageRead])
async def get_conversation_usage(
    conversation_id: str,
    usage: Usage,
    limit: int = Query(20, ge=1, le=200),
) -> list[TurnUsageRead]:
    rows = await usage.recent(conversation_id, limit=limit)
    return [TurnUsageRead.model_validate(row) for row in rows]
