"""Transcript store — verbatim conversation history keyed by conversation id.

``upsert`` is insert-or-merge: messages, preview and ``updated_at`` are always
replaced, while role / patient id / title keep their stored value unless a
new one is supplied.  Concurrent upserts to one id are not coordinated; the
last one to commit wins.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import TranscriptWriteFailure
from app.core.logging import get_logger
from app.models.conversation import Conversation
from app.schemas.conversation import ConversationSummary

logger = get_logger(__name__)

DEFAULT_PREVIEW_CHARS = 200


def derive_title(role: str | None, patient_id: str | None) -> str | None:
    if role and patient_id:
        return f"{role} ↔ Patient {patient_id}"
    return None


def derive_preview(messages: list[dict], max_chars: int = DEFAULT_PREVIEW_CHARS) -> str | None:
    """Text parts of the last message joined by a space, truncated."""
    if not messages:
        return None
    parts = messages[-1].get("parts") or []
    text = " ".join(
        p["text"] for p in parts
        if isinstance(p, dict) and p.get("type") == "text" and isinstance(p.get("text"), str)
    )
    return text[:max_chars]


@dataclass
class ConversationFields:
    """Optional-field record merged into a stored conversation."""

    messages: list[dict]
    role: str | None = None
    patient_id: str | None = None


def merge_into(row: Conversation, fields: ConversationFields, *, now: datetime, preview_chars: int) -> None:
    """Apply an upsert to an existing row.

    Content is last-writer-wins.  Identity fields keep the existing value
    unless a new value is provided.
    """
    row.messages = fields.messages
    row.last_message = derive_preview(fields.messages, preview_chars)
    row.updated_at = now
    if fields.role is not None:
        row.role = fields.role
    if fields.patient_id is not None:
        row.patient_id = fields.patient_id
    title = derive_title(fields.role, fields.patient_id)
    if title is not None:
        row.title = title


class TranscriptStore:
    """Owns the ``conversations`` table."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        preview_chars: int = DEFAULT_PREVIEW_CHARS,
    ) -> None:
        self._session_maker = session_maker
        self._preview_chars = preview_chars

    async def create(self) -> str:
        """Insert an empty conversation with a server-assigned id."""
        conversation_id = uuid.uuid4().hex
        now = datetime.now(UTC)
        async with self._session_maker() as db:
            db.add(Conversation(id=conversation_id, created_at=now, updated_at=now, messages=[]))
            await db.commit()
        logger.info("conversation_created", conversation_id=conversation_id)
        return conversation_id

    async def upsert(
        self,
        conversation_id: str,
        messages: list[dict],
        *,
        role: str | None = None,
        patient_id: str | None = None,
    ) -> None:
        """Insert the conversation or merge into the stored one.

        Raises TranscriptWriteFailure when the database write fails.
        """
        fields = ConversationFields(messages=messages, role=role, patient_id=patient_id)
        now = datetime.now(UTC)
        try:
            async with self._session_maker() as db:
                row = await db.get(Conversation, conversation_id)
                if row is None:
                    db.add(
                        Conversation(
                            id=conversation_id,
                            role=role,
                            patient_id=patient_id,
                            title=derive_title(role, patient_id),
                            created_at=now,
                            updated_at=now,
                            last_message=derive_preview(messages, self._preview_chars),
                            messages=messages,
                        )
                    )
                else:
                    merge_into(row, fields, now=now, preview_chars=self._preview_chars)
                await db.commit()
        except SQLAlchemyError as e:
            raise TranscriptWriteFailure(f"Failed to save conversation {conversation_id}: {e}") from e

        logger.info(
            "transcript_saved",
            conversation_id=conversation_id,
            message_count=len(messages),
        )

    async def get(self, conversation_id: str) -> list[dict]:
        """Stored messages, or an empty list for an unknown id."""
        async with self._session_maker() as db:
            result = await db.execute(
                select(Conversation.messages).where(Conversation.id == conversation_id)
            )
            messages = result.scalar_one_or_none()

        if isinstance(messages, str):
            # Rows written by other tools may hold serialized JSON text
            try:
                messages = json.loads(messages)
            except json.JSONDecodeError:
                return []
        return messages if isinstance(messages, list) else []

    async def list(self) -> list[ConversationSummary]:
        """All conversations, most recently updated first."""
        async with self._session_maker() as db:
            result = await db.execute(
                select(Conversation).order_by(Conversation.updated_at.desc())
            )
            rows = result.scalars().all()

        return [
            ConversationSummary(
                id=row.id,
                role=row.role,
                patient_id=row.patient_id,
                title=row.title or f"Conversation {row.id}",
                created_at=row.created_at,
                updated_at=row.updated_at,
                last_message=row.last_message,
            )
            for row in rows
        ]
