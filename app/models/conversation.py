"""Conversation model — one verbatim transcript per conversation id."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class Conversation(Base):
    """Full message history of a conversation, replaced on every turn.

    ``messages`` is the source of truth; ``last_message`` and ``title`` are
    derived and may be recomputed at any time.
    """

    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)

    role: Mapped[str | None] = mapped_column(String(20))
    # doctor | nurse | receptionist
    patient_id: Mapped[str | None] = mapped_column(String(128), index=True)
    title: Mapped[str | None] = mapped_column(String(255))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    # Preview of the most recent message text
    last_message: Mapped[str | None] = mapped_column(Text)

    # Structure: [{"id": "...", "role": "user|assistant", "parts": [{"type": "text", "text": "..."}]}]
    messages: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
