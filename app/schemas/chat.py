"""Chat schemas — UI messages, normalized turns, stream frames."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.core.roles import Role

# ── UI messages ──────────────────────────────────────────────────────


class MessagePart(BaseModel):
    """A typed content part. Only ``text`` parts are interpreted.

    Other part types are opaque and may carry a ``text`` of any shape.
    """

    model_config = ConfigDict(extra="allow")

    type: str
    text: Any = None


class UIMessage(BaseModel):
    """A conversation message as exchanged with the UI and stored verbatim."""

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    role: str  # user | assistant
    parts: list[MessagePart] = Field(default_factory=list)

    def text(self) -> str:
        """Join the text parts with a space."""
        return " ".join(
            p.text for p in self.parts if p.type == "text" and isinstance(p.text, str)
        ).strip()


class ModelTurn(BaseModel):
    """Plain role + text pair sent to the generator or the fact graph."""

    role: str
    content: str


# ── Normalized turn ──────────────────────────────────────────────────


class ChatTurn(BaseModel):
    """Validated inbound turn."""

    messages: list[UIMessage]
    raw_messages: list[dict]  # verbatim, for the transcript
    chat_id: str
    role: Role
    patient_id: str

    def last_user_text(self) -> str | None:
        """Text of the last user message, or None when it carries no text."""
        for message in reversed(self.messages):
            if message.role == "user":
                return message.text() or None
        return None


def to_model_turns(messages: list[UIMessage]) -> list[ModelTurn]:
    return [ModelTurn(role=m.role, content=m.text()) for m in messages]
