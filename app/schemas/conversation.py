"""Conversation schemas (list summaries, creation response)."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ConversationSummary(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: str
    role: str | None = None
    patient_id: str | None = None
    title: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_message: str | None = None


class ConversationCreated(BaseModel):
    id: str
