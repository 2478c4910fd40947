"""Pydantic schemas for API request/response validation."""

from app.schemas.chat import ChatTurn, MessagePart, ModelTurn, UIMessage
from app.schemas.conversation import ConversationCreated, ConversationSummary
from app.schemas.usage import CostBreakdown, TokenUsage, TurnUsageCreate, TurnUsageRead

__all__ = [
    "ChatTurn",
    "MessagePart",
    "ModelTurn",
    "UIMessage",
    "ConversationCreated",
    "ConversationSummary",
    "CostBreakdown",
    "TokenUsage",
    "TurnUsageCreate",
    "TurnUsageRead",
]
