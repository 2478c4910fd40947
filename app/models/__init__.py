"""SQLAlchemy models package."""

from app.models.conversation import Conversation
from app.models.turn_usage import TurnUsage

__all__ = [
    "Conversation",
    "TurnUsage",
]
