"""FastAPI dependencies — shared pipeline services stored on app.state."""

from typing import Annotated

from fastapi import Depends, Request

from app.core.orchestrator import TurnOrchestrator
from app.services.transcript import TranscriptStore
from app.services.usage import UsageLogger


def get_orchestrator(request: Request) -> TurnOrchestrator:
    return request.app.state.orchestrator


def get_transcript_store(request: Request) -> TranscriptStore:
    return request.app.state.transcripts


def get_usage_logger(request: Request) -> UsageLogger:
    return request.app.state.usage_logger


Orchestrator = Annotated[TurnOrchestrator, Depends(get_orchestrator)]
Transcripts = Annotated[TranscriptStore, Depends(get_transcript_store)]
Usage = Annotated[UsageLogger, Depends(get_usage_logger)]
