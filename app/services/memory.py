"""Memory service — scoped fact retrieval before generation, fact submission after.

Retrieval runs on the request path and never raises: a store failure is
reported as a ``failed`` outcome so the prompt can carry an explicit marker.
Submission runs in the background once the reply has been delivered; its
failures are logged and dropped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from app.core.errors import FactWriteUnavailable, RetrievalUnavailable
from app.core.logging import get_logger
from app.schemas.chat import UIMessage, to_model_turns
from app.services.fact_graph import FactGraphStore, RetrievedFact

logger = get_logger(__name__)

DEFAULT_SEARCH_LIMIT = 8
DEFAULT_WRITE_WINDOW = 4


class RetrievalStatus(StrEnum):
    FOUND = "found"
    EMPTY = "empty"
    SKIPPED = "skipped"  # turn carried no user text
    FAILED = "failed"


@dataclass
class RetrievalResult:
    status: RetrievalStatus
    facts: list[RetrievedFact] = field(default_factory=list)
    error: str | None = None


class MemoryRetrievalClient:
    """Searches the fact graph for the current patient + role."""

    def __init__(self, store: FactGraphStore, *, limit: int = DEFAULT_SEARCH_LIMIT) -> None:
        self._store = store
        self._limit = limit

    async def retrieve(self, query: str | None, *, patient_id: str, role: str) -> RetrievalResult:
        if not query:
            return RetrievalResult(status=RetrievalStatus.SKIPPED)

        logger.debug("memory_search_started", query_len=len(query))
        try:
            facts = await self._store.search(
                query,
                patient_id=patient_id,
                role=role,
                limit=self._limit,
            )
        except RetrievalUnavailable as e:
            logger.warning("memory_search_failed", error=str(e))
            return RetrievalResult(status=RetrievalStatus.FAILED, error=str(e))

        facts = [f for f in facts if f.memory][: self._limit]
        logger.info("memory_search_completed", result_count=len(facts))
        if not facts:
            return RetrievalResult(status=RetrievalStatus.EMPTY)
        return RetrievalResult(status=RetrievalStatus.FOUND, facts=facts)


class AsyncFactWriter:
    """Submits the trailing window of a finished turn for fact extraction."""

    def __init__(self, store: FactGraphStore, *, window: int = DEFAULT_WRITE_WINDOW) -> None:
        self._store = store
        self._window = window

    async def submit(
        self,
        messages: list[UIMessage],
        *,
        patient_id: str,
        role: str,
        conversation_id: str,
    ) -> bool:
        """Submit the last ``window`` messages. Returns False when nothing was written."""
        turns = to_model_turns(messages[-self._window:]) if self._window else []
        if not turns:
            return False

        try:
            await self._store.submit(
                turns,
                patient_id=patient_id,
                role=role,
                conversation_id=conversation_id,
            )
        except FactWriteUnavailable as e:
            logger.warning("fact_write_failed", error=str(e), turn_count=len(turns))
            return False

        logger.info("fact_write_completed", turn_count=len(turns))
        return True
