"""Fact-graph store — scoped search/submit over extracted patient facts.

The pipeline talks to the store through ``FactGraphStore``.  Every call is
scoped by patient *and* role: facts recorded under one role's agent are never
visible to another role's agent for the same patient.

Backends:
- ``Mem0FactGraph``: mem0 ``AsyncMemory`` with a Neo4j graph store
  (user_id = patient, agent_id = role, run_id = conversation).
- ``InMemoryFactGraph``: process-local store for development and tests.
"""

from __future__ import annotations

import re
from collections import defaultdict
from typing import Any, Protocol

from pydantic import BaseModel

from app.config import Settings
from app.core.errors import ConfigurationError, FactWriteUnavailable, RetrievalUnavailable
from app.core.logging import get_logger
from app.schemas.chat import ModelTurn

logger = get_logger(__name__)


class RetrievedFact(BaseModel):
    """A short natural-language statement previously stored for a patient."""

    memory: str
    score: float | None = None
    id: str | None = None


class FactGraphStore(Protocol):
    async def search(
        self,
        query: str,
        *,
        patient_id: str,
        role: str,
        limit: int,
    ) -> list[RetrievedFact]:
        """Return facts ranked most-relevant first. Raises RetrievalUnavailable."""
        ...

    async def submit(
        self,
        turns: list[ModelTurn],
        *,
        patient_id: str,
        role: str,
        conversation_id: str,
    ) -> None:
        """Queue turns for fact extraction. Raises FactWriteUnavailable."""
        ...


# ── mem0 backend ─────────────────────────────────────────────────────


def mem0_config(settings: Settings) -> dict:
    """Build the mem0 configuration (OpenAI embedder + extractor, Neo4j graph)."""
    return {
        "embedder": {
            "provider": "openai",
            "config": {
                "api_key": settings.openai_api_key,
                "model": settings.mem0_embedding_model,
            },
        },
        "llm": {
            "provider": "openai",
            "config": {
                "api_key": settings.openai_api_key,
                "model": settings.llm_model,
            },
        },
        "graph_store": {
            "provider": "neo4j",
            "config": {
                "url": settings.neo4j_url,
                "username": settings.neo4j_username,
                "password": settings.neo4j_password,
            },
        },
        "history_db_path": settings.mem0_history_db_path,
    }


def _format_relation(relation: dict) -> str | None:
    source = relation.get("source")
    rel = relation.get("relationship")
    destination = relation.get("destination") or relation.get("target")
    if not (source and rel and destination):
        return None
    return f"{source} {str(rel).replace('_', ' ')} {destination}"


class Mem0FactGraph:
    """Fact graph backed by mem0 (entity/relationship extraction into Neo4j)."""

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "Mem0FactGraph":
        # Imported here: mem0 pulls in its vector/graph drivers at import time.
        from mem0 import AsyncMemory
        from mem0.configs.base import MemoryConfig

        return cls(AsyncMemory(config=MemoryConfig(**mem0_config(settings))))

    async def search(
        self,
        query: str,
        *,
        patient_id: str,
        role: str,
        limit: int,
    ) -> list[RetrievedFact]:
        try:
            raw = await self._client.search(
                query,
                user_id=patient_id,
                agent_id=role,
                limit=limit,
            )
        except Exception as e:
            raise RetrievalUnavailable(f"Failed to search fact graph: {e}") from e

        if isinstance(raw, dict):
            results = raw.get("results") or []
            relations = raw.get("relations") or []
        else:
            results, relations = list(raw or []), []

        facts: list[RetrievedFact] = []
        for item in results:
            text = item.get("memory") if isinstance(item, dict) else None
            if text:
                facts.append(RetrievedFact(memory=text, score=item.get("score"), id=item.get("id")))
        for relation in relations:
            text = _format_relation(relation) if isinstance(relation, dict) else None
            if text:
                facts.append(RetrievedFact(memory=text))
        return facts[:limit]

    async def submit(
        self,
        turns: list[ModelTurn],
        *,
        patient_id: str,
        role: str,
        conversation_id: str,
    ) -> None:
        try:
            await self._client.add(
                [t.model_dump() for t in turns],
                user_id=patient_id,
                agent_id=role,
                run_id=conversation_id,
            )
        except Exception as e:
            raise FactWriteUnavailable(f"Failed to add turns to fact graph: {e}") from e


# ── In-memory backend ────────────────────────────────────────────────

_WORD_RE = re.compile(r"[a-z0-9]+")


def _tokens(text: str) -> set[str]:
    return {w for w in _WORD_RE.findall(text.lower()) if len(w) > 2}


class InMemoryFactGraph:
    """Keeps each submitted turn as a fact, partitioned by (patient, role).

    Search ranks facts by word overlap with the query, newest first on ties.
    """

    def __init__(self) -> None:
        self._facts: dict[tuple[str, str], list[tuple[str, str]]] = defaultdict(list)

    async def search(
        self,
        query: str,
        *,
        patient_id: str,
        role: str,
        limit: int,
    ) -> list[RetrievedFact]:
        query_tokens = _tokens(query)
        scored: list[tuple[int, int, str]] = []
        for position, (_conversation_id, text) in enumerate(self._facts.get((patient_id, role), [])):
            overlap = len(query_tokens & _tokens(text))
            if overlap:
                scored.append((overlap, position, text))
        scored.sort(key=lambda s: (s[0], s[1]), reverse=True)
        return [
            RetrievedFact(memory=text, score=float(overlap))
            for overlap, _position, text in scored[:limit]
        ]

    async def submit(
        self,
        turns: list[ModelTurn],
        *,
        patient_id: str,
        role: str,
        conversation_id: str,
    ) -> None:
        bucket = self._facts[(patient_id, role)]
        for turn in turns:
            if turn.content:
                bucket.append((conversation_id, f"{turn.role}: {turn.content}"))


# ── Factory ──────────────────────────────────────────────────────────


def build_fact_graph(settings: Settings) -> FactGraphStore:
    """Create the configured fact-graph backend.

    Raises ConfigurationError listing every missing setting for mem0.
    """
    backend = settings.fact_graph_backend.lower()
    if backend == "memory":
        logger.warning("fact_graph_in_memory", detail="facts are not persisted across restarts")
        return InMemoryFactGraph()
    if backend != "mem0":
        raise ConfigurationError("fact graph", [f"fact_graph_backend={backend!r} (mem0 | memory)"])

    required = {
        "NEO4J_URL": settings.neo4j_url,
        "NEO4J_USERNAME": settings.neo4j_username,
        "NEO4J_PASSWORD": settings.neo4j_password,
        "OPENAI_API_KEY": settings.openai_api_key,
    }
    missing = [key for key, value in required.items() if not value]
    if missing:
        raise ConfigurationError("mem0 graph memory", missing)
    return Mem0FactGraph.from_settings(settings)
