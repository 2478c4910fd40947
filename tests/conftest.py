"""Shared fixtures: SQLite-backed stores and recording fakes for the collaborators."""

import pytest

from app.core.orchestrator import TurnOrchestrator
from app.database import init_models, make_engine, make_session_maker
from app.services.memory import AsyncFactWriter, MemoryRetrievalClient
from app.services.transcript import TranscriptStore
from app.services.usage import UsageLogger

from tests.fakes import FakeGenerator, RecordingFactGraph

# ─── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture
async def session_maker(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'chats.db'}")
    await init_models(bind=engine)
    yield make_session_maker(engine)
    await engine.dispose()


@pytest.fixture
async def broken_session_maker(tmp_path):
    """Session factory for a database whose tables were never created."""
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    yield make_session_maker(engine)
    await engine.dispose()


@pytest.fixture
def events():
    return []


@pytest.fixture
def fact_graph(events):
    return RecordingFactGraph(events=events)


@pytest.fixture
def generator(events):
    return FakeGenerator(events=events)


@pytest.fixture
def transcripts(session_maker):
    return TranscriptStore(session_maker)


@pytest.fixture
def usage_logger(session_maker):
    return UsageLogger(session_maker)


@pytest.fixture
def make_orchestrator(fact_graph, transcripts, usage_logger):
    def _make(generator, *, graph=None, turn_timeout=30.0, retrieval_timeout=5.0, delivery_grace=5.0, **overrides):
        graph = fact_graph if graph is None else graph
        return TurnOrchestrator(
            generator=generator,
            retrieval=MemoryRetrievalClient(graph, limit=8),
            fact_writer=AsyncFactWriter(graph, window=4),
            transcripts=overrides.get("transcripts", transcripts),
            usage_logger=overrides.get("usage_logger", usage_logger),
            turn_window=2,
            turn_timeout=turn_timeout,
            retrieval_timeout=retrieval_timeout,
            delivery_grace=delivery_grace,
        )

    return _make
