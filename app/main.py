"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.v1.router import api_router
from app.config import Settings, get_settings
from app.core.errors import GenerationFailure, TurnValidationError
from app.core.logging import get_logger, setup_logging
from app.core.middleware import ObservabilityMiddleware
from app.core.orchestrator import TurnOrchestrator
from app.database import async_session_maker, engine, init_models
from app.services.fact_graph import FactGraphStore, build_fact_graph
from app.services.generation import OpenAIGenerator, TextGenerator
from app.services.memory import AsyncFactWriter, MemoryRetrievalClient
from app.services.transcript import TranscriptStore
from app.services.usage import UsageLogger

logger = get_logger(__name__)


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(TurnValidationError)
    async def turn_validation_handler(request: Request, exc: TurnValidationError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=exc.to_dict())

    @app.exception_handler(GenerationFailure)
    async def generation_failure_handler(request: Request, exc: GenerationFailure) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"error": exc.code, "field": None, "detail": str(exc)},
        )


def create_app(
    settings: Settings | None = None,
    *,
    generator: TextGenerator | None = None,
    fact_graph: FactGraphStore | None = None,
    session_maker: async_sessionmaker[AsyncSession] | None = None,
) -> FastAPI:
    """Build the app. Collaborators may be injected (tests, alternative backends)."""
    settings = settings or get_settings()
    setup_logging(settings)

    # Table creation and disposal follow the database the stores actually use
    session_maker = session_maker or async_session_maker
    db_engine = session_maker.kw.get("bind") or engine
    generator = generator or OpenAIGenerator.from_settings(settings)
    fact_graph = fact_graph or build_fact_graph(settings)

    transcripts = TranscriptStore(session_maker, preview_chars=settings.preview_max_chars)
    usage_logger = UsageLogger(session_maker)
    orchestrator = TurnOrchestrator(
        generator=generator,
        retrieval=MemoryRetrievalClient(fact_graph, limit=settings.memory_search_limit),
        fact_writer=AsyncFactWriter(fact_graph, window=settings.fact_write_window),
        transcripts=transcripts,
        usage_logger=usage_logger,
        turn_window=settings.recent_turn_window,
        turn_timeout=settings.turn_timeout_seconds,
        retrieval_timeout=settings.retrieval_timeout_seconds,
        delivery_grace=settings.delivery_grace_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.database_auto_create:
            await init_models(bind=db_engine)
        logger.info("app_started", model=generator.model, fact_graph=settings.fact_graph_backend)
        yield
        await orchestrator.shutdown()
        await db_engine.dispose()
        logger.info("app_stopped")

    app = FastAPI(title="Clinical Chat Turn Service", version="0.1.0", lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.state.transcripts = transcripts
    app.state.usage_logger = usage_logger

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        # Credentials only for an explicit origin list
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ObservabilityMiddleware)
    _register_exception_handlers(app)

    @app.get("/health")
    async def health() -> dict:
        return {"ok": True, "model": generator.model, "fact_graph": settings.fact_graph_backend}

    app.include_router(api_router, prefix="/api/v1")
    return app
