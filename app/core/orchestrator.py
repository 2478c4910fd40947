"""Turn orchestrator — retrieval, prompt, streamed generation, post-turn writes.

Flow for one turn:
1. Select the role policy and retrieve scoped facts (before generation)
2. Assemble the system prompt
3. Start generation in a server-owned task feeding a queue
4. Relay queued chunks to the caller as SSE frames
5. After the reply is delivered (or the caller is gone), dispatch the
   transcript upsert, fact submission and usage record as independent
   background tasks

The generation task is not tied to the HTTP response: if the caller
disconnects mid-stream, the turn still completes and is persisted.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterator, Coroutine
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from app.core.errors import GenerationFailure, TranscriptWriteFailure
from app.core.logging import get_logger
from app.core.pricing import calculate_cost
from app.core.prompt import assemble_system_prompt
from app.core.roles import select_policy
from app.schemas.chat import ChatTurn, ModelTurn, UIMessage, to_model_turns
from app.schemas.usage import TokenUsage, TurnUsageCreate
from app.services.generation import GenerationChunk, TextGenerator
from app.services.memory import (
    AsyncFactWriter,
    MemoryRetrievalClient,
    RetrievalResult,
    RetrievalStatus,
)
from app.services.transcript import TranscriptStore
from app.services.usage import UsageLogger

logger = get_logger(__name__)

# ── Stream event types ───────────────────────────────────────────────

EVENT_START = "start"    # message/conversation ids
EVENT_TOKEN = "token"    # text delta
EVENT_DONE = "done"      # finish reason + usage
EVENT_ERROR = "error"    # generation failed / timed out

_END = object()


def format_sse(event: str, data: str) -> str:
    """Format SSE message with multi-line support."""
    lines = data.split("\n")
    data_lines = "\n".join(f"data: {line}" for line in lines)
    return f"event: {event}\n{data_lines}\n\n"


@dataclass
class PreparedTurn:
    """Everything decided before generation starts."""

    system_prompt: str
    window: list[ModelTurn]
    retrieval: RetrievalResult
    last_user_text: str | None
    started_at: float
    deadline: float  # loop time at which the whole turn budget runs out


@dataclass
class _TurnState:
    turn: ChatTurn
    prepared: PreparedTurn
    message_id: str
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    delivered: asyncio.Event = field(default_factory=asyncio.Event)
    text_parts: list[str] = field(default_factory=list)
    final: GenerationChunk | None = None

    @property
    def assistant_text(self) -> str:
        return "".join(self.text_parts)

    def assistant_message(self) -> dict:
        return {
            "id": self.message_id,
            "role": "assistant",
            "parts": [{"type": "text", "text": self.assistant_text}],
        }


class TurnOrchestrator:
    """Drives one turn end to end. One instance is shared by all requests."""

    def __init__(
        self,
        *,
        generator: TextGenerator,
        retrieval: MemoryRetrievalClient,
        fact_writer: AsyncFactWriter,
        transcripts: TranscriptStore,
        usage_logger: UsageLogger,
        turn_window: int = 2,
        turn_timeout: float = 30.0,
        retrieval_timeout: float = 5.0,
        delivery_grace: float = 5.0,
    ) -> None:
        self._generator = generator
        self._retrieval = retrieval
        self._fact_writer = fact_writer
        self._transcripts = transcripts
        self._usage_logger = usage_logger
        self._turn_window = turn_window
        self._turn_timeout = turn_timeout
        self._retrieval_timeout = retrieval_timeout
        self._delivery_grace = delivery_grace
        self._tasks: set[asyncio.Task] = set()

    # ── Before generation ───────────────────────────────────────

    async def prepare(self, turn: ChatTurn, *, started_at: float | None = None) -> PreparedTurn:
        """Retrieve scoped facts and build the prompt. Never raises on retrieval failure.

        The turn budget starts here: the search is bounded by
        ``retrieval_timeout`` (never past the turn deadline) and generation
        gets whatever remains.
        """
        started_at = started_at if started_at is not None else time.perf_counter()
        deadline = asyncio.get_running_loop().time() + self._turn_timeout
        policy = select_policy(turn.role)
        last_user_text = turn.last_user_text()

        search_budget = min(self._retrieval_timeout, self._turn_timeout)
        try:
            async with asyncio.timeout(search_budget):
                retrieval = await self._retrieval.retrieve(
                    last_user_text,
                    patient_id=turn.patient_id,
                    role=turn.role.value,
                )
        except TimeoutError:
            logger.warning("memory_search_timeout", timeout_seconds=search_budget)
            retrieval = RetrievalResult(
                status=RetrievalStatus.FAILED,
                error=f"fact graph search exceeded {search_budget:g}s",
            )

        system_prompt = assemble_system_prompt(
            policy,
            patient_id=turn.patient_id,
            retrieval=retrieval,
        )
        window = to_model_turns(turn.messages[-self._turn_window:]) if self._turn_window else []

        logger.info(
            "turn_prepared",
            memory_status=retrieval.status.value,
            fact_count=len(retrieval.facts),
            window_size=len(window),
        )
        return PreparedTurn(
            system_prompt=system_prompt,
            window=window,
            retrieval=retrieval,
            last_user_text=last_user_text,
            started_at=started_at,
            deadline=deadline,
        )

    # ── Generation ──────────────────────────────────────────────

    async def start(self, turn: ChatTurn, prepared: PreparedTurn) -> AsyncIterator[str]:
        """Start generation and return the SSE frame iterator.

        Waits for the first generated item so that a generation service that
        fails before producing anything is reported as a plain failed request.

        Raises:
            GenerationFailure: generation failed before any output was produced.
        """
        state = _TurnState(turn=turn, prepared=prepared, message_id=uuid4().hex)
        self._spawn(self._produce(state), name=f"generate:{turn.chat_id}")

        first = await state.queue.get()
        if first is not _END and first[0] == EVENT_ERROR:
            state.delivered.set()
            raise GenerationFailure(first[1]["message"], code=first[1]["code"])

        return self._relay(state, first)

    async def run_turn(self, turn: ChatTurn) -> AsyncIterator[str]:
        """Prepare and start a turn (convenience for callers without a split)."""
        prepared = await self.prepare(turn)
        return await self.start(turn, prepared)

    async def _produce(self, state: _TurnState) -> None:
        prepared = state.prepared
        queue = state.queue
        error: tuple[str, str] | None = None
        try:
            async with asyncio.timeout_at(prepared.deadline):
                async for chunk in self._generator.stream(prepared.system_prompt, prepared.window):
                    if chunk.done:
                        state.final = chunk
                    elif chunk.text:
                        state.text_parts.append(chunk.text)
                        queue.put_nowait((EVENT_TOKEN, chunk.text))
        except TimeoutError:
            logger.warning("generation_timeout", timeout_seconds=self._turn_timeout)
            error = ("generation_timeout", f"Turn exceeded {self._turn_timeout:g}s")
        except GenerationFailure as e:
            logger.error("generation_failed", error=str(e))
            error = (e.code, str(e))
        except Exception as e:
            logger.exception("generation_crashed", error=str(e))
            error = ("generation_failed", str(e))

        if error is not None:
            queue.put_nowait((EVENT_ERROR, {"code": error[0], "message": error[1]}))
            queue.put_nowait(_END)
            return

        final = state.final or GenerationChunk(done=True, finish_reason="stop")
        queue.put_nowait(
            (
                EVENT_DONE,
                {
                    "messageId": state.message_id,
                    "finishReason": final.finish_reason,
                    "usage": final.usage.model_dump(exclude_none=True),
                },
            )
        )
        queue.put_nowait(_END)

        # Persist only once the reply has been flushed (or the caller left)
        try:
            await asyncio.wait_for(state.delivered.wait(), timeout=self._delivery_grace)
        except TimeoutError:
            logger.info("turn_delivery_unconfirmed", grace_seconds=self._delivery_grace)

        self._after_completion(state, final)

    async def _relay(self, state: _TurnState, first: Any) -> AsyncIterator[str]:
        try:
            yield format_sse(
                EVENT_START,
                json.dumps({"messageId": state.message_id, "conversationId": state.turn.chat_id}),
            )
            item = first
            while item is not _END:
                event, data = item
                yield format_sse(event, data if isinstance(data, str) else json.dumps(data))
                item = await state.queue.get()
        finally:
            state.delivered.set()

    # ── After generation ────────────────────────────────────────

    def _after_completion(self, state: _TurnState, final: GenerationChunk) -> None:
        """Dispatch the three post-turn writes. Called exactly once per successful turn."""
        turn = state.turn
        assistant_message = state.assistant_message()
        full_messages = [*turn.raw_messages, assistant_message]
        latency_ms = int((time.perf_counter() - state.prepared.started_at) * 1000)

        logger.info(
            "turn_completed",
            latency_ms=latency_ms,
            finish_reason=final.finish_reason,
            response_len=len(state.assistant_text),
        )

        self._spawn(
            self._save_transcript(turn, full_messages),
            name=f"transcript:{turn.chat_id}",
        )
        if state.prepared.last_user_text:
            self._spawn(
                self._fact_writer.submit(
                    [*turn.messages, UIMessage.model_validate(assistant_message)],
                    patient_id=turn.patient_id,
                    role=turn.role.value,
                    conversation_id=turn.chat_id,
                ),
                name=f"facts:{turn.chat_id}",
            )
        self._spawn(
            self._usage_logger.record(
                self._usage_entry(state, final.usage, final.finish_reason, latency_ms)
            ),
            name=f"usage:{turn.chat_id}",
        )

    async def _save_transcript(self, turn: ChatTurn, messages: list[dict]) -> None:
        try:
            await self._transcripts.upsert(
                turn.chat_id,
                messages,
                role=turn.role.value,
                patient_id=turn.patient_id,
            )
        except TranscriptWriteFailure as e:
            logger.error("transcript_write_failed", error=str(e))

    def _usage_entry(
        self,
        state: _TurnState,
        usage: TokenUsage,
        finish_reason: str | None,
        latency_ms: int,
    ) -> TurnUsageCreate:
        model = self._generator.model
        return TurnUsageCreate(
            model=model,
            latency_ms=latency_ms,
            finish_reason=finish_reason,
            role=state.turn.role.value,
            patient_id=state.turn.patient_id,
            conversation_id=state.turn.chat_id,
            last_user_text=state.prepared.last_user_text,
            assistant_text=state.assistant_text,
            usage=usage,
            cost_usd=calculate_cost(model, usage.input_tokens, usage.output_tokens),
        )

    # ── Background tasks ────────────────────────────────────────

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task:
        task = asyncio.create_task(self._guard(coro, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @staticmethod
    async def _guard(coro: Coroutine[Any, Any, Any], name: str) -> None:
        """Task boundary: errors are logged, never propagated."""
        try:
            await coro
        except asyncio.CancelledError:
            logger.warning("background_task_cancelled", task=name)
            raise
        except Exception as e:
            logger.exception("background_task_failed", task=name, error=str(e))

    async def drain(self) -> None:
        """Wait until every in-flight generation and post-turn write has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: float = 10.0) -> None:
        try:
            await asyncio.wait_for(self.drain(), timeout=timeout)
        except TimeoutError:
            pending = list(self._tasks)
            logger.warning("shutdown_cancelling_tasks", pending=len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
