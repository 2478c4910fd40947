"""Tests for the turn orchestrator.

Covers:
- Retrieval happens before generation, persistence after delivery
- Recent-turn window and fact-write window
- Stream frames (start / token / done / error)
- Generation failure and timeout
- Caller disconnect still persists the completed turn
- Post-turn writes are independent of each other
"""

import asyncio
import json

import pytest

from app.core.errors import GenerationFailure
from app.core.orchestrator import EVENT_DONE, EVENT_ERROR, EVENT_START, EVENT_TOKEN, format_sse
from app.core.prompt import MEMORY_ERROR_PREFIX, NO_HISTORY_MARKER
from app.core.validation import validate_turn
from app.schemas.chat import ModelTurn
from app.services.transcript import TranscriptStore
from app.services.usage import UsageLogger

from tests.fakes import FakeGenerator, RecordingFactGraph, text_message


def _turn(messages=None, *, chat_id="c1", role="doctor", patient_id="P1"):
    body = {
        "messages": messages or [text_message("user", "Any known allergies?")],
        "chatId": chat_id,
        "role": role,
        "patientId": patient_id,
    }
    return validate_turn(json.dumps(body))


def _parse_frames(frames: list[str]) -> list[tuple[str, str]]:
    parsed = []
    for frame in frames:
        lines = frame.strip().split("\n")
        event = lines[0].removeprefix("event: ")
        data = "\n".join(line.removeprefix("data: ") for line in lines[1:])
        parsed.append((event, data))
    return parsed


async def _collect(frames) -> list[tuple[str, str]]:
    return _parse_frames([frame async for frame in frames])


# ─── SSE format ──────────────────────────────────────────────────────


class TestFormatSSE:
    def test_single_line(self):
        assert format_sse("token", "Hi") == "event: token\ndata: Hi\n\n"

    def test_multi_line(self):
        assert format_sse("token", "a\nb") == "event: token\ndata: a\ndata: b\n\n"


# ─── Happy path ──────────────────────────────────────────────────────


class TestTurnHappyPath:
    async def test_single_message_turn(self, make_orchestrator, generator, fact_graph, transcripts, usage_logger):
        orchestrator = make_orchestrator(generator)
        turn = _turn()

        frames = await _collect(await orchestrator.run_turn(turn))
        await orchestrator.drain()

        events = [event for event, _ in frames]
        assert events == [EVENT_START, EVENT_TOKEN, EVENT_TOKEN, EVENT_DONE]
        start = json.loads(frames[0][1])
        assert start["conversationId"] == "c1"
        assert "".join(data for event, data in frames if event == EVENT_TOKEN) == "Hello there"
        done = json.loads(frames[-1][1])
        assert done["finishReason"] == "stop"
        assert done["usage"]["input_tokens"] == 1000
        assert done["messageId"] == start["messageId"]

        # Window of one message, prompt without history
        system, window = generator.calls[0]
        assert window == [ModelTurn(role="user", content="Any known allergies?")]
        assert NO_HISTORY_MARKER in system
        assert "Current Patient ID (context only): P1" in system

        # Transcript: user message + assistant reply
        stored = await transcripts.get("c1")
        assert len(stored) == 2
        assert stored[1]["role"] == "assistant"
        assert stored[1]["parts"] == [{"type": "text", "text": "Hello there"}]
        assert stored[1]["id"] == start["messageId"]

        # Fact submission tagged with patient, role, conversation
        [submission] = fact_graph.submissions
        assert (submission["patient_id"], submission["role"], submission["conversation_id"]) == ("P1", "doctor", "c1")
        assert [t.content for t in submission["turns"]] == ["Any known allergies?", "Hello there"]

        # Usage record
        [row] = await usage_logger.recent("c1")
        assert row.model == "gpt-4o"
        assert row.cost_total_usd == pytest.approx(0.008)
        assert row.assistant_text == "Hello there"

    async def test_retrieval_before_generation_before_submission(self, make_orchestrator, generator, events):
        orchestrator = make_orchestrator(generator)
        await _collect(await orchestrator.run_turn(_turn()))
        await orchestrator.drain()
        assert events == ["search", "generate", "submit"]

    async def test_window_is_last_two_messages(self, make_orchestrator, generator):
        messages = [
            text_message("user", "first"),
            text_message("assistant", "second"),
            text_message("user", "third"),
        ]
        orchestrator = make_orchestrator(generator)
        await _collect(await orchestrator.run_turn(_turn(messages)))
        await orchestrator.drain()

        _, window = generator.calls[0]
        assert [t.content for t in window] == ["second", "third"]

    async def test_fact_window_is_last_four(self, make_orchestrator, generator, fact_graph):
        messages = [text_message("user" if i % 2 == 0 else "assistant", f"m{i}") for i in range(5)]
        orchestrator = make_orchestrator(generator)
        await _collect(await orchestrator.run_turn(_turn(messages)))
        await orchestrator.drain()

        [submission] = fact_graph.submissions
        assert [t.content for t in submission["turns"]] == ["m2", "m3", "m4", "Hello there"]

    async def test_retrieved_facts_reach_prompt(self, make_orchestrator, generator, fact_graph):
        await fact_graph.submit(
            [ModelTurn(role="user", content="Known allergies: penicillin")],
            patient_id="P1",
            role="doctor",
            conversation_id="old",
        )
        orchestrator = make_orchestrator(generator)
        await _collect(await orchestrator.run_turn(_turn()))
        await orchestrator.drain()

        system, _ = generator.calls[0]
        assert "- user: Known allergies: penicillin" in system

    async def test_receptionist_does_not_see_doctor_facts(self, make_orchestrator, generator, fact_graph):
        await fact_graph.submit(
            [ModelTurn(role="user", content="Known allergies: penicillin")],
            patient_id="P1",
            role="doctor",
            conversation_id="old",
        )
        orchestrator = make_orchestrator(generator)
        await _collect(await orchestrator.run_turn(_turn(role="receptionist")))
        await orchestrator.drain()

        system, _ = generator.calls[0]
        assert "penicillin" not in system
        assert NO_HISTORY_MARKER in system


# ─── Ordering and delivery ───────────────────────────────────────────


class TestDelivery:
    async def test_nothing_persisted_before_reply_is_consumed(self, make_orchestrator, generator, transcripts):
        orchestrator = make_orchestrator(generator)
        frames = await orchestrator.run_turn(_turn())

        await asyncio.sleep(0.05)
        assert await transcripts.get("c1") == []

        await _collect(frames)
        await orchestrator.drain()
        assert len(await transcripts.get("c1")) == 2

    async def test_disconnect_still_persists(self, make_orchestrator, transcripts, usage_logger):
        generator = FakeGenerator(chunks=["a", "b", "c"], delay=0.01)
        orchestrator = make_orchestrator(generator)
        frames = await orchestrator.run_turn(_turn())

        first = await frames.__anext__()
        assert first.startswith(f"event: {EVENT_START}")
        await frames.aclose()

        await orchestrator.drain()
        stored = await transcripts.get("c1")
        assert stored[-1]["parts"][0]["text"] == "abc"
        assert len(await usage_logger.recent("c1")) == 1

    async def test_unconsumed_stream_persists_after_grace(self, make_orchestrator, generator, transcripts):
        orchestrator = make_orchestrator(generator, delivery_grace=0.05)
        await orchestrator.run_turn(_turn())

        await orchestrator.drain()
        assert len(await transcripts.get("c1")) == 2


# ─── Failures ────────────────────────────────────────────────────────


class TestFailures:
    async def test_generation_failure_before_output_raises(self, make_orchestrator, fact_graph, transcripts, usage_logger):
        orchestrator = make_orchestrator(FakeGenerator(fail_at=0))

        with pytest.raises(GenerationFailure) as exc_info:
            await orchestrator.run_turn(_turn())
        assert exc_info.value.code == "generation_failed"

        await orchestrator.drain()
        assert await transcripts.get("c1") == []
        assert fact_graph.submissions == []
        assert await usage_logger.recent("c1") == []

    async def test_failure_mid_stream_emits_error_frame(self, make_orchestrator, transcripts, fact_graph):
        orchestrator = make_orchestrator(FakeGenerator(chunks=["partial", "never"], fail_at=1))

        frames = await _collect(await orchestrator.run_turn(_turn()))
        await orchestrator.drain()

        assert [event for event, _ in frames] == [EVENT_START, EVENT_TOKEN, EVENT_ERROR]
        error = json.loads(frames[-1][1])
        assert error["code"] == "generation_failed"
        assert await transcripts.get("c1") == []
        assert fact_graph.submissions == []

    async def test_timeout(self, make_orchestrator, transcripts):
        orchestrator = make_orchestrator(FakeGenerator(delay=0.5), turn_timeout=0.05)

        with pytest.raises(GenerationFailure) as exc_info:
            await orchestrator.run_turn(_turn())
        assert exc_info.value.code == "generation_timeout"

        await orchestrator.drain()
        assert await transcripts.get("c1") == []

    async def test_hanging_search_degrades_within_retrieval_budget(self, make_orchestrator, generator, transcripts):
        graph = RecordingFactGraph(search_delay=3600)
        orchestrator = make_orchestrator(generator, graph=graph, turn_timeout=5.0, retrieval_timeout=0.05)

        frames = await asyncio.wait_for(_collect(await orchestrator.run_turn(_turn())), timeout=2.0)
        await orchestrator.drain()

        system, _ = generator.calls[0]
        assert MEMORY_ERROR_PREFIX in system
        assert "exceeded" in system
        assert frames[-1][0] == EVENT_DONE
        assert len(await transcripts.get("c1")) == 2

    async def test_hanging_search_counts_against_turn_budget(self, make_orchestrator, transcripts):
        graph = RecordingFactGraph(search_delay=3600)
        orchestrator = make_orchestrator(FakeGenerator(delay=0.05), graph=graph, turn_timeout=0.1)

        with pytest.raises(GenerationFailure) as exc_info:
            await asyncio.wait_for(orchestrator.run_turn(_turn()), timeout=2.0)
        assert exc_info.value.code == "generation_timeout"

        await orchestrator.drain()
        assert await transcripts.get("c1") == []

    async def test_retrieval_failure_degrades_prompt(self, make_orchestrator, generator, transcripts):
        graph = RecordingFactGraph(fail_search=True)
        orchestrator = make_orchestrator(generator, graph=graph)

        frames = await _collect(await orchestrator.run_turn(_turn()))
        await orchestrator.drain()

        system, _ = generator.calls[0]
        assert f"{MEMORY_ERROR_PREFIX} neo4j unreachable" in system
        assert frames[-1][0] == EVENT_DONE
        assert len(await transcripts.get("c1")) == 2

    async def test_fact_write_failure_does_not_block_other_writes(
        self, make_orchestrator, generator, transcripts, usage_logger
    ):
        graph = RecordingFactGraph(fail_submit=True)
        orchestrator = make_orchestrator(generator, graph=graph)

        await _collect(await orchestrator.run_turn(_turn()))
        await orchestrator.drain()

        assert len(graph.submissions) == 1
        assert len(await transcripts.get("c1")) == 2
        assert len(await usage_logger.recent("c1")) == 1

    async def test_transcript_failure_does_not_block_other_writes(
        self, make_orchestrator, generator, fact_graph, usage_logger, broken_session_maker
    ):
        orchestrator = make_orchestrator(generator, transcripts=TranscriptStore(broken_session_maker))

        frames = await _collect(await orchestrator.run_turn(_turn()))
        await orchestrator.drain()

        assert frames[-1][0] == EVENT_DONE
        assert len(fact_graph.submissions) == 1
        assert len(await usage_logger.recent("c1")) == 1

    async def test_usage_failure_does_not_block_other_writes(
        self, make_orchestrator, generator, fact_graph, transcripts, broken_session_maker
    ):
        orchestrator = make_orchestrator(generator, usage_logger=UsageLogger(broken_session_maker))

        await _collect(await orchestrator.run_turn(_turn()))
        await orchestrator.drain()

        assert len(fact_graph.submissions) == 1
        assert len(await transcripts.get("c1")) == 2


# ─── Turns without user text ─────────────────────────────────────────


class TestNoUserText:
    async def test_skips_search_and_submission(self, make_orchestrator, generator, fact_graph, transcripts):
        message = {"id": "m1", "role": "user", "parts": [{"type": "file", "url": "scan.pdf"}]}
        orchestrator = make_orchestrator(generator)

        await _collect(await orchestrator.run_turn(_turn([message])))
        await orchestrator.drain()

        assert fact_graph.searches == []
        assert fact_graph.submissions == []
        assert len(await transcripts.get("c1")) == 2

    async def test_opaque_part_with_structured_text_kept_verbatim(
        self, make_orchestrator, generator, fact_graph, transcripts
    ):
        vitals = {"type": "data-vitals", "text": {"bp": "120/80", "hr": 72}}
        message = {"id": "m1", "role": "user", "parts": [{"type": "text", "text": "Latest vitals?"}, vitals]}
        orchestrator = make_orchestrator(generator)

        await _collect(await orchestrator.run_turn(_turn([message])))
        await orchestrator.drain()

        assert fact_graph.searches[0]["query"] == "Latest vitals?"
        stored = await transcripts.get("c1")
        assert stored[0]["parts"][1] == vitals
