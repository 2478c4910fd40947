"""Tests for logging setup and the structlog processors bound to turn context."""

import logging

import structlog

from app.config import Settings
from app.core.logging import (
    _inject_context_vars,
    _redact_clinical_text,
    _renderer,
    bind_turn_context,
    request_id_var,
    setup_logging,
)


class TestSetupLogging:
    def test_level_taken_from_given_settings(self):
        try:
            setup_logging(Settings(log_level="WARNING"))
            assert logging.getLogger().level == logging.WARNING
        finally:
            setup_logging(Settings())
        assert logging.getLogger().level == logging.INFO

    def test_renderer_follows_debug_flag(self):
        assert isinstance(_renderer(True), structlog.dev.ConsoleRenderer)
        assert isinstance(_renderer(False), structlog.processors.JSONRenderer)


class TestContextProcessors:
    def test_turn_context_injected(self):
        request_id_var.set("req-1")
        bind_turn_context("c1", "P1", "nurse")

        event = _inject_context_vars(None, "info", {"event": "turn_prepared"})

        assert event["request_id"] == "req-1"
        assert event["conversation_id"] == "c1"
        assert event["patient_id"] == "P1"
        assert event["role"] == "nurse"
        bind_turn_context(None, None, None)

    def test_explicit_value_not_overwritten(self):
        bind_turn_context("c1", "P1", "nurse")
        event = _inject_context_vars(None, "info", {"event": "x", "conversation_id": "other"})
        assert event["conversation_id"] == "other"
        bind_turn_context(None, None, None)

    def test_clinical_text_redacted_above_debug(self):
        event = _redact_clinical_text(None, "info", {"event": "x", "query": "chest pain", "result_count": 3})
        assert event["query"] == "[redacted]"
        assert event["result_count"] == 3

    def test_debug_lines_keep_text(self):
        event = _redact_clinical_text(None, "debug", {"event": "x", "query": "chest pain"})
        assert event["query"] == "chest pain"
