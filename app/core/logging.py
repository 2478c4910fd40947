"""Structured logging setup using structlog.

Configures structlog to:
- Output JSON in production, pretty console in dev
- Bind context vars (request_id, conversation_id, patient_id, role) to every log line
- Keep clinical free text (queries, message bodies) out of non-debug lines
- Integrate with stdlib logging so existing loggers get structured output
"""

import logging
import sys
from contextvars import ContextVar

import structlog

from app.config import Settings, get_settings

# ── Context variables (bound per-request/per-turn) ───────────────────

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
conversation_id_var: ContextVar[str | None] = ContextVar("conversation_id", default=None)
patient_id_var: ContextVar[str | None] = ContextVar("patient_id", default=None)
role_var: ContextVar[str | None] = ContextVar("role", default=None)


def _inject_context_vars(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    """Structlog processor that injects context vars into every log entry."""
    for var, key in [
        (request_id_var, "request_id"),
        (conversation_id_var, "conversation_id"),
        (patient_id_var, "patient_id"),
        (role_var, "role"),
    ]:
        val = var.get(None)
        if val is not None and key not in event_dict:
            event_dict[key] = val
    return event_dict


# Keys that may carry patient free text
_CLINICAL_TEXT_KEYS = frozenset({"query", "text", "content", "messages", "last_user_text", "assistant_text"})


def _redact_clinical_text(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    """Structlog processor that masks clinical free text outside debug lines."""
    if method_name == "debug":
        return event_dict
    for key in _CLINICAL_TEXT_KEYS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def bind_turn_context(
    conversation_id: str | None,
    patient_id: str | None,
    role: str | None,
) -> None:
    """Bind the identity of the turn being processed to the current context."""
    conversation_id_var.set(conversation_id)
    patient_id_var.set(patient_id)
    role_var.set(role)


def _renderer(debug: bool) -> structlog.types.Processor:
    return structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer()


def setup_logging(settings: Settings | None = None) -> None:
    """Configure structlog + stdlib logging. Call once at app startup."""
    settings = settings or get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    # Shared processors
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _inject_context_vars,
        _redact_clinical_text,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer = _renderer(settings.debug)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Configure stdlib root logger to use structlog formatter
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    # Reduce noise from third-party libs
    for noisy in ("httpx", "httpcore", "openai", "neo4j", "uvicorn.access", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger instance."""
    return structlog.get_logger(name)
