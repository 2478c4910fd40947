"""Error taxonomy for the turn pipeline.

Client input errors (``TurnValidationError`` subclasses) are raised before any
external call and rendered as a 400 response.  ``RetrievalUnavailable``
degrades the prompt.  ``GenerationFailure`` is fatal to the turn.  The three
write failures are raised by their stores and caught at the background task
boundary.
"""

from __future__ import annotations

# ── Client input errors ─────────────────────────────────────────────


class TurnValidationError(Exception):
    """Base class for rejected inbound turns."""

    code: str = "invalid_request"

    def __init__(self, detail: str, field: str | None = None) -> None:
        self.detail = detail
        self.field = field
        super().__init__(detail)

    def to_dict(self) -> dict:
        return {"error": self.code, "field": self.field, "detail": self.detail}


class MalformedRequest(TurnValidationError):
    """Raised when the request body is not a JSON object."""

    code = "malformed_request"

    def __init__(self, detail: str = "Invalid request body: must be valid JSON") -> None:
        super().__init__(detail)


class MissingField(TurnValidationError):
    """Raised when a required field is absent or has the wrong shape."""

    code = "missing_field"

    def __init__(self, field: str, expected: str) -> None:
        super().__init__(
            f"Missing or invalid '{field}' field (must be {expected})",
            field=field,
        )


class InvalidRole(TurnValidationError):
    """Raised when the role tag is not one of the supported roles."""

    code = "invalid_role"

    def __init__(self, role: str, allowed: list[str]) -> None:
        self.role = role
        super().__init__(
            f"Invalid 'role' field {role!r} (must be {', '.join(allowed)})",
            field="role",
        )


# ── Collaborator errors ─────────────────────────────────────────────


class RetrievalUnavailable(Exception):
    """Raised when the fact-graph store cannot be searched."""


class GenerationFailure(Exception):
    """Raised when the generation service fails or exceeds the turn budget."""

    def __init__(self, message: str, code: str = "generation_failed") -> None:
        self.code = code
        super().__init__(message)


class TranscriptWriteFailure(Exception):
    """Raised when a conversation cannot be persisted."""


class FactWriteUnavailable(Exception):
    """Raised when turns cannot be submitted to the fact-graph store."""


class LogWriteFailure(Exception):
    """Raised when a usage record cannot be appended."""


class ConfigurationError(Exception):
    """Raised at startup when a collaborator is missing required settings."""

    def __init__(self, component: str, missing: list[str]) -> None:
        self.component = component
        self.missing = missing
        super().__init__(
            f"Missing required settings for {component}: {', '.join(missing)}"
        )
