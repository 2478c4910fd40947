"""Prompt assembly — role policy + patient echo + memory section + guardrails.

The memory section is exactly one of: a bullet list of retrieved facts, a
"no history" marker, or a "memory system error" marker.  Assembly never
raises; a failed retrieval degrades to the error marker.
"""

from __future__ import annotations

from app.core.roles import RolePolicy, render_constraint
from app.services.memory import RetrievalResult, RetrievalStatus

NO_HISTORY_MARKER = "No previous patient history found in graph memory."
MEMORY_ERROR_PREFIX = "Memory System Error:"

_GUARDRAILS = """Important:
- Use the memories above as historical context for this patient.
- Do NOT hallucinate facts that are not supported by the memories or the current message.
- If something is unclear or missing, explicitly say what additional information you would need."""


def render_memory_section(retrieval: RetrievalResult) -> str:
    if retrieval.status is RetrievalStatus.FAILED:
        return (
            f"{MEMORY_ERROR_PREFIX} {retrieval.error or 'unknown error'}\n"
            "Proceeding without historical context."
        )
    if retrieval.status is RetrievalStatus.FOUND and retrieval.facts:
        snippets = "\n".join(f"- {fact.memory}" for fact in retrieval.facts)
        return f"Patient History (from graph memory):\n{snippets}"
    return NO_HISTORY_MARKER


def assemble_system_prompt(
    policy: RolePolicy,
    *,
    patient_id: str,
    retrieval: RetrievalResult,
) -> str:
    """Build the system instruction for one generation call."""
    instruction = policy.instruction
    constraint = render_constraint(policy.constraint)
    if constraint:
        instruction = f"{instruction}\n{constraint}"

    return (
        f"{instruction}\n\n"
        f"Current Patient ID (context only): {patient_id}\n"
        f"Agent role: {policy.role.value}\n\n"
        f"{render_memory_section(retrieval)}\n\n"
        f"{_GUARDRAILS}"
    )
