"""Role policies — fixed instruction template per clinical-staff role.

Roles form a closed set.  ``select_policy`` dispatches exhaustively so the
administrative redirect constraint cannot be dropped by a lookup miss.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import assert_never

# ── Enums ────────────────────────────────────────────────────────────


class Role(StrEnum):
    """Clinical-staff persona for a conversation."""

    DOCTOR = "doctor"
    NURSE = "nurse"
    RECEPTIONIST = "receptionist"


class DisclosureConstraint(StrEnum):
    """What the assistant may disclose to the role."""

    CLINICAL = "clinical"                    # diagnostic / treatment detail allowed
    OPERATIONAL = "operational"              # nursing practice, no diagnosis beyond the ask
    REDIRECT_MEDICAL = "redirect_medical"    # medical questions must be redirected


REDIRECT_PHRASE = "Please ask a doctor or nurse."


@dataclass(frozen=True)
class RolePolicy:
    role: Role
    instruction: str
    constraint: DisclosureConstraint


# ── Templates ────────────────────────────────────────────────────────

_DOCTOR_INSTRUCTION = """You are an AI assistant for medical doctors.
Provide only what is asked.
Give factual, medically accurate, concise answers.
If asked for diagnosis, tests, medications, or reasoning, provide them clearly.
Do not add extra explanations, disclaimers, or suggestions unless explicitly requested.
If information is missing, state exactly what is needed.
Never include unnecessary text."""

_NURSE_INSTRUCTION = """You are an AI assistant for hospital nurses.
Answer only the exact question asked.
Provide concise, practical, clinical nursing information such as medication timing, monitoring steps, wound care, safety alerts, or shift tasks.
Do not add extra explanation or suggestions unless explicitly requested.
If information is incomplete, state what is missing.
No unnecessary details."""

_RECEPTIONIST_INSTRUCTION = """You are an AI assistant for hospital receptionists.
Answer only what is asked.
Provide short, accurate information about appointments, billing, insurance, scheduling, forms, or hospital processes.
No extra details or suggestions."""


def select_policy(role: Role) -> RolePolicy:
    """Return the instruction template and disclosure constraint for a role."""
    match role:
        case Role.DOCTOR:
            return RolePolicy(role, _DOCTOR_INSTRUCTION, DisclosureConstraint.CLINICAL)
        case Role.NURSE:
            return RolePolicy(role, _NURSE_INSTRUCTION, DisclosureConstraint.OPERATIONAL)
        case Role.RECEPTIONIST:
            return RolePolicy(
                role,
                _RECEPTIONIST_INSTRUCTION,
                DisclosureConstraint.REDIRECT_MEDICAL,
            )
        case _:
            assert_never(role)


def render_constraint(constraint: DisclosureConstraint) -> str | None:
    """Render the hard rule the prompt must carry for a constraint, if any."""
    if constraint is DisclosureConstraint.REDIRECT_MEDICAL:
        return (
            "Do not give any medical advice.\n"
            f'If the question is medical, redirect by saying: "{REDIRECT_PHRASE}"'
        )
    return None
