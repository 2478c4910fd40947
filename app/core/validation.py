"""Turn validation — normalizes an inbound chat payload or rejects it.

Runs before any retrieval, generation or logging.  Fields are checked in a
fixed order and the first failure is reported.
"""

from __future__ import annotations

import json

from pydantic import ValidationError

from app.core.errors import InvalidRole, MalformedRequest, MissingField
from app.core.roles import Role
from app.schemas.chat import ChatTurn, UIMessage

_MESSAGE_ROLES = {"user", "assistant"}


def _require_string(body: dict, field: str) -> str:
    value = body.get(field)
    if not isinstance(value, str) or not value.strip():
        raise MissingField(field, "a non-empty string")
    return value


def _parse_messages(raw: object) -> list[UIMessage]:
    if not isinstance(raw, list):
        raise MissingField("messages", "an array")
    messages: list[UIMessage] = []
    for item in raw:
        role = item.get("role") if isinstance(item, dict) else None
        # role may be any JSON value; only strings can name a message role
        if not isinstance(role, str) or role not in _MESSAGE_ROLES:
            raise MissingField("messages", "an array of user/assistant messages")
        try:
            messages.append(UIMessage.model_validate(item))
        except ValidationError as e:
            raise MissingField("messages", "an array of user/assistant messages") from e
    return messages


def validate_turn(raw_body: bytes | str) -> ChatTurn:
    """Parse and validate a raw chat request body.

    Raises:
        MalformedRequest: body is not a JSON object.
        MissingField: messages/chatId/role/patientId absent or mis-shaped.
        InvalidRole: role is not one of the supported roles.
    """
    try:
        body = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
        raise MalformedRequest() from e
    if not isinstance(body, dict):
        raise MalformedRequest()

    messages = _parse_messages(body.get("messages"))
    chat_id = _require_string(body, "chatId")

    role_value = body.get("role")
    if not isinstance(role_value, str) or not role_value:
        raise MissingField("role", "one of " + ", ".join(r.value for r in Role))
    try:
        role = Role(role_value)
    except ValueError as e:
        raise InvalidRole(role_value, [r.value for r in Role]) from e

    patient_id = _require_string(body, "patientId")

    return ChatTurn(
        messages=messages,
        raw_messages=body["messages"],
        chat_id=chat_id,
        role=role,
        patient_id=patient_id,
    )
