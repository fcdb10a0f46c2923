from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Literal, cast

Role = Literal["user", "assistant"]

ROLES: frozenset[str] = frozenset({"user", "assistant"})


@dataclass(frozen=True)
class Turn:
    role: Role
    content: str

    @classmethod
    def user(cls, content: str) -> Turn:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str) -> Turn:
        return cls(role="assistant", content=content)


def serialize_turn(turn: Turn) -> str:
    """Return the canonical stored form of a turn.

    The stored form is what the character budget is charged for, so the JSON
    envelope counts against it as well as the content.
    """
    return json.dumps(
        {"role": turn.role, "content": turn.content},
        ensure_ascii=False,
        separators=(",", ":"),
    )


def parse_turn(raw: str | bytes) -> Turn:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")

    payload = json.loads(raw)
    if not isinstance(payload, dict):
        raise ValueError("Stored turn is not an object")

    role = payload.get("role")
    content = payload.get("content")
    if role not in ROLES:
        raise ValueError(f"Stored turn has unknown role {role!r}")
    if not isinstance(content, str):
        raise ValueError("Stored turn has no text content")

    return Turn(role=cast(Role, role), content=content)


def serialized_length(turn: Turn) -> int:
    return len(serialize_turn(turn))
