from __future__ import annotations
from typing import Any, Dict, Literal, TypedDict, NotRequired

Role = Literal["user", "assistant"]


class Message(TypedDict):
    """A single role-tagged conversation message."""

    role: Role           # "user" | "assistant"
    content: str         # trimmed, never empty
    timestamp: str       # ISO-8601 timestamp

    # Optional metadata carried over from structured inputs
    metadata: NotRequired[Dict[str, Any]]
