"""Stable conversation identity derived from the opening user message."""
from __future__ import annotations

import hashlib
from typing import Optional, Sequence

from .typing import Message

IDENTITY_CHARS = 16


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8", errors="replace")).hexdigest()[:IDENTITY_CHARS]


def first_user_message(messages: Sequence[Message]) -> Optional[Message]:
    for m in messages:
        if m.get("role") == "user":
            return m
    return None


def identify(messages: Sequence[Message]) -> str:
    """Return a fixed-width digest identifying the conversation.

    The digest covers only the trimmed content of the first user message, so a
    later capture of the same conversation with more turns resolves to the
    same identity. Without any user message, every ``role:content`` pair is
    hashed instead. Timestamps never contribute.
    """
    first = first_user_message(messages)
    if first is not None:
        return _digest((first.get("content") or "").strip())
    joined = "\n".join(f"{m.get('role', '')}:{(m.get('content') or '').strip()}" for m in messages)
    return _digest(joined)
