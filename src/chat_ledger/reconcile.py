"""Decide how a fresh capture relates to a stored conversation.

Checks run in a fixed order; a looser check must never run before a stricter
one, otherwise it would mask the edited-opening case:

1. nothing stored                         -> CreateNew
2. stored messages are a prefix           -> Append(tail)
3. only the opening message differs       -> Replace(incoming)
4. last N stored == first N incoming      -> Append(rest)   (N <= lenient_window)
5. otherwise                              -> Unrelated
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, ClassVar, List, Optional, Sequence, Union

from .typing import Message

DEFAULT_LENIENT_WINDOW = 3

_HSPACE = re.compile(r"[^\S\n]+")
_NEWLINES = re.compile(r" ?\n\s*")


# -----------------------------
# Plans
# -----------------------------
@dataclass(frozen=True)
class CreateNew:
    """No stored conversation; persist ``messages`` under a fresh reference."""
    messages: List[Message] = field(default_factory=list)
    kind: ClassVar[str] = "create"


@dataclass(frozen=True)
class Append:
    """Stored conversation continues; add ``tail`` to it (empty tail = no-op)."""
    tail: List[Message] = field(default_factory=list)
    kind: ClassVar[str] = "append"

    @property
    def is_noop(self) -> bool:
        return not self.tail


@dataclass(frozen=True)
class Replace:
    """Opening message was edited; overwrite the stored content, keep its reference."""
    messages: List[Message] = field(default_factory=list)
    kind: ClassVar[str] = "replace"


@dataclass(frozen=True)
class Unrelated:
    """Capture does not continue the stored conversation; caller picks the policy."""
    messages: List[Message] = field(default_factory=list)
    kind: ClassVar[str] = "unrelated"


Plan = Union[CreateNew, Append, Replace, Unrelated]


# -----------------------------
# Comparison
# -----------------------------
def normalize_content(text: Any) -> str:
    """Collapse whitespace runs and blank lines so formatting-only edits compare equal."""
    if not isinstance(text, str):
        text = "" if text is None else str(text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _HSPACE.sub(" ", text)
    text = _NEWLINES.sub("\n", text)
    return text.strip()


def messages_match(a: Message, b: Message) -> bool:
    return a.get("role") == b.get("role") and normalize_content(a.get("content")) == normalize_content(
        b.get("content")
    )


def _all_match(left: Sequence[Message], right: Sequence[Message]) -> bool:
    return len(left) == len(right) and all(messages_match(x, y) for x, y in zip(left, right))


def is_continuation(existing: Sequence[Message], incoming: Sequence[Message]) -> bool:
    """True when every stored message reappears, in order, at the start of ``incoming``."""
    return len(incoming) >= len(existing) and _all_match(existing, incoming[: len(existing)])


def is_edited_opening(existing: Sequence[Message], incoming: Sequence[Message]) -> bool:
    """True when only the first message differs over the overlapping length."""
    if not existing or not incoming:
        return False
    first_old, first_new = existing[0], incoming[0]
    if first_old.get("role") != first_new.get("role"):
        return False
    if normalize_content(first_old.get("content")) == normalize_content(first_new.get("content")):
        return False
    overlap = min(len(existing), len(incoming))
    return _all_match(existing[1:overlap], incoming[1:overlap])


def suffix_overlap(
    existing: Sequence[Message],
    incoming: Sequence[Message],
    window: int = DEFAULT_LENIENT_WINDOW,
) -> int:
    """Width of the tail/head overlap accepted by the lenient check (0 if none)."""
    width = min(window, len(existing), len(incoming))
    if width <= 0:
        return 0
    if _all_match(existing[len(existing) - width:], incoming[:width]):
        return width
    return 0


# -----------------------------
# Decision
# -----------------------------
def reconcile(
    existing: Optional[Sequence[Message]],
    incoming: Sequence[Message],
    *,
    lenient_window: int = DEFAULT_LENIENT_WINDOW,
) -> Plan:
    """Classify ``incoming`` against ``existing`` and return the write plan."""
    incoming = list(incoming)
    if not existing:
        return CreateNew(incoming)

    if is_continuation(existing, incoming):
        return Append(incoming[len(existing):])

    if is_edited_opening(existing, incoming):
        return Replace(incoming)

    width = suffix_overlap(existing, incoming, lenient_window)
    if width:
        return Append(incoming[width:])

    return Unrelated(incoming)
