"""Split a raw chat transcript dump into ordered, role-tagged messages.

The input is whatever text a user copied or exported from a chat panel, so
nothing about its shape is guaranteed. Parsing is an ordered cascade of
strategies, each more lenient than the previous one:

0. JSON array of ``{role, content}`` objects
1. ``**User**`` / ``**Assistant**`` marker lines (Cursor-style exports)
2. ``---`` separated blocks opening with a role heading
3. ``User:`` / ``Assistant:`` colon prefixes
4. ``>`` quoted paragraphs (user) between plain paragraphs (assistant)
5. line-by-line linguistic cues
6. the whole text as a single user message

The first strategy that yields at least one message wins. :func:`segment`
never raises.
"""
from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

from .typing import Message, Role

logger = logging.getLogger(__name__)

# (normalized text, default timestamp) -> messages or None
Strategy = Callable[[str, str], Optional[List[Message]]]


# -----------------------------
# Role vocabulary
# -----------------------------
USER_WORDS = ("user", "you", "human")
ASSISTANT_WORDS = ("assistant", "cursor", "ai", "claude", "gpt", "chatgpt")

_MARKER_ROLES = r"User|Cursor|Assistant"
_BLOCK_ROLES = r"User|You|Human|Cursor|Assistant|AI"
_COLON_USER = r"(?:You|User|Human)"
_COLON_ASSISTANT = r"(?:Assistant|AI|Cursor|Claude|ChatGPT|GPT)"
_COLON_ANY = r"(?:You|User|Human|Assistant|AI|Cursor|Claude|ChatGPT|GPT)"

_ISO_TS = r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?"
ISO_TIMESTAMP = re.compile(_ISO_TS)

_MARKER_LINE = re.compile(
    rf"^[ \t]*\*\*(?P<role>{_MARKER_ROLES})\*\*[ \t]*"
    rf"(?:_?\((?P<ts>{_ISO_TS})\)_?)?[ \t]*$",
    re.IGNORECASE | re.MULTILINE,
)
_FENCE = re.compile(r"^[ \t]*(```|~~~)", re.MULTILINE)
_RULE = re.compile(r"-{3,}|\*{3,}|_{3,}")
_SEPARATOR = re.compile(r"\n[ \t]*-{3,}[ \t]*\n")
_BLOCK_HEADING = re.compile(
    rf"(?:#{{1,6}}[ \t]*)?(?:\*\*)?(?P<role>{_BLOCK_ROLES})(?:\*\*)?:?(?:\*\*)?[ \t]*",
    re.IGNORECASE,
)
_BLOCK_INLINE = re.compile(
    rf"(?:\*\*)?(?P<role>{_BLOCK_ROLES})(?:\*\*)?:(?:\*\*)?[ \t]+(?P<rest>\S.*)",
    re.IGNORECASE,
)
_COLON_LINE = re.compile(rf"^{_COLON_ANY}:", re.IGNORECASE | re.MULTILINE)
_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_QUOTE_PREFIX = re.compile(r"^>[ \t]?", re.MULTILINE)
_IMPERATIVE = re.compile(
    r"^(?:create|make|add|update|delete|remove|show|tell|explain|write|fix|build|"
    r"give|list|help|how|what|why|can|could|please)\b",
    re.IGNORECASE,
)
SHORT_LINE_CHARS = 100


def _colon_pattern(prefix: str) -> "re.Pattern[str]":
    return re.compile(
        rf"(?:^|\n){prefix}:[ \t]*(?P<body>.*?)(?=\n{_COLON_ANY}:|\Z)",
        re.IGNORECASE | re.DOTALL,
    )


_COLON_USER_SPAN = _colon_pattern(_COLON_USER)
_COLON_ASSISTANT_SPAN = _colon_pattern(_COLON_ASSISTANT)


# -----------------------------
# Helpers
# -----------------------------
def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def role_for(label: str) -> Optional[Role]:
    """Map a free-form role label onto ``user`` / ``assistant`` (None if unknown)."""
    key = (label or "").strip().lower()
    if key in USER_WORDS:
        return "user"
    if key in ASSISTANT_WORDS:
        return "assistant"
    return None


def _make(role: Role, content: str, timestamp: str) -> Optional[Message]:
    content = content.strip()
    if not content:
        return None
    return {"role": role, "content": content, "timestamp": timestamp}


def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _fenced_spans(text: str) -> List[Tuple[int, int]]:
    """Character ranges covered by fenced code blocks (unterminated runs to the end)."""
    spans: List[Tuple[int, int]] = []
    open_at: Optional[int] = None
    fence = ""
    for m in _FENCE.finditer(text):
        if open_at is None:
            open_at, fence = m.start(), m.group(1)
        elif m.group(1) == fence:
            spans.append((open_at, m.end()))
            open_at = None
    if open_at is not None:
        spans.append((open_at, len(text)))
    return spans


def _inside(pos: int, spans: Sequence[Tuple[int, int]]) -> bool:
    return any(start <= pos < end for start, end in spans)


def _strip_trailing_rules(body: str) -> str:
    lines = body.strip().split("\n")
    while lines and _RULE.fullmatch(lines[-1].strip()):
        lines.pop()
    return "\n".join(lines)


def _merge_adjacent(messages: List[Message], joiner: str = "\n\n") -> List[Message]:
    out: List[Message] = []
    for msg in messages:
        if out and out[-1]["role"] == msg["role"]:
            out[-1]["content"] = out[-1]["content"] + joiner + msg["content"]
        else:
            out.append(msg)
    return out


# -----------------------------
# Strategies
# -----------------------------
def parse_json_array(text: str, timestamp: str) -> Optional[List[Message]]:
    """A JSON array of message objects; reuses their own timestamps and metadata."""
    stripped = text.strip()
    if not stripped.startswith("["):
        return None
    try:
        data = json.loads(stripped)
    except (ValueError, RecursionError):
        return None
    if not isinstance(data, list):
        return None
    return as_messages(data, now=timestamp) or None


def parse_structured_markers(text: str, timestamp: str) -> Optional[List[Message]]:
    """``**User**`` / ``**Assistant**`` lines; content runs to the next marker.

    Marker lines inside fenced code blocks are content, not markers.
    """
    fences = _fenced_spans(text)
    markers = [m for m in _MARKER_LINE.finditer(text) if not _inside(m.start(), fences)]
    if not markers:
        return None

    out: List[Message] = []
    for i, m in enumerate(markers):
        end = markers[i + 1].start() if i + 1 < len(markers) else len(text)
        body = _strip_trailing_rules(text[m.end():end])
        role = role_for(m.group("role")) or "assistant"
        msg = _make(role, body, m.group("ts") or timestamp)
        if msg:
            out.append(msg)
    return out or None


def parse_separator_blocks(text: str, timestamp: str) -> Optional[List[Message]]:
    """``---`` separated blocks whose first line names the speaker."""
    blocks = _SEPARATOR.split(text)
    if len(blocks) < 2:
        return None

    out: List[Message] = []
    for block in blocks:
        block = block.strip()
        if not block:
            continue
        first, _, rest = block.partition("\n")
        first = first.strip()

        heading = _BLOCK_HEADING.fullmatch(first)
        if heading:
            role, body = role_for(heading.group("role")), rest
        else:
            inline = _BLOCK_INLINE.fullmatch(first)
            # several "Role:" lines in one block belong to the colon strategy
            if not inline or _COLON_LINE.search(rest):
                continue
            role = role_for(inline.group("role"))
            body = inline.group("rest") + ("\n" + rest if rest else "")

        if role is None:
            continue
        msg = _make(role, body, timestamp)
        if msg:
            out.append(msg)
    return out or None


def parse_colon_prefixed(text: str, timestamp: str) -> Optional[List[Message]]:
    """``You:`` / ``Assistant:`` style lines.

    User and assistant spans are collected by two separate scans and then
    merged back into source order.
    """
    spans: List[Tuple[int, Role, str]] = []
    for pattern, role in ((_COLON_USER_SPAN, "user"), (_COLON_ASSISTANT_SPAN, "assistant")):
        for m in pattern.finditer(text):
            spans.append((m.start(), role, m.group("body")))
    spans.sort(key=lambda s: s[0])

    out: List[Message] = []
    for _, role, body in spans:
        msg = _make(role, body, timestamp)
        if msg:
            out.append(msg)
    return out or None


def parse_quoted_paragraphs(text: str, timestamp: str) -> Optional[List[Message]]:
    """``>`` quoted paragraphs are the user, everything else the assistant.

    Yields nothing unless some paragraph is quoted. Consecutive paragraphs of
    one role merge into a single message.
    """
    paragraphs = [p.strip() for p in _PARAGRAPH_BREAK.split(text)]
    if not any(p.startswith(">") for p in paragraphs):
        return None

    out: List[Message] = []
    for para in paragraphs:
        if not para:
            continue
        if para.startswith(">"):
            msg = _make("user", _QUOTE_PREFIX.sub("", para), timestamp)
        else:
            msg = _make("assistant", para, timestamp)
        if msg:
            out.append(msg)
    return _merge_adjacent(out) or None


def _looks_like_prompt(line: str) -> Tuple[bool, bool]:
    """Return (is_question, is_command) surface cues for one line."""
    return line.endswith("?"), bool(_IMPERATIVE.match(line))


def parse_linguistic(text: str, timestamp: str) -> Optional[List[Message]]:
    """Guess turns from questions and imperative openers, one line at a time."""
    lines = [line.strip() for line in text.split("\n") if line.strip()]
    if len(lines) < 2:
        return None

    out: List[Message] = []
    role: Role = "user"
    buf: List[str] = []

    def flush() -> None:
        msg = _make(role, "\n".join(buf), timestamp)
        if msg:
            out.append(msg)

    for line in lines:
        is_question, is_command = _looks_like_prompt(line)
        is_short = len(line) < SHORT_LINE_CHARS
        if role == "assistant" and (is_question or (is_short and is_command)):
            flush()
            role, buf = "user", [line]
        elif role == "user" and buf and not is_question and not is_command:
            flush()
            role, buf = "assistant", [line]
        else:
            buf.append(line)
    flush()
    return out or None


STRATEGIES: List[Tuple[str, Strategy]] = [
    ("json", parse_json_array),
    ("markers", parse_structured_markers),
    ("separators", parse_separator_blocks),
    ("colon", parse_colon_prefixed),
    ("quotes", parse_quoted_paragraphs),
    ("linguistic", parse_linguistic),
]


# -----------------------------
# Public API
# -----------------------------
def segment_with_strategy(
    raw: Union[str, bytes, None],
    *,
    now: Optional[str] = None,
    strategies: Optional[Sequence[Tuple[str, Strategy]]] = None,
) -> Tuple[str, List[Message]]:
    """Segment ``raw`` and report the name of the strategy that matched.

    Returns ``("empty", [])`` for empty input and ``("whole", [...])`` when only
    the whole-text fallback applied.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not raw or not raw.strip():
        return "empty", []

    text = _normalize_newlines(raw)
    timestamp = now or utc_now_iso()

    for name, strategy in strategies if strategies is not None else STRATEGIES:
        try:
            found = strategy(text, timestamp)
        except Exception:
            logger.exception("Segmenter strategy %r failed; trying the next one", name)
            continue
        if found:
            logger.debug("Segmenter strategy %r produced %d messages", name, len(found))
            return name, found

    logger.debug("No structure found; using whole-text fallback (%d chars)", len(text))
    return "whole", [{"role": "user", "content": text.strip(), "timestamp": timestamp}]


def segment(raw: Union[str, bytes, None], *, now: Optional[str] = None) -> List[Message]:
    """Convert a raw transcript into ordered messages. Never raises."""
    return segment_with_strategy(raw, now=now)[1]


def as_messages(items: Sequence[Any], *, now: Optional[str] = None) -> List[Message]:
    """Coerce loosely shaped ``{role, content}`` dicts into valid messages.

    Items with an unknown role, non-string or blank content are dropped. Each
    item keeps its own ``timestamp`` and ``metadata`` when present.
    """
    timestamp = now or utc_now_iso()
    out: List[Message] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        role = role_for(str(item.get("role") or ""))
        content = item.get("content")
        if role is None or not isinstance(content, str):
            continue
        msg = _make(role, content, str(item.get("timestamp") or timestamp))
        if msg is None:
            continue
        if isinstance(item.get("metadata"), dict):
            msg["metadata"] = item["metadata"]
        out.append(msg)
    return out
