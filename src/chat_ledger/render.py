"""Markdown renderings of a conversation.

:func:`format_as_markdown` writes the same layout chat panels export
(``**User**`` / ``**Assistant**`` blocks separated by ``---``), so a rendered
file segments back to the same messages.
"""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence

from .identity import first_user_message
from .segmenter import ISO_TIMESTAMP
from .typing import Message

TITLE_CHARS = 80
APP_NAME = "Chat Ledger"


def title_for(messages: Sequence[Message]) -> str:
    first = first_user_message(messages)
    if first is None:
        return "Chat Export"
    line = first["content"].strip().split("\n")[0]
    return line[:TITLE_CHARS] or "Chat Export"


def _exported_line(exported_at: Optional[str]) -> str:
    try:
        when = datetime.fromisoformat(exported_at) if exported_at else datetime.now().astimezone()
    except ValueError:
        return f"_Exported from {APP_NAME}_"
    return f"_Exported on {when.strftime('%Y-%m-%d')} at {when.strftime('%H:%M:%S')} from {APP_NAME}_"


def format_as_markdown(
    messages: Sequence[Message],
    *,
    title: Optional[str] = None,
    exported_at: Optional[str] = None,
    include_timestamps: bool = False,
) -> str:
    """Render messages in the marker-and-separator export layout."""
    lines: List[str] = [f"# {title or title_for(messages)}", _exported_line(exported_at), "", "---", ""]

    for index, message in enumerate(messages):
        marker = "**User**" if message["role"] == "user" else "**Assistant**"
        if include_timestamps and ISO_TIMESTAMP.fullmatch(message.get("timestamp") or ""):
            marker += f" _({message['timestamp']})_"
        lines.append(marker)
        lines.append("")
        lines.append(message["content"])
        lines.append("")
        if index < len(messages) - 1:
            lines.append("---")
            lines.append("")

    return "\n".join(lines)


def format_as_simple_markdown(messages: Sequence[Message], *, exported_at: Optional[str] = None) -> str:
    lines: List[str] = ["# Chat Conversation", "", _exported_line(exported_at), f"_Messages: {len(messages)}_", ""]
    for message in messages:
        lines.append("**You:**" if message["role"] == "user" else "**Assistant:**")
        lines.append("")
        lines.append(message["content"])
        lines.append("")
    return "\n".join(lines)
