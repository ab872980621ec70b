"""Disk-backed conversation store keyed by identity (thread-safe, atomic)."""
from __future__ import annotations

import logging
import re
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .identity import identify
from .reconcile import Append, CreateNew, Plan, Replace, Unrelated
from .render import format_as_markdown, format_as_simple_markdown, title_for
from .segmenter import as_messages
from .typing import Message
from .utils.io import append_jsonl, atomic_write_json, atomic_write_text, ensure_dir, read_json, read_jsonl

logger = logging.getLogger(__name__)


# -----------------------------
# Helpers
# -----------------------------
def _safe_reference(name: str) -> str:
    # References end up as filenames.
    s = re.sub(r"[^\w.\-]+", "_", (name or "").strip() or "default")
    return s[:128]


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_reference() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class StoredConversation:
    """One persisted conversation and its bookkeeping."""
    reference: str
    identity: str
    messages: List[Message] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reference": self.reference,
            "identity": self.identity,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "messages": list(self.messages),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredConversation":
        if not isinstance(data, dict) or not data.get("reference"):
            raise ValueError("conversation record must be a dict with a 'reference'")
        messages = as_messages(data.get("messages") or [])
        return cls(
            reference=str(data["reference"]),
            identity=str(data.get("identity") or identify(messages)),
            messages=messages,
            created_at=str(data.get("created_at") or ""),
            updated_at=str(data.get("updated_at") or ""),
        )

    def summary(self) -> Dict[str, Any]:
        return {
            "reference": self.reference,
            "identity": self.identity,
            "title": title_for(self.messages),
            "message_count": len(self.messages),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


# -----------------------------
# ConversationStore
# -----------------------------
class ConversationStore:
    """JSON-per-conversation store with an identity index.

    Layout:
        data_dir/
          index.json                    # {identity: [reference, ...]}
          conversations/<reference>.json
          markdown/chat-<reference>.md  # if render_markdown
          captures.jsonl                # if journal, one line per capture

    Storage side of reconciliation:
        - lookup(identity) -> StoredConversation | None
        - commit(plan, reference, identity=...) -> reference

    A plan is only valid against the messages it was computed from, so a
    lookup-reconcile-commit sequence runs inside ``with store.lock():``.
    """

    def __init__(
        self,
        data_dir: str,
        *,
        render_markdown: bool = True,
        include_timestamps: bool = False,
        journal: bool = True,
    ) -> None:
        self.root = ensure_dir(data_dir)
        self.conversations_dir = ensure_dir(self.root / "conversations")
        self.markdown_dir = self.root / "markdown"
        if render_markdown:
            ensure_dir(self.markdown_dir)
        self.index_path = self.root / "index.json"
        self.journal_path = self.root / "captures.jsonl"

        self.render_markdown = render_markdown
        self.include_timestamps = include_timestamps
        self.journal = journal
        self._lock = threading.RLock()

    @contextmanager
    def lock(self) -> Iterator["ConversationStore"]:
        """Hold the store's write lock across a read-plan-commit sequence.

        The lock is re-entrant, so ``lookup`` / ``commit`` may be called inside.
        """
        with self._lock:
            yield self

    # --------- paths ----------
    def _record_path(self, reference: str) -> Path:
        return self.conversations_dir / f"{_safe_reference(reference)}.json"

    def _markdown_path(self, reference: str) -> Path:
        return self.markdown_dir / f"chat-{_safe_reference(reference)}.md"

    # --------- index ----------
    def _read_index(self) -> Dict[str, List[str]]:
        if not self.index_path.exists():
            return {}
        try:
            data = read_json(self.index_path)
        except (OSError, ValueError) as e:
            logger.warning("Identity index %s unreadable (%s); rebuilding", self.index_path, e)
            return self._rebuild_index()
        if not isinstance(data, dict):
            return self._rebuild_index()
        return {str(k): [str(r) for r in v] for k, v in data.items() if isinstance(v, list)}

    def _rebuild_index(self) -> Dict[str, List[str]]:
        index: Dict[str, List[str]] = {}
        for convo in self._iter_records():
            index.setdefault(convo.identity, []).append(convo.reference)
        atomic_write_json(self.index_path, index)
        return index

    def _register(self, identity: str, reference: str) -> None:
        index = self._read_index()
        refs = index.setdefault(identity, [])
        if reference in refs:
            refs.remove(reference)
        refs.append(reference)
        atomic_write_json(self.index_path, index)

    def _unregister(self, reference: str) -> None:
        index = self._read_index()
        for identity in list(index):
            index[identity] = [r for r in index[identity] if r != reference]
            if not index[identity]:
                del index[identity]
        atomic_write_json(self.index_path, index)

    # --------- core API ----------
    def load(self, reference: str) -> Optional[StoredConversation]:
        """Load one conversation by reference (None if missing or corrupt)."""
        path = self._record_path(reference)
        if not path.exists():
            return None
        try:
            return StoredConversation.from_dict(read_json(path))
        except (OSError, ValueError) as e:
            # Corruption fallback: keep a backup and treat as missing.
            logger.warning("Conversation record %s is corrupt (%s); moving it aside", path, e)
            with self._lock:
                try:
                    path.rename(path.with_suffix(".corrupt.json"))
                except OSError:
                    logger.warning("Could not move corrupt record %s", path)
            return None

    def lookup(self, identity: str) -> Optional[StoredConversation]:
        """Most recently updated conversation registered under ``identity``."""
        found: List[StoredConversation] = []
        for reference in self._read_index().get(identity, []):
            convo = self.load(reference)
            if convo is not None:
                found.append(convo)
        if not found:
            return None
        return max(found, key=lambda c: c.updated_at)

    def recent(self, limit: Optional[int] = 1) -> List[StoredConversation]:
        """Most recently updated conversations, newest first (all if limit is None)."""
        convos = sorted(self._iter_records(), key=lambda c: c.updated_at, reverse=True)
        return convos if limit is None else convos[: max(0, limit)]

    def commit(self, plan: Plan, reference: Optional[str] = None, *, identity: Optional[str] = None) -> str:
        """Apply a reconciliation plan and return the reference written to.

        ``identity`` is the capture's identity; it is registered against the
        reference so later captures of the same conversation find it.
        """
        if isinstance(plan, Unrelated):
            raise ValueError("Unrelated plans need a caller decision; commit CreateNew to fork")

        with self._lock:
            now = _utc_iso()
            if isinstance(plan, CreateNew):
                if not plan.messages:
                    raise ValueError("cannot create an empty conversation")
                convo = StoredConversation(
                    reference=new_reference(),
                    identity=identify(plan.messages),
                    messages=list(plan.messages),
                    created_at=now,
                    updated_at=now,
                )
            else:
                if not reference:
                    raise ValueError(f"{plan.kind} plan requires an existing reference")
                convo = self.load(reference)
                if convo is None:
                    raise KeyError(f"no stored conversation for reference {reference!r}")
                if isinstance(plan, Append):
                    if plan.is_noop:
                        return convo.reference
                    convo.messages.extend(plan.tail)
                elif isinstance(plan, Replace):
                    convo.messages = list(plan.messages)
                    convo.identity = identify(plan.messages)
                else:
                    raise TypeError(f"unknown plan type: {type(plan).__name__}")
                convo.updated_at = now

            self._write(convo)
            self._register(convo.identity, convo.reference)
            if identity and identity != convo.identity:
                self._register(identity, convo.reference)
            return convo.reference

    # --------- convenience ----------
    def list_conversations(self) -> List[Dict[str, Any]]:
        """Summaries of all stored conversations, newest first."""
        return [c.summary() for c in self.recent(limit=None)]

    def delete(self, reference: str) -> bool:
        """Remove a conversation and its rendering; True if something was deleted."""
        with self._lock:
            path = self._record_path(reference)
            existed = path.exists()
            path.unlink(missing_ok=True)
            self._markdown_path(reference).unlink(missing_ok=True)
            if existed:
                self._unregister(reference)
            return existed

    def export_markdown(self, reference: str, *, simple: bool = False) -> Optional[str]:
        convo = self.load(reference)
        if convo is None:
            return None
        return self._render(convo, simple=simple)

    def record_capture(self, entry: Dict[str, Any]) -> None:
        """Append one line to the capture journal (no-op when disabled)."""
        if not self.journal:
            return
        append_jsonl(self.journal_path, {"ts": _utc_iso(), **entry})

    def captures(self) -> List[Dict[str, Any]]:
        return list(read_jsonl(self.journal_path))

    # --------- internals ----------
    def _iter_records(self) -> List[StoredConversation]:
        out: List[StoredConversation] = []
        for path in sorted(self.conversations_dir.glob("*.json")):
            if path.name.endswith(".corrupt.json"):
                continue
            convo = self.load(path.stem)
            if convo is not None:
                out.append(convo)
        return out

    def _render(self, convo: StoredConversation, *, simple: bool = False) -> str:
        if simple:
            return format_as_simple_markdown(convo.messages, exported_at=convo.updated_at)
        return format_as_markdown(
            convo.messages,
            exported_at=convo.updated_at,
            include_timestamps=self.include_timestamps,
        )

    def _write(self, convo: StoredConversation) -> None:
        atomic_write_json(self._record_path(convo.reference), convo.to_dict())
        if self.render_markdown:
            atomic_write_text(self._markdown_path(convo.reference), self._render(convo))
