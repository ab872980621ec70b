"""End-to-end capture: raw text -> messages -> identity -> plan -> storage."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Tuple

from .identity import identify
from .reconcile import (
    DEFAULT_LENIENT_WINDOW,
    Append,
    CreateNew,
    Plan,
    Replace,
    Unrelated,
    reconcile,
)
from .segmenter import segment_with_strategy
from .store import ConversationStore, StoredConversation
from .typing import Message

logger = logging.getLogger(__name__)

UNRELATED_POLICIES = ("fork", "conflict")


class ConversationConflict(RuntimeError):
    """A capture shares an identity with a stored conversation it does not continue."""

    def __init__(self, identity: str, reference: str) -> None:
        super().__init__(
            f"capture with identity {identity} does not continue stored conversation {reference}"
        )
        self.identity = identity
        self.reference = reference


@dataclass
class CaptureResult:
    plan: str                  # create | append | replace | fork
    reference: str
    identity: str
    strategy: str              # segmenter strategy that matched
    message_count: int         # messages in the capture
    new_messages: int          # messages actually written

    @property
    def changed(self) -> bool:
        return self.new_messages > 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CaptureService:
    """Reconciles captures against a :class:`ConversationStore`.

    Parameters
    ----------
    store : ConversationStore
        Storage collaborator providing ``lookup`` / ``recent`` / ``commit``.
    on_unrelated : str
        What to do when a capture shares an identity with a stored
        conversation but does not continue it: ``"fork"`` creates a new
        record, ``"conflict"`` raises :class:`ConversationConflict`.
    lenient_window : int
        Overlap width for the mid-conversation continuation check.
    recent_candidates : int
        How many recently updated records to try when no identity matches
        (an edited opening prompt or a partial capture changes the identity).
    """

    def __init__(
        self,
        store: ConversationStore,
        *,
        on_unrelated: str = "fork",
        lenient_window: int = DEFAULT_LENIENT_WINDOW,
        recent_candidates: int = 1,
    ) -> None:
        if on_unrelated not in UNRELATED_POLICIES:
            raise ValueError(f"on_unrelated must be one of {UNRELATED_POLICIES}, got {on_unrelated!r}")
        self.store = store
        self.on_unrelated = on_unrelated
        self.lenient_window = max(0, int(lenient_window))
        self.recent_candidates = max(0, int(recent_candidates))

    # --------- planning ----------
    def plan(self, messages: List[Message]) -> Tuple[Plan, Optional[StoredConversation]]:
        """Pick the stored conversation (if any) and the plan against it. No writes."""
        identity = identify(messages)
        existing = self.store.lookup(identity)
        if existing is not None:
            return reconcile(existing.messages, messages, lenient_window=self.lenient_window), existing

        for candidate in self.store.recent(self.recent_candidates):
            plan = reconcile(candidate.messages, messages, lenient_window=self.lenient_window)
            if self._accept_candidate(plan, candidate.messages, messages):
                return plan, candidate

        return CreateNew(list(messages)), None

    @staticmethod
    def _accept_candidate(plan: Plan, existing: List[Message], incoming: List[Message]) -> bool:
        # Without an identity match, an edit only counts when a later turn confirms it.
        if isinstance(plan, Append):
            return True
        if isinstance(plan, Replace):
            return min(len(existing), len(incoming)) >= 2
        return False

    # --------- capture ----------
    def capture_messages(self, messages: List[Message], *, strategy: str = "messages") -> CaptureResult:
        if not messages:
            raise ValueError("Capture contains no messages.")

        identity = identify(messages)
        with self.store.lock():
            plan, existing = self.plan(messages)
            kind = plan.kind

            if isinstance(plan, Unrelated) and existing is not None:
                if self.on_unrelated == "conflict":
                    self.store.record_capture(
                        {"plan": "conflict", "identity": identity, "reference": existing.reference, "strategy": strategy}
                    )
                    raise ConversationConflict(identity, existing.reference)
                logger.warning(
                    "Capture %s shares its opening with %s but diverges; forking a new record",
                    identity,
                    existing.reference,
                )
                plan, existing, kind = CreateNew(plan.messages), None, "fork"

            reference = self.store.commit(plan, existing.reference if existing else None, identity=identity)

            if isinstance(plan, Append):
                written = len(plan.tail)
            else:
                written = len(messages)

            result = CaptureResult(
                plan=kind,
                reference=reference,
                identity=identity,
                strategy=strategy,
                message_count=len(messages),
                new_messages=written,
            )
            self.store.record_capture(result.to_dict())

        logger.info(
            "Capture %s -> %s %s (%d messages, %d written)",
            identity,
            kind,
            reference,
            result.message_count,
            written,
        )
        return result

    def capture(self, raw: str) -> CaptureResult:
        """Segment raw captured text and reconcile it with storage."""
        strategy, messages = segment_with_strategy(raw)
        if not messages:
            raise ValueError("Captured text contains no messages.")
        return self.capture_messages(messages, strategy=strategy)


def create_service(cfg: Dict[str, Any], store: Optional[ConversationStore] = None) -> CaptureService:
    """Build a store and capture service from a loaded config dict."""
    if store is None:
        st_cfg = cfg.get("storage", {})
        store = ConversationStore(
            st_cfg.get("data_dir") or "data/chats",
            render_markdown=bool(st_cfg.get("render_markdown", True)),
            include_timestamps=bool(st_cfg.get("include_timestamps", False)),
            journal=bool(st_cfg.get("journal", True)),
        )
    rc_cfg = cfg.get("reconcile", {})
    return CaptureService(
        store,
        on_unrelated=str(rc_cfg.get("on_unrelated", "fork")),
        lenient_window=int(rc_cfg.get("lenient_window", DEFAULT_LENIENT_WINDOW)),
        recent_candidates=int(rc_cfg.get("recent_candidates", 1)),
    )
