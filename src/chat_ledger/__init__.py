"""Chat ledger: turn pasted chat transcripts into one growing record per conversation.

The core is three pure functions:

- :func:`segment` splits raw captured text into role-tagged messages
- :func:`identify` derives a stable identity from the opening user message
- :func:`reconcile` decides append / replace / create / unrelated against
  what is already stored

:class:`CaptureService` wires them to a :class:`ConversationStore`, and
``chat_ledger.server`` exposes the whole thing over HTTP.

Typical usage
-------------
from chat_ledger import create_app
app = create_app()

or, from the provided launcher:

python scripts/run_server.py --host 127.0.0.1 --port 8000
"""

from __future__ import annotations

__all__ = [
    "segment",
    "identify",
    "reconcile",
    "CaptureService",
    "ConversationStore",
    "create_app",
    "__version__",
    "get_version",
]

# ---------------------------------------------------------------------
# Version handling
# ---------------------------------------------------------------------
__version__ = "0.1.0"


def get_version() -> str:
    """Return the package version."""
    return __version__


from .segmenter import segment  # noqa: E402
from .identity import identify  # noqa: E402
from .reconcile import reconcile  # noqa: E402
from .store import ConversationStore  # noqa: E402
from .capture import CaptureService  # noqa: E402


def create_app(*args, **kwargs):
    """Return a configured FastAPI application.

    This forwards to :func:`chat_ledger.server.create_app`; the import is
    deferred so the core can be used without the web stack loaded.
    """
    from .server import create_app as _create_app

    return _create_app(*args, **kwargs)
