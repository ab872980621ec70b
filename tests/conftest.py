"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import List

import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from chat_ledger.typing import Message  # noqa: E402

TS = "2024-01-15T10:00:00Z"


def u(content: str, ts: str = TS) -> Message:
    return {"role": "user", "content": content, "timestamp": ts}


def a(content: str, ts: str = TS) -> Message:
    return {"role": "assistant", "content": content, "timestamp": ts}


def transcript(*turns: Message) -> str:
    """Render turns the way a chat panel export does (markers + separators)."""
    parts: List[str] = []
    for m in turns:
        marker = "**User**" if m["role"] == "user" else "**Cursor**"
        parts.append(f"{marker}\n\n{m['content']}\n")
    return "\n---\n\n".join(parts)


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(scope="function")
def tmp_data_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for the conversation store during tests."""
    d = tmp_path / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    monkeypatch.delenv("CHAT_LEDGER_CONFIG", raising=False)
    for var in list(os.environ):
        if var.startswith("CHAT_LEDGER__"):
            monkeypatch.delenv(var, raising=False)
    yield
