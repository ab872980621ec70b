from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, Dict, Any, Generator, Union

PathLike = Union[str, Path]

logger = logging.getLogger(__name__)


def ensure_dir(p: PathLike) -> Path:
    """Ensure that a directory exists, returning it as a Path."""
    p = Path(p)
    try:
        p.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OSError(f"Failed to create directory {p}: {e}") from e
    return p


def atomic_write_text(path: PathLike, text: str) -> None:
    """Write text via a temp file in the same directory, then swap it in."""
    p = Path(path)
    ensure_dir(p.parent)
    try:
        with tempfile.NamedTemporaryFile("w", encoding="utf-8", delete=False, dir=str(p.parent)) as tmp:
            tmp.write(text)
            tmp.flush()
            os.fsync(tmp.fileno())
            tmp_name = tmp.name
        os.replace(tmp_name, p)
    except OSError as e:
        raise OSError(f"Atomic write failed for {p}: {e}") from e


def atomic_write_json(path: PathLike, data: Any) -> None:
    """Safely write a JSON file atomically to avoid corruption."""
    try:
        text = json.dumps(data, ensure_ascii=False, indent=2)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Failed to serialize data for {path}: {e}") from e
    atomic_write_text(path, text)


def read_json(path: PathLike) -> Any:
    with Path(path).open("r", encoding="utf-8") as f:
        return json.load(f)


def append_jsonl(path: PathLike, item: Dict[str, Any]) -> None:
    """Append a JSON-serializable dict as one line to a JSONL file."""
    try:
        line = json.dumps(item, ensure_ascii=False)
    except Exception as e:
        raise ValueError(f"Failed to serialize item to JSON: {e}") from e

    try:
        with open(path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
    except OSError as e:
        raise OSError(f"Failed to write to {path}: {e}") from e


def read_jsonl(path: PathLike, *, stream: bool = False) -> Iterable[Dict[str, Any]]:
    """Read a JSONL file into memory or stream it line by line.

    Parameters
    ----------
    path : str | Path
        The JSONL file path.
    stream : bool
        If True, yield entries lazily (generator).
        If False, return a full list of entries.

    Returns
    -------
    Iterable[Dict[str, Any]]
    """
    p = Path(path)
    if not p.exists():
        return [] if not stream else iter(())

    def _iter() -> Generator[Dict[str, Any], None, None]:
        with open(p, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError as e:
                    logger.warning("Skipping corrupt line %d in %s: %s", line_no, p, e)
                    continue

    return _iter() if stream else list(_iter())
