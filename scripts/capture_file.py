"""Capture a transcript from a file (or stdin) into the conversation store.

Usage:
    python scripts/capture_file.py transcript.md
    pbpaste | python scripts/capture_file.py -
    python scripts/capture_file.py transcript.md --dry-run
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

SRC_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from chat_ledger.capture import ConversationConflict, create_service  # noqa: E402
from chat_ledger.config import configure_logging, load_config  # noqa: E402
from chat_ledger.identity import identify  # noqa: E402
from chat_ledger.segmenter import segment_with_strategy  # noqa: E402

logger = logging.getLogger("chat_ledger.capture_file")


def _read_source(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8", errors="replace")


def main() -> int:
    parser = argparse.ArgumentParser(description="Capture a chat transcript into the ledger.")
    parser.add_argument("source", help="Transcript file, or '-' for stdin")
    parser.add_argument("--config", type=str, default=None, help="Path to a YAML config")
    parser.add_argument("--data-dir", type=str, default=None, help="Override storage.data_dir")
    parser.add_argument("--dry-run", action="store_true", help="Show the segmentation and plan without writing")
    args = parser.parse_args()

    cfg = load_config(args.config)
    if args.data_dir:
        cfg.setdefault("storage", {})["data_dir"] = args.data_dir
    configure_logging(cfg)

    try:
        raw = _read_source(args.source)
    except OSError as e:
        logger.error("Cannot read %s: %s", args.source, e)
        return 1

    service = create_service(cfg)

    if args.dry_run:
        strategy, messages = segment_with_strategy(raw)
        if not messages:
            logger.error("No messages found in %s", args.source)
            return 1
        plan, existing = service.plan(messages)
        print(json.dumps({
            "strategy": strategy,
            "identity": identify(messages),
            "plan": plan.kind,
            "reference": existing.reference if existing else None,
            "messages": messages,
        }, ensure_ascii=False, indent=2))
        return 0

    try:
        result = service.capture(raw)
    except ConversationConflict as e:
        logger.error("%s", e)
        return 2
    except ValueError as e:
        logger.error("%s", e)
        return 1

    print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
