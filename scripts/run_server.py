"""Serve the Chat Ledger capture API with uvicorn.

Host and port come from the ``server`` config section unless given on the
command line:

    python scripts/run_server.py --config config/local.yaml --port 9000
"""

from __future__ import annotations

import argparse
import os
import sys
from typing import List, Optional

import uvicorn

SRC_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from chat_ledger.config import load_config  # noqa: E402
from chat_ledger.server import create_app  # noqa: E402


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Serve captured chat conversations over HTTP.")
    parser.add_argument("--config", default=None, help="YAML config (default: $CHAT_LEDGER_CONFIG or config/default.yaml)")
    parser.add_argument("--host", default=None, help="Bind address (default: server.host)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (default: server.port)")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    cfg = load_config(args.config)
    srv = cfg.get("server", {})

    uvicorn.run(
        create_app(config_path=args.config),
        host=args.host or srv.get("host", "127.0.0.1"),
        port=args.port or int(srv.get("port", 8000)),
        log_level=str(cfg.get("logging", {}).get("level", "INFO")).lower(),
    )


if __name__ == "__main__":
    main()
