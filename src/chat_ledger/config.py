"""Configuration loading utilities for the chat ledger.

This module handles layered configuration:
1. Explicit path argument (highest precedence)
2. Environment variable CHAT_LEDGER_CONFIG
3. Fallback to "config/default.yaml"

Values missing from the file fall back to :data:`DEFAULTS`. It also supports
overrides from environment variables with prefix ``CHAT_LEDGER__`` (e.g.,
CHAT_LEDGER__STORAGE__DATA_DIR=/tmp/chats).
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "CHAT_LEDGER__"
ENV_CONFIG = "CHAT_LEDGER_CONFIG"

DEFAULTS: Dict[str, Any] = {
    "storage": {
        "data_dir": "data/chats",
        "render_markdown": True,
        "include_timestamps": False,
        "journal": True,
    },
    "reconcile": {
        "lenient_window": 3,
        "on_unrelated": "fork",       # "fork" | "conflict"
        "recent_candidates": 1,
    },
    "server": {"host": "127.0.0.1", "port": 8000, "cors_origins": ["*"]},
    "logging": {"level": "INFO"},
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides with prefix CHAT_LEDGER__."""
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        # e.g., CHAT_LEDGER__STORAGE__DATA_DIR -> cfg["storage"]["data_dir"]
        parts = key[len(ENV_PREFIX):].lower().split("__")
        sub = cfg
        for p in parts[:-1]:
            if p not in sub or not isinstance(sub[p], dict):
                sub[p] = {}
            sub = sub[p]
        leaf = parts[-1]
        # Attempt to parse simple types (bool, int, float)
        if value.lower() in {"true", "false"}:
            sub[leaf] = value.lower() == "true"
        else:
            try:
                if "." in value:
                    sub[leaf] = float(value)
                else:
                    sub[leaf] = int(value)
            except ValueError:
                sub[leaf] = value
    return cfg


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load YAML configuration for the chat ledger.

    Parameters
    ----------
    path : str | None
        Optional path to a configuration file. If not provided, the
        environment variable ``CHAT_LEDGER_CONFIG`` is consulted. As a
        last resort ``config/default.yaml`` is used.

    Returns
    -------
    Dict[str, Any]
        Parsed configuration merged over the defaults, with environment
        overrides applied.
    """
    if path is None:
        path = os.environ.get(ENV_CONFIG, "config/default.yaml")

    path_obj = Path(path)
    if not path_obj.exists():
        logger.warning("Config file not found at %s. Using defaults.", path_obj)
        return _apply_env_overrides(copy.deepcopy(DEFAULTS))

    with path_obj.open("r", encoding="utf-8") as f:
        try:
            cfg = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise RuntimeError(f"Failed to parse config file {path_obj}: {e}")

    if not isinstance(cfg, dict):
        raise RuntimeError(f"Invalid config format in {path_obj}, expected dict.")

    return _apply_env_overrides(_deep_merge(DEFAULTS, cfg))


def configure_logging(cfg: Dict[str, Any]) -> None:
    """Configure root logging from the ``logging.level`` key."""
    level_name = str(cfg.get("logging", {}).get("level", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )
