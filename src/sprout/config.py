"""
Configuration loading with layered precedence:
  1. Built-in defaults
  2. User-global:  ~/.config/sprout/config.toml
  3. Repo-local:   <project root>/.sprout/config.toml  (highest priority)

All config is read-only at runtime; create/edit the TOML files manually.
"""

from __future__ import annotations

import copy
import logging
import tomllib
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

REPO_CONFIG_DIR = Path(".sprout")
REPO_CONFIG_NAME = "config.toml"

USER_CONFIG_FILE = Path.home() / ".config" / "sprout" / "config.toml"

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")

# ── Defaults ──────────────────────────────────────────────────────────────────

DEFAULT_CONFIG: dict[str, Any] = {
    "setup": {
        "enabled": True,
        # Project script run before dependency installation, relative to the worktree
        "script": ".sprout/setup.sh",
        # Seconds per setup action
        "timeout": 900,
        # Per-action command overrides, e.g. python = "uv sync"
        "commands": {},
    },

    "baseline": {
        "enabled": True,
        # Overrides marker-based detection, e.g. "make test"
        "command": None,
        # Seconds for the single baseline run
        "timeout": 1800,
        # Lines of runner output kept as the failure summary
        "summary_lines": 30,
    },

    "logging": {
        "level": "WARNING",
    },
}


# ── Loader ────────────────────────────────────────────────────────────────────


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge `override` into `base`, returning a new dict."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        logger.warning("Ignoring malformed config %s: %s", path, exc)
    except OSError as exc:
        logger.warning("Cannot read config %s: %s", path, exc)
    return {}


def repo_config_file(project_root: Path) -> Path:
    return project_root / REPO_CONFIG_DIR / REPO_CONFIG_NAME


def load_config(project_root: Optional[Path] = None) -> dict[str, Any]:
    """
    Return the merged configuration dict.
    Keys from higher-priority sources override lower ones (but nested dicts merge).
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    # User-global config (lower priority)
    if USER_CONFIG_FILE.exists():
        config = _deep_merge(config, _read_toml(USER_CONFIG_FILE))

    # Repo-local config (highest priority)
    if project_root is not None:
        repo_cfg = repo_config_file(project_root)
        if repo_cfg.exists():
            config = _deep_merge(config, _read_toml(repo_cfg))

    return config


def normalize_log_level(value: str) -> str:
    normalized = value.strip().upper()
    if normalized not in LOG_LEVELS:
        raise ValueError(f"log level must be one of {', '.join(LOG_LEVELS)}")
    return normalized
