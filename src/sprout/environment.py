"""
Environment setup for a freshly created worktree.

Setup is driven by an ordered table of actions. Each action is keyed on one or
more marker files at the worktree root; the first marker present selects the
action, and each action runs at most once:

  custom-script   .sprout/setup.sh (configurable), receives the provisioning context
  node            package.json     -> pnpm / yarn / npm install (picked by lockfile)
  rust            Cargo.toml       -> cargo build
  python          requirements.txt -> pip install -r requirements.txt
                  pyproject.toml   -> pip install -e .
  go              go.mod           -> go mod download

A failing action is recorded and the next one still runs. A worktree with no
markers yields no outcomes, which is not a failure.
"""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from .models import SetupOutcome
from .process import CommandResult, format_command, run_command, tail

logger = logging.getLogger(__name__)

Runner = Callable[..., CommandResult]

CUSTOM_SCRIPT_ACTION = "custom-script"


@dataclass(frozen=True)
class SetupContext:
    """Everything a custom setup script may need to bootstrap the worktree."""
    worktree_path: Path
    branch_name: str
    base_branch: str
    project_root: Path
    origin: Path

    def as_env(self) -> dict[str, str]:
        return {
            "SPROUT_WORKTREE_PATH": str(self.worktree_path),
            "SPROUT_BRANCH": self.branch_name,
            "SPROUT_BASE_BRANCH": self.base_branch,
            "SPROUT_PROJECT_ROOT": str(self.project_root),
            "SPROUT_ORIGIN": str(self.origin),
        }


@dataclass(frozen=True)
class SetupAction:
    name: str
    # Checked in order; the first one present decides the command
    markers: tuple[str, ...]
    command: Callable[[Path, str], list[str]]
    # Custom scripts get the provisioning context in their environment
    passes_context: bool = False

    def matching_marker(self, worktree_path: Path) -> Optional[str]:
        for marker in self.markers:
            if (worktree_path / marker).is_file():
                return marker
        return None


# ── Command builders ──────────────────────────────────────────────────────────


def _node_install(worktree_path: Path, _marker: str) -> list[str]:
    if (worktree_path / "pnpm-lock.yaml").is_file():
        return ["pnpm", "install"]
    if (worktree_path / "yarn.lock").is_file():
        return ["yarn", "install"]
    return ["npm", "install"]


def _python_install(_worktree_path: Path, marker: str) -> list[str]:
    if marker == "requirements.txt":
        return ["pip", "install", "-r", "requirements.txt"]
    return ["pip", "install", "-e", "."]


def _custom_script(_worktree_path: Path, marker: str) -> list[str]:
    return ["sh", marker]


ECOSYSTEM_ACTIONS: tuple[SetupAction, ...] = (
    SetupAction("node", ("package.json",), _node_install),
    SetupAction("rust", ("Cargo.toml",), lambda _p, _m: ["cargo", "build"]),
    SetupAction("python", ("requirements.txt", "pyproject.toml"), _python_install),
    SetupAction("go", ("go.mod",), lambda _p, _m: ["go", "mod", "download"]),
)


def build_setup_actions(config: dict[str, Any]) -> list[SetupAction]:
    """Return the action table in evaluation order, custom script first."""
    setup_cfg = config.get("setup", {})
    actions: list[SetupAction] = []

    script = setup_cfg.get("script")
    if script:
        actions.append(
            SetupAction(CUSTOM_SCRIPT_ACTION, (script,), _custom_script, passes_context=True)
        )

    overrides: dict[str, str] = setup_cfg.get("commands", {}) or {}
    for action in ECOSYSTEM_ACTIONS:
        override = overrides.get(action.name)
        if override:
            argv = shlex.split(override)
            action = SetupAction(action.name, action.markers, lambda _p, _m, argv=argv: list(argv))
        actions.append(action)
    return actions


# ── Runner ────────────────────────────────────────────────────────────────────


def _describe(result: CommandResult, summary_lines: int = 15) -> str:
    command = format_command(result.args)
    if result.ok:
        return f"{command} succeeded"
    if result.error_message:
        return result.error_message
    summary = tail(result.output, max_lines=summary_lines, max_chars=800)
    detail = f"{command} exited with {result.returncode}"
    return f"{detail}\n{summary}" if summary else detail


def run_setup(
    worktree_path: Path,
    context: SetupContext,
    config: dict[str, Any],
    *,
    runner: Runner = run_command,
) -> list[SetupOutcome]:
    """
    Run every applicable setup action against `worktree_path`, in table order.

    Returns one SetupOutcome per action attempted.
    """
    timeout = config.get("setup", {}).get("timeout")
    outcomes: list[SetupOutcome] = []

    for action in build_setup_actions(config):
        marker = action.matching_marker(worktree_path)
        if marker is None:
            continue

        argv = action.command(worktree_path, marker)
        env = context.as_env() if action.passes_context else None
        logger.info("Setup action %s (marker %s)", action.name, marker)
        result = runner(argv, cwd=worktree_path, timeout=timeout, env=env)

        if not result.ok:
            logger.warning("Setup action %s failed: %s", action.name, result.error_message or result.returncode)
        outcomes.append(
            SetupOutcome(
                action=action.name,
                attempted=True,
                succeeded=result.ok,
                detail=_describe(result),
            )
        )

    return outcomes
