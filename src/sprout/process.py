"""
Blocking child-process execution shared by setup actions and the baseline run.

A timeout or a missing executable is folded into the same failure channel as a
non-zero exit, so callers only ever inspect `CommandResult.ok`.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

# Interpreter variables from sprout's own environment must not leak into the
# project's installers and test runners.
_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}


@dataclass
class CommandResult:
    """Outcome of one external command."""
    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    # Set when the command could not be started or was killed
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and self.error_message is None

    @property
    def output(self) -> str:
        return (self.stdout or "") + (self.stderr or "")


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a copy of os.environ suitable for project subprocesses."""
    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


def format_command(args: Sequence[str]) -> str:
    return shlex.join(args)


def run_command(
    args: Sequence[str],
    *,
    cwd: Path,
    timeout: Optional[float] = None,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    """
    Run `args` in `cwd` and capture its output.

    Never raises for process-level failures; inspect the returned result.
    """
    argv = tuple(str(a) for a in args)
    logger.info("Running %s in %s", format_command(argv), cwd)

    try:
        proc = subprocess.run(
            list(argv),
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=sanitize_environment(env),
        )
    except subprocess.TimeoutExpired as exc:
        logger.warning("%s timed out after %ss", argv[0], timeout)
        return CommandResult(
            args=argv,
            returncode=-1,
            stdout=_as_text(exc.stdout),
            stderr=_as_text(exc.stderr),
            timed_out=True,
            error_message=f"'{format_command(argv)}' timed out after {timeout:g}s.",
        )
    except FileNotFoundError:
        logger.warning("%s not found on PATH", argv[0])
        return CommandResult(
            args=argv,
            returncode=127,
            error_message=f"'{argv[0]}' command not found.",
        )
    except OSError as exc:
        return CommandResult(args=argv, returncode=126, error_message=str(exc))

    logger.debug("%s exited with %d", argv[0], proc.returncode)
    return CommandResult(
        args=argv,
        returncode=proc.returncode,
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
    )


def _as_text(value: object) -> str:
    # TimeoutExpired carries bytes even when text=True was requested
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def tail(text: str, max_lines: int = 30, max_chars: int = 2000) -> str:
    """Return the last `max_lines` non-blank lines of `text`, capped at `max_chars`."""
    lines = [line.rstrip() for line in text.splitlines() if line.strip()]
    out = "\n".join(lines[-max_lines:]) if max_lines > 0 else ""
    if len(out) > max_chars:
        out = "..." + out[-max_chars:]
    return out
