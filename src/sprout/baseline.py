"""
Baseline test verification.

The test command is detected with the same marker-file convention as setup
(first match wins), or taken verbatim from `[baseline] command`. It runs
exactly once; a fresh worktree with fresh dependencies should be
deterministic, so a single run is authoritative.

Counts are best-effort: they come from the runner's summary output
("12 passed, 1 failed", cargo's "test result:" lines, go's "--- FAIL:" lines)
and are None when nothing recognisable was printed.
"""

from __future__ import annotations

import json
import logging
import re
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from .models import BaselineFailed, BaselinePassed, BaselineResult, NoTestsConfigured
from .process import CommandResult, run_command, tail

logger = logging.getLogger(__name__)

Runner = Callable[..., CommandResult]

_PASSED_PATTERN = re.compile(r"\b(\d+)\s+(?:tests?\s+)?passed\b", re.IGNORECASE)
_FAILED_PATTERN = re.compile(r"\b(\d+)\s+(?:tests?\s+)?failed\b", re.IGNORECASE)
_GO_PASS_PATTERN = re.compile(r"^\s*--- PASS:", re.MULTILINE)
_GO_FAIL_PATTERN = re.compile(r"^\s*--- FAIL:", re.MULTILINE)
# Jest prints per-suite counts above the per-test "Tests:" line
_JEST_SUITES_LINE = re.compile(r"^\s*Test Suites:.*$", re.MULTILINE)
# npm init writes this placeholder into scripts.test
_NPM_PLACEHOLDER_TEST = "no test specified"


@dataclass(frozen=True)
class TestCommand:
    __test__ = False

    name: str
    markers: tuple[str, ...]
    command: tuple[str, ...]
    # Exit codes meaning "nothing to run" rather than failure
    no_tests_exit_codes: tuple[int, ...] = ()
    # Extra check on the worktree once a marker is found
    condition: Optional[Callable[[Path], bool]] = None

    def applies(self, worktree_path: Path) -> bool:
        if not any((worktree_path / m).is_file() for m in self.markers):
            return False
        return self.condition is None or self.condition(worktree_path)


def has_npm_test_script(worktree_path: Path) -> bool:
    """True when package.json defines a test script other than npm's placeholder."""
    try:
        manifest = json.loads((worktree_path / "package.json").read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.info("Cannot read package.json in %s: %s", worktree_path, exc)
        return False
    scripts = manifest.get("scripts") if isinstance(manifest, dict) else None
    script = scripts.get("test") if isinstance(scripts, dict) else None
    if not isinstance(script, str) or not script.strip():
        return False
    return _NPM_PLACEHOLDER_TEST not in script


TEST_COMMANDS: tuple[TestCommand, ...] = (
    TestCommand("node", ("package.json",), ("npm", "test"), condition=has_npm_test_script),
    TestCommand("rust", ("Cargo.toml",), ("cargo", "test")),
    # pytest exits 5 when it collected no tests
    TestCommand(
        "python",
        ("pyproject.toml", "setup.py", "requirements.txt", "pytest.ini", "tox.ini"),
        ("pytest",),
        no_tests_exit_codes=(5,),
    ),
    TestCommand("go", ("go.mod",), ("go", "test", "./...")),
)


def detect_test_command(worktree_path: Path, config: dict[str, Any]) -> Optional[TestCommand]:
    configured = config.get("baseline", {}).get("command")
    if configured:
        return TestCommand("configured", (), tuple(shlex.split(configured)))

    for candidate in TEST_COMMANDS:
        if candidate.applies(worktree_path):
            return candidate
    return None


def _sum_matches(pattern: re.Pattern[str], text: str) -> Optional[int]:
    matches = pattern.findall(text)
    if not matches:
        return None
    return sum(int(m) for m in matches)


def parse_counts(output: str) -> tuple[Optional[int], Optional[int]]:
    """Return (passed, failed) as printed by the runner, None where absent."""
    output = _JEST_SUITES_LINE.sub("", output)
    passed = _sum_matches(_PASSED_PATTERN, output)
    failed = _sum_matches(_FAILED_PATTERN, output)

    # go test -v prints one line per test instead of a summary
    if passed is None:
        go_passed = len(_GO_PASS_PATTERN.findall(output))
        passed = go_passed or None
    if failed is None:
        go_failed = len(_GO_FAIL_PATTERN.findall(output))
        failed = go_failed or None

    return passed, failed


def verify_baseline(
    worktree_path: Path,
    config: dict[str, Any],
    *,
    runner: Runner = run_command,
) -> BaselineResult:
    """Run the project's tests once in `worktree_path` and classify the outcome."""
    baseline_cfg = config.get("baseline", {})
    test_command = detect_test_command(worktree_path, config)
    if test_command is None:
        logger.info("No test command detected in %s", worktree_path)
        return NoTestsConfigured()

    result = runner(
        list(test_command.command),
        cwd=worktree_path,
        timeout=baseline_cfg.get("timeout"),
    )

    if result.returncode in test_command.no_tests_exit_codes and not result.timed_out:
        logger.info("%s collected no tests", test_command.name)
        return NoTestsConfigured()

    output = result.output
    passed, failed = parse_counts(output)

    if result.ok:
        return BaselinePassed(count=passed)

    summary = tail(output, max_lines=baseline_cfg.get("summary_lines", 30))
    if result.error_message:
        summary = f"{result.error_message}\n{summary}" if summary else result.error_message
    logger.warning("Baseline tests failed in %s", worktree_path)
    return BaselineFailed(count=failed, failure_summary=summary)
