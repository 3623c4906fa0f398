"""
Shared pytest fixtures.

Key fixture: `isolated_dir` — changes the working directory to a fresh
temporary directory for every test that requests it, so nothing a test does
can touch the real repository.
"""

import copy

import pytest

from sprout.config import DEFAULT_CONFIG
from sprout.process import CommandResult


@pytest.fixture
def isolated_dir(tmp_path, monkeypatch):
    """Change CWD to a fresh temp directory."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def config():
    """A private copy of the built-in defaults."""
    return copy.deepcopy(DEFAULT_CONFIG)


class FakeRunner:
    """Records commands and replays canned results keyed on argv[0]."""

    def __init__(self, results=None):
        self.results = dict(results or {})
        self.calls = []

    def __call__(self, args, *, cwd, timeout=None, env=None):
        argv = tuple(str(a) for a in args)
        self.calls.append({"args": argv, "cwd": cwd, "timeout": timeout, "env": env})
        result = self.results.get(argv[0])
        if result is None:
            return CommandResult(args=argv, returncode=0)
        return CommandResult(
            args=argv,
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            timed_out=result.timed_out,
            error_message=result.error_message,
        )


@pytest.fixture
def fake_runner():
    return FakeRunner()
