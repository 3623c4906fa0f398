"""
Tests for orchestrator.py — the provisioning state machine.

The provisioner, setup and verify steps are replaced with mocks so no git or
package-manager commands run.
"""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError

from sprout.models import (
    BaselineFailed,
    BaselinePassed,
    ErrorKind,
    NoTestsConfigured,
    ProvisionRequest,
    ProvisionState,
    ProvisionStatus,
    SetupOutcome,
)
from sprout.orchestrator import build_request, provision
from sprout.vcs import PathCollision, VcsError

PROJECT = Path("/d/radial")
ROOT = Path("/d/radial.worktrees")


def _request(current=PROJECT, branch="feature/auth", label=None) -> ProvisionRequest:
    return ProvisionRequest(
        current_location=current,
        project_root=PROJECT,
        branch_name=branch,
        base_branch="main",
        label=label,
    )


def _provisioner(error: Exception | None = None) -> MagicMock:
    m = MagicMock()
    if error is not None:
        m.create.side_effect = error
    else:
        m.create.side_effect = lambda root, branch, base: root / branch
    return m


def test_ready_when_baseline_passes(config):
    setup = MagicMock(return_value=[SetupOutcome(action="node", succeeded=True)])
    verify = MagicMock(return_value=BaselinePassed(count=47))
    states: list[ProvisionState] = []

    result = provision(
        _request(),
        config,
        provisioner=_provisioner(),
        setup=setup,
        verify=verify,
        on_state=states.append,
    )

    assert result.status == ProvisionStatus.READY
    assert result.worktree_path == ROOT / "feature" / "auth"
    assert result.baseline == BaselinePassed(count=47)
    assert result.label == "feature/auth"
    assert [o.action for o in result.setup_outcomes] == ["node"]
    assert states == [
        ProvisionState.RESOLVING,
        ProvisionState.CREATING,
        ProvisionState.SETTING_UP,
        ProvisionState.VERIFYING,
        ProvisionState.READY,
    ]


def test_branch_subdirectory_reuses_shared_root(config):
    provisioner = _provisioner()

    result = provision(
        _request(current=ROOT / "feature-x", branch="bugfix/auth"),
        config,
        provisioner=provisioner,
        setup=MagicMock(return_value=[]),
        verify=MagicMock(return_value=NoTestsConfigured()),
    )

    provisioner.create.assert_called_once_with(ROOT, "bugfix/auth", "main")
    assert result.worktree_path == ROOT / "bugfix" / "auth"


def test_setup_and_verify_receive_worktree_path(config):
    setup = MagicMock(return_value=[])
    verify = MagicMock(return_value=NoTestsConfigured())

    provision(
        _request(current=PROJECT / "src"),
        config,
        provisioner=_provisioner(),
        setup=setup,
        verify=verify,
    )

    worktree = ROOT / "feature" / "auth"
    path_arg, context, _cfg = setup.call_args.args
    assert path_arg == worktree
    assert context.worktree_path == worktree
    assert context.origin == PROJECT / "src"
    assert context.project_root == PROJECT
    assert context.base_branch == "main"
    verify.assert_called_once_with(worktree, config)


@pytest.mark.parametrize(
    ("error", "kind"),
    [
        (PathCollision(ROOT / "feature" / "auth"), ErrorKind.PATH_COLLISION),
        (VcsError("fatal: a branch named 'feature/auth' already exists"), ErrorKind.VCS_ERROR),
    ],
)
def test_creation_failure_halts_pipeline(config, error, kind):
    setup = MagicMock()
    verify = MagicMock()
    states: list[ProvisionState] = []

    result = provision(
        _request(),
        config,
        provisioner=_provisioner(error),
        setup=setup,
        verify=verify,
        on_state=states.append,
    )

    assert result.status == ProvisionStatus.FAILED
    assert result.error.kind == kind
    assert result.error.message == str(error)
    assert result.setup_outcomes == ()
    assert result.baseline is None
    setup.assert_not_called()
    verify.assert_not_called()
    assert states[-1] == ProvisionState.FAILED
    assert ProvisionState.SETTING_UP not in states


def test_setup_failures_do_not_block_verification(config):
    outcomes = [
        SetupOutcome(action="custom-script", succeeded=False, detail="exited with 1"),
        SetupOutcome(action="node", succeeded=True),
    ]
    verify = MagicMock(return_value=BaselinePassed(count=3))

    result = provision(
        _request(),
        config,
        provisioner=_provisioner(),
        setup=MagicMock(return_value=outcomes),
        verify=verify,
    )

    verify.assert_called_once()
    assert result.status == ProvisionStatus.READY
    assert list(result.setup_outcomes) == outcomes


def test_failing_baseline_needs_decision(config):
    failed = BaselineFailed(count=2, failure_summary="2 failed")

    result = provision(
        _request(),
        config,
        provisioner=_provisioner(),
        setup=MagicMock(return_value=[]),
        verify=MagicMock(return_value=failed),
    )

    assert result.status == ProvisionStatus.READY_NEEDS_DECISION
    assert result.baseline == failed
    assert result.error is None


def test_no_tests_is_ready(config):
    result = provision(
        _request(),
        config,
        provisioner=_provisioner(),
        setup=MagicMock(return_value=[]),
        verify=MagicMock(return_value=NoTestsConfigured()),
    )
    assert result.status == ProvisionStatus.READY
    assert result.setup_outcomes == ()


def test_skip_switches(config):
    setup = MagicMock()
    verify = MagicMock()

    result = provision(
        _request(label="Auth rework"),
        config,
        provisioner=_provisioner(),
        setup=setup,
        verify=verify,
        run_setup_actions=False,
        run_tests=False,
    )

    setup.assert_not_called()
    verify.assert_not_called()
    assert result.baseline == NoTestsConfigured()
    assert result.label == "Auth rework"


def test_config_can_disable_steps(config):
    config["setup"]["enabled"] = False
    config["baseline"]["enabled"] = False
    setup = MagicMock()
    verify = MagicMock()

    provision(_request(), config, provisioner=_provisioner(), setup=setup, verify=verify)

    setup.assert_not_called()
    verify.assert_not_called()


def test_result_is_immutable(config):
    result = provision(
        _request(),
        config,
        provisioner=_provisioner(),
        setup=MagicMock(return_value=[]),
        verify=MagicMock(return_value=NoTestsConfigured()),
    )
    with pytest.raises(ValidationError):
        result.status = ProvisionStatus.FAILED


def test_result_round_trips_through_json(config):
    result = provision(
        _request(),
        config,
        provisioner=_provisioner(),
        setup=MagicMock(return_value=[]),
        verify=MagicMock(return_value=BaselineFailed(count=1, failure_summary="x")),
    )
    restored = type(result).model_validate_json(result.model_dump_json())
    assert restored == result


# ── build_request ─────────────────────────────────────────────────────────────


def test_build_request_uses_current_branch_by_default():
    git = MagicMock()
    git.repository_root.return_value = PROJECT
    git.current_branch.return_value = "develop"

    request = build_request(git, PROJECT / "src", "feature/x")

    assert request.project_root == PROJECT
    assert request.base_branch == "develop"
    assert request.current_location == PROJECT / "src"


def test_build_request_explicit_base_skips_current_branch():
    git = MagicMock()
    git.repository_root.return_value = PROJECT

    request = build_request(git, PROJECT, "feature/x", base_branch="release/1.2")

    assert request.base_branch == "release/1.2"
    git.current_branch.assert_not_called()


def test_build_request_propagates_detached_head():
    git = MagicMock()
    git.repository_root.return_value = PROJECT
    git.current_branch.side_effect = VcsError("Detached HEAD")

    with pytest.raises(VcsError):
        build_request(git, PROJECT, "feature/x")
