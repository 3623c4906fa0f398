"""
Provisioning state machine.

    resolving -> creating -> setting_up -> verifying -> ready
                    |                                -> ready_needs_decision
                    +-> failed

  1. Resolve the worktree root from the caller's location (pure, cannot fail).
  2. Create the linked worktree. PathCollision / VcsError end the run as
     `failed`; no setup or tests run.
  3. Run every applicable setup action. Failures are recorded, never fatal.
  4. Run the baseline tests once. A failing baseline yields
     `ready_needs_decision` so the caller decides whether to proceed.

There is no retry anywhere; a retry is a fresh invocation. Every step receives
the path it operates on explicitly; the process working directory is never
changed.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Optional

from .baseline import verify_baseline
from .environment import SetupContext, run_setup
from .models import (
    BaselineFailed,
    ErrorKind,
    NoTestsConfigured,
    ProvisionError,
    ProvisionRequest,
    ProvisionResult,
    ProvisionState,
    ProvisionStatus,
)
from .paths import resolve_location
from .vcs import GitClient, PathCollision, VcsError, WorktreeProvisioner

logger = logging.getLogger(__name__)


def provision(
    request: ProvisionRequest,
    config: dict[str, Any],
    *,
    provisioner: Optional[WorktreeProvisioner] = None,
    setup: Callable[..., list] = run_setup,
    verify: Callable[..., Any] = verify_baseline,
    on_state: Optional[Callable[[ProvisionState], None]] = None,
    run_setup_actions: bool = True,
    run_tests: bool = True,
) -> ProvisionResult:
    """
    Provision a worktree for `request` and return the single structured result.

    Parameters
    ----------
    provisioner:
        Creates the worktree; defaults to one backed by git at the project root.
    setup / verify:
        Setup and baseline steps; tests swap these for fakes.
    on_state:
        Called with each state as it is entered, terminal state included.
    run_setup_actions / run_tests:
        Skip setup or the baseline run. A skipped baseline reports
        NoTestsConfigured.
    """
    def enter(state: ProvisionState) -> None:
        logger.debug("Provisioning %s: %s", request.branch_name, state.value)
        if on_state is not None:
            on_state(state)

    if provisioner is None:
        provisioner = WorktreeProvisioner(GitClient(control_root=request.project_root))

    label = request.label or request.branch_name

    enter(ProvisionState.RESOLVING)
    location = resolve_location(request.current_location, request.project_root)
    target = location.worktree_path_for(request.branch_name)

    enter(ProvisionState.CREATING)
    try:
        worktree_path = provisioner.create(
            location.worktree_root_dir,
            request.branch_name,
            request.base_branch,
        )
    except (PathCollision, VcsError) as exc:
        kind = ErrorKind.PATH_COLLISION if isinstance(exc, PathCollision) else ErrorKind.VCS_ERROR
        logger.error("Could not create worktree %s: %s", target, exc)
        enter(ProvisionState.FAILED)
        return ProvisionResult(
            worktree_path=target,
            branch_name=request.branch_name,
            base_branch=request.base_branch,
            label=label,
            status=ProvisionStatus.FAILED,
            error=ProvisionError(kind=kind, message=str(exc)),
        )

    enter(ProvisionState.SETTING_UP)
    outcomes = []
    if run_setup_actions and config.get("setup", {}).get("enabled", True):
        context = SetupContext(
            worktree_path=worktree_path,
            branch_name=request.branch_name,
            base_branch=request.base_branch,
            project_root=request.project_root,
            origin=request.current_location,
        )
        outcomes = setup(worktree_path, context, config)

    enter(ProvisionState.VERIFYING)
    if run_tests and config.get("baseline", {}).get("enabled", True):
        baseline = verify(worktree_path, config)
    else:
        baseline = NoTestsConfigured()

    if isinstance(baseline, BaselineFailed):
        status = ProvisionStatus.READY_NEEDS_DECISION
        enter(ProvisionState.READY_NEEDS_DECISION)
    else:
        status = ProvisionStatus.READY
        enter(ProvisionState.READY)

    return ProvisionResult(
        worktree_path=worktree_path,
        branch_name=request.branch_name,
        base_branch=request.base_branch,
        label=label,
        status=status,
        baseline=baseline,
        setup_outcomes=tuple(outcomes),
    )


def build_request(
    git: GitClient,
    current_location: Path,
    branch_name: str,
    *,
    base_branch: Optional[str] = None,
    label: Optional[str] = None,
) -> ProvisionRequest:
    """
    Derive a ProvisionRequest from git for a caller at `current_location`.

    Raises VcsError when the location is not in a repository or HEAD is
    detached and no base branch was given.
    """
    project_root = git.repository_root(cwd=current_location)
    base = base_branch or git.current_branch(cwd=current_location)
    return ProvisionRequest(
        current_location=current_location,
        project_root=project_root,
        branch_name=branch_name,
        base_branch=base,
        label=label,
    )
