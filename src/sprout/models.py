"""Pydantic models for a sprout provisioning run."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ProvisionState(str, Enum):
    """States of the provisioning state machine, in the order they are visited."""
    RESOLVING = "resolving"
    CREATING = "creating"
    SETTING_UP = "setting_up"
    VERIFYING = "verifying"
    READY = "ready"
    READY_NEEDS_DECISION = "ready_needs_decision"
    FAILED = "failed"


class ProvisionStatus(str, Enum):
    """Terminal outcome handed back to the caller."""
    # Worktree created and baseline clean (or no tests configured)
    READY = "ready"
    # Worktree created but the baseline tests failed; caller must decide
    READY_NEEDS_DECISION = "ready_needs_decision"
    # Worktree creation failed; nothing else ran
    FAILED = "failed"


class ErrorKind(str, Enum):
    PATH_COLLISION = "path_collision"
    VCS_ERROR = "vcs_error"


class ProvisionRequest(BaseModel):
    """Immutable input to one provisioning run."""
    model_config = ConfigDict(frozen=True)

    # Where the caller invoked sprout from
    current_location: Path
    # Primary repository root (never a linked worktree)
    project_root: Path
    branch_name: str
    base_branch: str
    # Free-form feature label shown in the report; defaults to the branch name
    label: Optional[str] = None


class WorktreeLocation(BaseModel):
    """Where the worktrees for one project live."""
    model_config = ConfigDict(frozen=True)

    worktree_root_dir: Path
    project_root: Path

    def worktree_path_for(self, branch_name: str) -> Path:
        return self.worktree_root_dir / branch_name


class SetupOutcome(BaseModel):
    """Record of a single setup action; one per action attempted."""
    model_config = ConfigDict(frozen=True)

    action: str
    attempted: bool = True
    succeeded: bool
    detail: str = ""


# ── Baseline variants ─────────────────────────────────────────────────────────


class NoTestsConfigured(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["no_tests"] = "no_tests"


class BaselinePassed(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["passed"] = "passed"
    # Number of passing tests; None when the runner output has no count
    count: Optional[int] = None


class BaselineFailed(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["failed"] = "failed"
    # Number of failing tests; None when the runner output has no count
    count: Optional[int] = None
    failure_summary: str = ""


BaselineResult = Annotated[
    Union[NoTestsConfigured, BaselinePassed, BaselineFailed],
    Field(discriminator="kind"),
]


class ProvisionError(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str


class ProvisionResult(BaseModel):
    """
    Final output of a provisioning run. Built once by the orchestrator.

    `baseline` is None and `setup_outcomes` empty exactly when the worktree
    could not be created.
    """
    model_config = ConfigDict(frozen=True)

    worktree_path: Path
    branch_name: str
    base_branch: str
    label: str
    status: ProvisionStatus
    baseline: Optional[BaselineResult] = None
    setup_outcomes: tuple[SetupOutcome, ...] = ()
    error: Optional[ProvisionError] = None
