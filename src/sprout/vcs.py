"""
Git access and worktree creation.

`GitClient` keeps each method mapped to a single git command so side effects
are easy to reason about. Only `create_linked_working_copy()` mutates the
repository.

`WorktreeProvisioner` is the only step in a provisioning run that changes
durable git state: it checks the target path, then asks git for a new linked
working copy on a new branch.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)


class SproutError(RuntimeError):
    """Base class for errors that abort a provisioning run."""


class VcsError(SproutError):
    """A git command failed (branch already in use, bad ref, disk or permission error)."""


class PathCollision(SproutError):
    """The target worktree directory already exists."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"Worktree path already exists: {path}")
        self.path = path


class GitClient:
    def __init__(self, *, control_root: Path) -> None:
        self.control_root = control_root

    def current_branch(self, *, cwd: Path) -> str:
        out = self._git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd).strip()
        if out == "HEAD":
            raise VcsError("Detached HEAD; check out a named branch or pass --base.")
        return out

    def repository_root(self, *, cwd: Path) -> Path:
        """
        Return the primary checkout's root, even when `cwd` is inside a linked
        worktree. `git rev-parse --show-toplevel` would return the worktree
        itself, which would nest new worktree roots inside old ones.
        """
        common = self._git(["rev-parse", "--git-common-dir"], cwd=cwd).strip()
        common_dir = Path(common)
        if not common_dir.is_absolute():
            common_dir = cwd / common_dir
        common_dir = common_dir.resolve()
        if common_dir.name == ".git":
            return common_dir.parent
        # Bare repositories and unusual layouts: fall back to the toplevel
        return Path(self._git(["rev-parse", "--show-toplevel"], cwd=cwd).strip()).resolve()

    def branch_exists(self, branch: str) -> bool:
        p = subprocess.run(
            ["git", "show-ref", "--verify", "--quiet", f"refs/heads/{branch}"],
            cwd=self.control_root,
            check=False,
        )
        return p.returncode == 0

    def create_linked_working_copy(self, path: Path, *, new_branch: str, base_branch: str) -> None:
        self._git(
            ["worktree", "add", "-b", new_branch, str(path), base_branch],
            cwd=self.control_root,
        )

    def _git(self, args: list[str], *, cwd: Path) -> str:
        try:
            p = subprocess.run(
                ["git", *args],
                cwd=cwd,
                text=True,
                check=True,
                capture_output=True,
            )
        except FileNotFoundError as exc:
            raise VcsError("'git' command not found.") from exc
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or exc.stdout or "").strip()
            raise VcsError(detail or f"git {' '.join(args)} exited with {exc.returncode}") from exc
        return p.stdout


class WorktreeProvisioner:
    """Creates `<worktree_root_dir>/<branch_name>` as a linked working copy."""

    def __init__(self, git: GitClient) -> None:
        self.git = git

    def create(self, worktree_root_dir: Path, branch_name: str, base_branch: str) -> Path:
        """
        Create the worktree and return its path.

        Raises PathCollision if the path exists and VcsError if git refuses.
        """
        worktree_path = worktree_root_dir / branch_name
        if worktree_path.exists():
            raise PathCollision(worktree_path)
        if self.git.branch_exists(branch_name):
            raise VcsError(f"Branch '{branch_name}' already exists.")

        created_root = not worktree_root_dir.exists()
        try:
            worktree_root_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise VcsError(f"Cannot create {worktree_root_dir}: {exc}") from exc

        logger.info(
            "Creating worktree %s on new branch %s from %s",
            worktree_path,
            branch_name,
            base_branch,
        )
        try:
            self.git.create_linked_working_copy(
                worktree_path,
                new_branch=branch_name,
                base_branch=base_branch,
            )
        except VcsError:
            if created_root:
                self._remove_if_empty(worktree_root_dir)
            raise
        return worktree_path

    @staticmethod
    def _remove_if_empty(directory: Path) -> None:
        if any(directory.iterdir()):
            logger.warning("Leaving %s in place: git left files behind", directory)
            return
        logger.info("Removing empty worktree root %s", directory)
        try:
            directory.rmdir()
        except OSError as exc:
            logger.warning("Cannot remove %s: %s", directory, exc)
