"""
Worktree root resolution.

All worktrees for a project live in one sibling directory of the primary
checkout, named `<project>.worktrees`:

    /d/radial                       primary checkout
    /d/radial.worktrees/feature-x   linked worktree
    /d/radial.worktrees/feature/auth

Resolution works purely on path segments and never touches the filesystem.
Running it from anywhere inside an existing worktree root (or from the root
itself) yields that same root, so worktrees never end up nested inside each
other.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .models import WorktreeLocation

WORKTREES_SUFFIX = ".worktrees"


def worktree_root_name(project_root: Path) -> str:
    return f"{project_root.name}{WORKTREES_SUFFIX}"


def _is_root_segment(segment: str, expected: str) -> bool:
    if segment == expected:
        return True
    # Generic `*.worktrees`; a bare ".worktrees" segment has no project stem
    return segment.endswith(WORKTREES_SUFFIX) and len(segment) > len(WORKTREES_SUFFIX)


def _is_within(path: Path, ancestor: Path) -> bool:
    return path == ancestor or ancestor in path.parents


def find_enclosing_root(current_location: Path, project_root: Path) -> Optional[Path]:
    """
    Return the outermost worktree-root directory on `current_location`'s path,
    or None when the location is not inside (or at) a worktree root.

    An exact `<project>.worktrees` segment is preferred over a generic
    `*.worktrees` one. Candidates at or below `project_root` are ignored.
    """
    expected = worktree_root_name(project_root)
    parts = current_location.parts

    candidates: list[Path] = []
    for index, segment in enumerate(parts):
        if not _is_root_segment(segment, expected):
            continue
        candidate = Path(*parts[: index + 1])
        if _is_within(candidate, project_root):
            continue
        candidates.append(candidate)

    if not candidates:
        return None

    exact = [c for c in candidates if c.name == expected]
    return (exact or candidates)[0]


def resolve_location(current_location: Path, project_root: Path) -> WorktreeLocation:
    """
    Map the caller's location to the worktree root for `project_root`.

    Precedence:
      1. inside a branch directory of a worktree root -> that root
      2. at a worktree root                            -> the location itself
      3. anywhere else                                 -> sibling `<project>.worktrees`
    """
    enclosing = find_enclosing_root(current_location, project_root)
    if enclosing is not None:
        root = enclosing
    else:
        root = project_root.parent / worktree_root_name(project_root)
    return WorktreeLocation(worktree_root_dir=root, project_root=project_root)
