"""Workspace identity: canonical repository root discovery and slug derivation.

Every isolated checkout of a repository shares the repository's ``.git``
directory, so the canonical root is derived from ``--git-common-dir`` rather
than ``--show-toplevel``. Two distinct repositories that share a directory
basename produce the same slug; pass an explicit project override to keep
them apart.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from .vcs import GitError, run_git

_SLUG_INVALID = re.compile(r"[^a-z0-9-]+")
_SLUG_COLLAPSE = re.compile(r"-{2,}")


class NotARepository(RuntimeError):
    """Raised when a path is outside any git repository and the check is not skipped."""


@dataclass(frozen=True, slots=True)
class WorkspaceId:
    """Stable identity of the repository a bot works against."""

    slug: str
    root: Path
    is_repository: bool = True

    def __str__(self) -> str:
        return self.slug


def slugify(value: str, *, fallback: str = "project") -> str:
    """Lowercase ``value`` and squash everything outside ``[a-z0-9-]`` to single hyphens."""

    slug = _SLUG_INVALID.sub("-", value.strip().lower())
    slug = _SLUG_COLLAPSE.sub("-", slug).strip("-")
    return slug or fallback


def slug_from_path(path: Path) -> str:
    return slugify(Path(path).name)


def find_repository_root(path: Path) -> Path | None:
    """Return the main repository root for ``path`` or ``None`` outside git.

    Works from inside linked worktrees: the common git directory always lives
    in the main checkout, so its parent is the canonical root.
    """

    start = Path(path)
    base = start if start.is_dir() else start.parent
    if not base.exists():
        return None
    try:
        result = run_git(
            ["rev-parse", "--path-format=absolute", "--git-common-dir"],
            cwd=base,
            check=False,
        )
    except GitError:
        return None
    if result.returncode != 0:
        return None

    common_dir = Path(result.stdout.strip())
    if common_dir.name == ".git":
        return common_dir.parent.resolve()

    # Bare repositories and unusual layouts: fall back to the work tree top level.
    toplevel = run_git(["rev-parse", "--show-toplevel"], cwd=base, check=False)
    if toplevel.returncode != 0 or not toplevel.stdout.strip():
        return None
    return Path(toplevel.stdout.strip()).resolve()


def resolve(path: Path, *, skip_check: bool = False, override: str | None = None) -> WorkspaceId:
    """Resolve ``path`` to its :class:`WorkspaceId`.

    ``override`` replaces the derived slug; ``skip_check`` treats ``path``
    itself as the root when it is not inside a repository.
    """

    start = Path(path).expanduser().resolve()
    root = find_repository_root(start)
    is_repository = root is not None
    if root is None:
        if not skip_check:
            raise NotARepository(
                f"Not inside a git repository: {start}. Use --skip-git-check to run anyway."
            )
        root = start

    slug = slugify(override) if override else slug_from_path(root)
    return WorkspaceId(slug=slug, root=root, is_repository=is_repository)


__all__ = [
    "NotARepository",
    "WorkspaceId",
    "find_repository_root",
    "resolve",
    "slug_from_path",
    "slugify",
]
