"""Ephemeral git worktrees: one isolated checkout and branch per bot run.

The checkout lives in a private temporary directory owned by the current
process, so concurrent bots on the same repository never share mutable
filesystem state. Release removes the checkout but never the branch, so
commits made during the run always survive it.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator

from .vcs import GitError, branch_exists, current_branch, run_git
from .workspace import slugify

logger = logging.getLogger(__name__)

MAX_BRANCH_ATTEMPTS = 32


class WorktreeError(RuntimeError):
    """Raised when an isolated checkout or its branch cannot be created."""


@dataclass(slots=True)
class WorktreeHandle:
    """Where a run works: either an isolated checkout or the repository root itself."""

    path: Path
    root: Path
    branch: str | None = None
    base_branch: str | None = None
    isolated: bool = False
    scratch_dir: Path | None = None


class WorktreeLifecycle:
    """Create and tear down isolated checkouts for bot runs."""

    def __init__(
        self,
        *,
        namespace: str = "openbot",
        carry_dirty_state: bool = True,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._namespace = namespace
        self._carry_dirty_state = carry_dirty_state
        self._clock = clock or time.time

    def branch_name(self, bot_name: str, timestamp: int) -> str:
        return f"{self._namespace}/{slugify(bot_name, fallback='bot')}-{timestamp}"

    def acquire(self, root: Path, bot_name: str, use_isolation: bool) -> WorktreeHandle:
        root = Path(root)
        if not use_isolation:
            return WorktreeHandle(path=root, root=root)

        base_branch = current_branch(root)
        scratch_dir = Path(tempfile.mkdtemp(prefix=f"{self._namespace}-{slugify(bot_name, fallback='bot')}-"))
        # Unique basename so git's per-worktree admin directory never collides across processes.
        checkout = scratch_dir / scratch_dir.name
        try:
            branch = self._add_worktree(root, bot_name, checkout)
        except (GitError, WorktreeError) as exc:
            shutil.rmtree(scratch_dir, ignore_errors=True)
            if isinstance(exc, WorktreeError):
                raise
            raise WorktreeError(f"Unable to create worktree in {root}: {exc}") from exc

        handle = WorktreeHandle(
            path=checkout,
            root=root,
            branch=branch,
            base_branch=base_branch,
            isolated=True,
            scratch_dir=scratch_dir,
        )

        if self._carry_dirty_state:
            try:
                copy_dirty_state(root, checkout)
            except (GitError, OSError) as exc:
                self.release(handle)
                raise WorktreeError(f"Failed to copy working tree state into {checkout}: {exc}") from exc

        logger.info(
            "Created worktree",
            extra={"branch": branch, "path": str(checkout), "base_branch": base_branch},
        )
        return handle

    def _add_worktree(self, root: Path, bot_name: str, checkout: Path) -> str:
        """Create ``checkout`` on a fresh branch and return the branch name.

        Another process may claim the same name between the existence check
        and ``worktree add``; the timestamp is bumped and the add retried.
        """

        timestamp = int(self._clock())
        for _ in range(MAX_BRANCH_ATTEMPTS):
            branch = self.branch_name(bot_name, timestamp)
            if branch_exists(root, branch):
                timestamp += 1
                continue
            result = run_git(["worktree", "add", "-b", branch, str(checkout)], cwd=root, check=False)
            if result.returncode == 0:
                return branch
            if not branch_exists(root, branch):
                message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
                raise WorktreeError(f"Failed to create worktree for branch {branch}: {message}")
            timestamp += 1
        raise WorktreeError(f"No free branch name for {bot_name} after {MAX_BRANCH_ATTEMPTS} attempts")

    def release(self, handle: WorktreeHandle) -> None:
        """Remove the isolated checkout. Failures are logged and leave an orphan behind."""

        if not handle.isolated:
            return

        try:
            result = run_git(["worktree", "remove", "--force", str(handle.path)], cwd=handle.root, check=False)
            if result.returncode != 0:
                logger.warning(
                    "git worktree remove failed; falling back to directory removal",
                    extra={"path": str(handle.path), "stderr": result.stderr.strip()},
                )
                shutil.rmtree(handle.path, ignore_errors=True)
                run_git(["worktree", "prune"], cwd=handle.root, check=False)
        except GitError as exc:
            logger.warning("Worktree cleanup could not run git", extra={"path": str(handle.path), "error": str(exc)})

        if handle.scratch_dir is not None:
            try:
                shutil.rmtree(handle.scratch_dir)
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.warning(
                    "Unable to remove worktree directory",
                    extra={"path": str(handle.scratch_dir), "error": str(exc)},
                )

        if handle.path.exists():
            logger.warning(
                "Orphaned worktree left on disk; remove it manually",
                extra={"path": str(handle.path), "branch": handle.branch},
            )
        else:
            logger.info("Removed worktree", extra={"path": str(handle.path), "branch": handle.branch})

    @contextmanager
    def scoped(self, root: Path, bot_name: str, use_isolation: bool) -> Iterator[WorktreeHandle]:
        """Acquire a worktree and release it on every exit path, including cancellation."""

        handle = self.acquire(root, bot_name, use_isolation)
        try:
            yield handle
        finally:
            self.release(handle)


def _paths(output: str) -> list[str]:
    return [relpath for relpath in output.split("\0") if relpath]


def copy_dirty_state(repo_root: Path, checkout: Path) -> None:
    """Mirror tracked modifications and untracked files of ``repo_root`` into ``checkout``.

    Paths are read NUL-separated so names git would otherwise quote (non-ASCII,
    embedded newlines) are copied as-is.
    """

    tracked = run_git(["diff", "HEAD", "--name-only", "--no-renames", "-z"], cwd=repo_root, check=False)
    for relpath in _paths(tracked.stdout):
        source = repo_root / relpath
        target = checkout / relpath
        if source.is_file():
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
        elif not source.exists() and target.exists():
            target.unlink()

    untracked = run_git(["ls-files", "--others", "--exclude-standard", "-z"], cwd=repo_root)
    for relpath in _paths(untracked.stdout):
        source = repo_root / relpath
        if source.is_file():
            target = checkout / relpath
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)


__all__ = ["MAX_BRANCH_ATTEMPTS", "WorktreeError", "WorktreeHandle", "WorktreeLifecycle", "copy_dirty_state"]
