"""Thin git subprocess helpers shared by workspace resolution and worktree management."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Sequence

GIT_TIMEOUT = 60


class GitError(RuntimeError):
    """Raised when a git command fails or cannot be executed."""


def run_git(
    args: Sequence[str],
    *,
    cwd: Path,
    check: bool = True,
    timeout: float = GIT_TIMEOUT,
) -> subprocess.CompletedProcess[str]:
    """Run ``git`` with ``args`` in ``cwd`` and return the decoded result."""

    command = ["git", *args]
    try:
        process = subprocess.run(
            command,
            cwd=cwd,
            capture_output=True,
            text=False,
            check=False,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise GitError("git executable not found on PATH") from exc
    except subprocess.TimeoutExpired as exc:
        raise GitError(f"git {' '.join(args)} timed out after {timeout}s") from exc

    stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
    stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
    result = subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)
    if check and result.returncode != 0:
        message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
        raise GitError(f"git {' '.join(args)} failed: {message}")
    return result


def current_branch(cwd: Path) -> str | None:
    """Return the checked-out branch name, or ``None`` when detached or unborn."""

    result = run_git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd, check=False)
    if result.returncode != 0:
        return None
    branch = result.stdout.strip()
    if not branch or branch == "HEAD":
        return None
    return branch


def branch_exists(cwd: Path, branch: str) -> bool:
    result = run_git(["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"], cwd=cwd, check=False)
    return result.returncode == 0


def list_branches(cwd: Path, pattern: str | None = None) -> list[str]:
    """Return local branch names, optionally filtered by a ``for-each-ref`` pattern."""

    ref_pattern = f"refs/heads/{pattern}" if pattern else "refs/heads/"
    result = run_git(["for-each-ref", "--format=%(refname:short)", ref_pattern], cwd=cwd)
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def list_worktrees(cwd: Path) -> list[dict[str, str]]:
    """Parse ``git worktree list --porcelain`` into one dict per registered worktree."""

    result = run_git(["worktree", "list", "--porcelain"], cwd=cwd)
    entries: list[dict[str, str]] = []
    current: dict[str, str] = {}
    for line in result.stdout.splitlines():
        if not line.strip():
            if current:
                entries.append(current)
                current = {}
            continue
        key, _, value = line.partition(" ")
        current[key] = value
    if current:
        entries.append(current)
    return entries


__all__ = ["GitError", "branch_exists", "current_branch", "list_branches", "list_worktrees", "run_git"]
