from __future__ import annotations

import asyncio
import json
import logging
import os
import subprocess
import sys
import textwrap
from pathlib import Path

import pytest

import openbot.worktree as worktree_module
from openbot.vcs import GitError, branch_exists, list_worktrees
from openbot.worktree import WorktreeLifecycle

from conftest import git


def fixed_clock() -> float:
    return 1000.0


def test_no_isolation_uses_repository_root(git_repo: Path) -> None:
    lifecycle = WorktreeLifecycle(clock=fixed_clock)

    handle = lifecycle.acquire(git_repo, "writer", use_isolation=False)

    assert handle.path == git_repo
    assert handle.isolated is False
    assert handle.branch is None
    lifecycle.release(handle)
    assert git_repo.exists()


def test_isolated_checkout_gets_its_own_branch(git_repo: Path) -> None:
    lifecycle = WorktreeLifecycle(clock=fixed_clock)

    handle = lifecycle.acquire(git_repo, "Code Writer", use_isolation=True)
    try:
        assert handle.isolated
        assert handle.branch == "openbot/code-writer-1000"
        assert handle.base_branch == "main"
        assert handle.path != git_repo
        assert (handle.path / "README.md").read_text(encoding="utf-8") == "hello\n"
        assert git(handle.path, "rev-parse", "--abbrev-ref", "HEAD") == "openbot/code-writer-1000"
    finally:
        lifecycle.release(handle)


def test_existing_branch_bumps_timestamp(git_repo: Path) -> None:
    git(git_repo, "branch", "openbot/writer-1000")
    lifecycle = WorktreeLifecycle(clock=fixed_clock)

    with lifecycle.scoped(git_repo, "writer", use_isolation=True) as handle:
        assert handle.branch == "openbot/writer-1001"


def test_dirty_state_is_carried_into_checkout(git_repo: Path) -> None:
    (git_repo / "README.md").write_text("edited\n", encoding="utf-8")
    (git_repo / "notes").mkdir()
    (git_repo / "notes" / "todo.txt").write_text("untracked\n", encoding="utf-8")
    (git_repo / "build.log").write_text("ignored\n", encoding="utf-8")
    lifecycle = WorktreeLifecycle(clock=fixed_clock)

    with lifecycle.scoped(git_repo, "writer", use_isolation=True) as handle:
        assert (handle.path / "README.md").read_text(encoding="utf-8") == "edited\n"
        assert (handle.path / "notes" / "todo.txt").read_text(encoding="utf-8") == "untracked\n"
        assert not (handle.path / "build.log").exists()


def test_dirty_state_can_be_left_behind(git_repo: Path) -> None:
    (git_repo / "README.md").write_text("edited\n", encoding="utf-8")
    lifecycle = WorktreeLifecycle(carry_dirty_state=False, clock=fixed_clock)

    with lifecycle.scoped(git_repo, "writer", use_isolation=True) as handle:
        assert (handle.path / "README.md").read_text(encoding="utf-8") == "hello\n"


def test_release_removes_checkout_but_keeps_branch(git_repo: Path) -> None:
    lifecycle = WorktreeLifecycle(clock=fixed_clock)
    handle = lifecycle.acquire(git_repo, "writer", use_isolation=True)
    (handle.path / "feature.txt").write_text("work\n", encoding="utf-8")
    git(handle.path, "add", "feature.txt")
    git(handle.path, "-c", "commit.gpgsign=false", "commit", "-q", "-m", "bot work")

    lifecycle.release(handle)

    assert not handle.path.exists()
    assert handle.scratch_dir is not None and not handle.scratch_dir.exists()
    assert branch_exists(git_repo, "openbot/writer-1000")
    registered = [entry.get("worktree") for entry in list_worktrees(git_repo)]
    assert str(handle.path) not in registered
    assert git(git_repo, "log", "--format=%s", "-1", "openbot/writer-1000") == "bot work"


def test_scoped_releases_on_exception(git_repo: Path) -> None:
    lifecycle = WorktreeLifecycle(clock=fixed_clock)
    seen: list[Path] = []

    with pytest.raises(RuntimeError):
        with lifecycle.scoped(git_repo, "writer", use_isolation=True) as handle:
            seen.append(handle.path)
            raise RuntimeError("boom")

    assert seen and not seen[0].exists()


def test_scoped_releases_on_task_cancellation(git_repo: Path) -> None:
    lifecycle = WorktreeLifecycle(clock=fixed_clock)
    seen: list[Path] = []

    async def body() -> None:
        with lifecycle.scoped(git_repo, "writer", use_isolation=True) as handle:
            seen.append(handle.path)
            await asyncio.sleep(60)

    async def scenario() -> None:
        task = asyncio.create_task(body())
        while not seen:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert not seen[0].exists()


def test_release_logs_when_git_is_unavailable(
    git_repo: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    lifecycle = WorktreeLifecycle(clock=fixed_clock)
    handle = lifecycle.acquire(git_repo, "writer", use_isolation=True)

    def broken_git(*_args, **_kwargs):
        raise GitError("git executable not found on PATH")

    monkeypatch.setattr(worktree_module, "run_git", broken_git)
    caplog.set_level(logging.WARNING, logger="openbot.worktree")

    lifecycle.release(handle)

    assert any("could not run git" in record.getMessage() for record in caplog.records)
    assert handle.scratch_dir is not None and not handle.scratch_dir.exists()


def test_concurrent_bots_get_separate_checkouts(git_repo: Path) -> None:
    lifecycle = WorktreeLifecycle(clock=fixed_clock)

    with lifecycle.scoped(git_repo, "alpha", use_isolation=True) as first:
        with lifecycle.scoped(git_repo, "beta", use_isolation=True) as second:
            assert first.path != second.path
            assert first.branch == "openbot/alpha-1000"
            assert second.branch == "openbot/beta-1000"

            (first.path / "README.md").write_text("alpha\n", encoding="utf-8")
            assert (second.path / "README.md").read_text(encoding="utf-8") == "hello\n"
            assert (git_repo / "README.md").read_text(encoding="utf-8") == "hello\n"

    assert not first.path.exists()
    assert not second.path.exists()


def test_same_bot_twice_gets_distinct_branches(git_repo: Path) -> None:
    lifecycle = WorktreeLifecycle(clock=fixed_clock)

    with lifecycle.scoped(git_repo, "writer", use_isolation=True) as first:
        with lifecycle.scoped(git_repo, "writer", use_isolation=True) as second:
            assert first.branch == "openbot/writer-1000"
            assert second.branch == "openbot/writer-1001"
            assert first.path != second.path


def test_dirty_state_keeps_unusual_file_names(git_repo: Path) -> None:
    (git_repo / "café.md").write_text("menu\n", encoding="utf-8")
    git(git_repo, "add", "café.md")
    git(git_repo, "-c", "commit.gpgsign=false", "commit", "-q", "-m", "add menu")
    (git_repo / "café.md").write_text("new menu\n", encoding="utf-8")
    (git_repo / "naïve.txt").write_text("unicode\n", encoding="utf-8")
    (git_repo / "plain.txt").write_text("plain\n", encoding="utf-8")
    (git_repo / "with space.md").write_text("spaced\n", encoding="utf-8")
    (git_repo / "README.md").unlink()
    lifecycle = WorktreeLifecycle(clock=fixed_clock)

    with lifecycle.scoped(git_repo, "writer", use_isolation=True) as handle:
        assert (handle.path / "café.md").read_text(encoding="utf-8") == "new menu\n"
        assert (handle.path / "naïve.txt").read_text(encoding="utf-8") == "unicode\n"
        assert (handle.path / "plain.txt").read_text(encoding="utf-8") == "plain\n"
        assert (handle.path / "with space.md").read_text(encoding="utf-8") == "spaced\n"
        assert not (handle.path / "README.md").exists()


BOT_PROCESS = textwrap.dedent(
    """
    import json
    import os
    import sys
    import time
    from pathlib import Path

    from openbot.worktree import WorktreeLifecycle

    repo, bot, peer, rendezvous = Path(sys.argv[1]), sys.argv[2], sys.argv[3], Path(sys.argv[4])
    lifecycle = WorktreeLifecycle()
    with lifecycle.scoped(repo, bot, use_isolation=True) as handle:
        (handle.path / f"{bot}.txt").write_text(bot, encoding="utf-8")
        marker = rendezvous / f".{bot}.tmp"
        marker.write_text(str(handle.path), encoding="utf-8")
        os.replace(marker, rendezvous / bot)
        deadline = time.monotonic() + 30
        while not (rendezvous / peer).exists():
            if time.monotonic() > deadline:
                sys.exit(f"{peer} never acquired a checkout")
            time.sleep(0.05)
        report = {
            "branch": handle.branch,
            "path": str(handle.path),
            "peer_path": (rendezvous / peer).read_text(encoding="utf-8"),
            "sees_peer_file": (handle.path / f"{peer}.txt").exists(),
        }
    print(json.dumps(report))
    """
)


def test_bots_in_separate_processes_work_side_by_side(git_repo: Path, tmp_path: Path) -> None:
    script = tmp_path / "bot_process.py"
    script.write_text(BOT_PROCESS, encoding="utf-8")
    rendezvous = tmp_path / "rendezvous"
    rendezvous.mkdir()
    src = Path(__file__).resolve().parents[1] / "src"
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(src), env.get("PYTHONPATH")]))

    processes = [
        subprocess.Popen(
            [sys.executable, str(script), str(git_repo), bot, peer, str(rendezvous)],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=env,
        )
        for bot, peer in (("alice", "bob"), ("bob", "alice"))
    ]
    reports = []
    for process in processes:
        out, err = process.communicate(timeout=90)
        assert process.returncode == 0, err
        reports.append(json.loads(out))

    alice, bob = reports
    assert alice["branch"].startswith("openbot/alice-")
    assert bob["branch"].startswith("openbot/bob-")
    assert alice["path"] != bob["path"]
    assert alice["peer_path"] == bob["path"]
    assert not alice["sees_peer_file"]
    assert not bob["sees_peer_file"]
    registered = [entry.get("worktree") for entry in list_worktrees(git_repo)]
    for report in reports:
        assert not Path(report["path"]).exists()
        assert report["path"] not in registered
        assert branch_exists(git_repo, report["branch"])
