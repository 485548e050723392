from __future__ import annotations

import asyncio
import shutil
import subprocess
from collections import deque
from pathlib import Path
from typing import Iterable, Iterator

import pytest

from openbot.approval import ApprovalDecision, ApprovalRequest
from openbot.codex import EngineClosedError, EngineEvent, SessionInfo
from openbot.codex.events import MESSAGE_DELTA, TURN_ABORTED, TURN_COMPLETE
from openbot.config import OpenBotSettings, get_settings


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True)
    return result.stdout.strip()


BLOCK = object()
"""Script marker: stall the turn until `ScriptedEngine.interrupt` is called."""


def scripted_turn(*messages: str) -> list[EngineEvent]:
    """A turn that streams ``messages`` as deltas and completes."""

    events = [EngineEvent(MESSAGE_DELTA, {"delta": message}) for message in messages]
    events.append(EngineEvent(TURN_COMPLETE))
    return events


class ScriptedEngine:
    """In-process engine that replays scripted turns."""

    def __init__(
        self,
        turns: Iterable[Iterable[object]] | None = None,
        *,
        session_id: str = "scripted-session",
        model: str = "scripted-model",
    ) -> None:
        self.turns = [list(turn) for turn in turns or []]
        self.session_id = session_id
        self.model = model
        self.prompts: list[str] = []
        self.approvals: list[tuple[ApprovalRequest, ApprovalDecision]] = []
        self.resumed_from: list[str | None] = []
        self.interrupted = False
        self.shutdown_timeout: float | None = None
        self._queue: deque[object] = deque()
        self._interrupt = asyncio.Event()
        self._closed = False

    async def start(self, resume_session_id: str | None = None) -> SessionInfo:
        self.resumed_from.append(resume_session_id)
        return SessionInfo(session_id=resume_session_id or self.session_id, model=self.model)

    async def submit_turn(self, prompt: str) -> None:
        if self._closed:
            raise EngineClosedError("Scripted engine has been shut down")
        self.prompts.append(prompt)
        script = self.turns.pop(0) if self.turns else scripted_turn("ok")
        self._queue = deque(script)

    async def next_event(self) -> EngineEvent:
        if not self._queue:
            return EngineEvent(TURN_COMPLETE)
        item = self._queue.popleft()
        if item is BLOCK:
            await self._interrupt.wait()
            self._queue.clear()
            return EngineEvent(TURN_ABORTED, {"reason": "interrupted"})
        if isinstance(item, BaseException):
            raise item
        assert isinstance(item, EngineEvent)
        return item

    async def respond_approval(self, request: ApprovalRequest, decision: ApprovalDecision) -> None:
        self.approvals.append((request, decision))

    async def interrupt(self) -> None:
        self.interrupted = True
        self._interrupt.set()

    async def shutdown(self, timeout: float) -> None:
        self.shutdown_timeout = timeout
        self._closed = True


@pytest.fixture
def git_repo(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    if shutil.which("git") is None:
        pytest.skip("git is not installed")

    monkeypatch.setenv("GIT_AUTHOR_NAME", "OpenBot Tests")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "tests@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "OpenBot Tests")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "tests@example.com")

    repo = tmp_path / "My Repo"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "checkout", "-q", "-b", "main")
    (repo / "README.md").write_text("hello\n", encoding="utf-8")
    (repo / ".gitignore").write_text("*.log\n", encoding="utf-8")
    git(repo, "add", "README.md", ".gitignore")
    git(repo, "-c", "commit.gpgsign=false", "commit", "-q", "-m", "initial")
    return repo.resolve()


@pytest.fixture
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[OpenBotSettings]:
    monkeypatch.setenv("OPENBOT_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("OPENBOT_INTERRUPT_GRACE", "1")
    monkeypatch.setenv("OPENBOT_SHUTDOWN_TIMEOUT", "1")
    monkeypatch.setenv("OPENBOT_ERROR_SETTLE", "0.5")
    monkeypatch.delenv("OPENBOT_SESSION_DIR", raising=False)
    monkeypatch.delenv("OPENBOT_CODEX_ARGS", raising=False)
    get_settings.cache_clear()
    yield OpenBotSettings()
    get_settings.cache_clear()
