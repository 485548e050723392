"""Async adapter for the Codex CLI running in protocol mode."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import shutil
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Protocol, Sequence

from ..approval import ApprovalDecision, ApprovalRequest
from .events import SESSION_CONFIGURED, SHUTDOWN_COMPLETE, EngineEvent
from .utils import config_overrides, sanitize_environment

logger = logging.getLogger(__name__)

STREAM_LIMIT = 16 * 1024 * 1024


class EngineError(RuntimeError):
    """Base class for engine failures."""


class CodexNotFoundError(EngineError):
    """Raised when the Codex CLI executable cannot be located."""


class EngineClosedError(EngineError):
    """Raised when the engine process is gone or its stream has ended."""


@dataclass(frozen=True, slots=True)
class SessionInfo:
    session_id: str
    model: str


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Per-run settings handed to an engine factory."""

    cwd: Path
    sandbox_mode: str
    approval_policy: str
    model: str | None = None
    session_dir: Path | None = None


class Engine(Protocol):
    async def start(self, resume_session_id: str | None = None) -> SessionInfo: ...

    async def submit_turn(self, prompt: str) -> None: ...

    async def next_event(self) -> EngineEvent: ...

    async def respond_approval(self, request: ApprovalRequest, decision: ApprovalDecision) -> None: ...

    async def interrupt(self) -> None: ...

    async def shutdown(self, timeout: float) -> None: ...


EngineFactory = Callable[[EngineConfig], Engine]


class CodexEngine:
    """One ``codex proto`` subprocess: JSON submissions on stdin, JSON events on stdout."""

    def __init__(
        self,
        config: EngineConfig,
        *,
        executable: Path | str | None = None,
        extra_args: Sequence[str] = (),
        tools_command: Sequence[str] | None = None,
    ) -> None:
        self._config = config
        self._executable_path = self._resolve_executable(executable)
        self._extra_args = tuple(extra_args)
        self._tools_command = tuple(tools_command) if tools_command else None
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._stderr_tail: deque[str] = deque(maxlen=20)
        self._pending: deque[EngineEvent] = deque()
        self._submission_ids = itertools.count(1)

    @staticmethod
    def _resolve_executable(explicit: Path | str | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit).expanduser()
            if candidate.exists() and candidate.is_file():
                return candidate
            resolved = shutil.which(str(explicit))
            if resolved is not None:
                return Path(resolved)
            raise CodexNotFoundError(f"Codex executable not found at {candidate}")

        binary = shutil.which("codex")
        if binary is None:
            raise CodexNotFoundError("Codex CLI executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    def command(self, resume_session_id: str | None = None) -> list[str]:
        overrides = config_overrides(
            model=self._config.model,
            sandbox_mode=self._config.sandbox_mode,
            approval_policy=self._config.approval_policy,
            resume_session_id=resume_session_id,
            session_dir=self._config.session_dir,
            tools_command=self._tools_command,
        )
        return [str(self._executable_path), *self._extra_args, "proto", *overrides]

    async def start(self, resume_session_id: str | None = None) -> SessionInfo:
        if self._process is not None:
            raise EngineError("Codex engine already started")

        cmd = self.command(resume_session_id)
        logger.debug("Starting Codex", extra={"command": cmd, "cwd": str(self._config.cwd)})
        try:
            self._process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self._config.cwd),
                env=sanitize_environment(),
                limit=STREAM_LIMIT,
            )
        except OSError as exc:
            raise EngineError(f"Failed to launch {self._executable_path}: {exc}") from exc
        self._stderr_task = asyncio.create_task(self._drain_stderr())

        while True:
            event = await self._read_event()
            if event.kind == SESSION_CONFIGURED:
                session_id = event.payload.get("session_id") or ""
                if not session_id:
                    raise EngineError("Codex reported a session without an id")
                model = event.payload.get("model") or self._config.model or "unknown"
                return SessionInfo(session_id=session_id, model=str(model))
            self._pending.append(event)

    async def submit_turn(self, prompt: str) -> None:
        await self._submit({"type": "user_input", "items": [{"type": "text", "text": prompt}]})

    async def next_event(self) -> EngineEvent:
        if self._pending:
            return self._pending.popleft()
        return await self._read_event()

    async def respond_approval(self, request: ApprovalRequest, decision: ApprovalDecision) -> None:
        op_type = "patch_approval" if request.kind == "patch" else "exec_approval"
        answer = "approved" if decision is ApprovalDecision.APPROVE else "denied"
        await self._submit({"type": op_type, "id": request.call_id, "decision": answer})

    async def interrupt(self) -> None:
        try:
            await self._submit({"type": "interrupt"})
        except EngineClosedError:
            logger.debug("Interrupt skipped; Codex already exited")

    async def shutdown(self, timeout: float) -> None:
        process = self._process
        if process is None:
            return
        try:
            if process.returncode is None:
                try:
                    await self._submit({"type": "shutdown"})
                    await asyncio.wait_for(self._await_shutdown_complete(), timeout=timeout)
                except (EngineClosedError, asyncio.TimeoutError):
                    pass
            if process.stdin is not None and not process.stdin.is_closing():
                process.stdin.close()
            if process.returncode is None:
                try:
                    await asyncio.wait_for(process.wait(), timeout=timeout)
                except asyncio.TimeoutError:
                    logger.warning("Codex did not exit in time; killing", extra={"pid": process.pid})
                    process.kill()
                    await process.wait()
        finally:
            if self._stderr_task is not None:
                self._stderr_task.cancel()
                try:
                    await self._stderr_task
                except asyncio.CancelledError:
                    pass
                self._stderr_task = None

    async def _await_shutdown_complete(self) -> None:
        while True:
            event = await self.next_event()
            if event.kind == SHUTDOWN_COMPLETE:
                return

    async def _submit(self, op: dict[str, Any]) -> None:
        process = self._process
        if process is None or process.stdin is None:
            raise EngineClosedError("Codex engine is not running")
        submission = {"id": str(next(self._submission_ids)), "op": op}
        line = json.dumps(submission, separators=(",", ":")) + "\n"
        try:
            process.stdin.write(line.encode("utf-8"))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise EngineClosedError(f"Codex stdin closed: {exc}") from exc

    async def _read_event(self) -> EngineEvent:
        process = self._process
        if process is None or process.stdout is None:
            raise EngineClosedError("Codex engine is not running")
        while True:
            try:
                raw = await process.stdout.readline()
            except ValueError as exc:
                raise EngineError(f"Codex emitted an oversized event: {exc}") from exc
            if not raw:
                returncode = await process.wait()
                tail = " | ".join(self._stderr_tail)
                raise EngineClosedError(f"Codex exited with code {returncode}" + (f": {tail}" if tail else ""))
            text = raw.decode("utf-8", errors="replace").strip()
            if not text:
                continue
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                logger.warning("Ignoring non-JSON output from Codex", extra={"line": text[:200]})
                continue
            if not isinstance(data, dict):
                logger.warning("Ignoring non-object event from Codex", extra={"line": text[:200]})
                continue
            return EngineEvent.from_wire(data)

    async def _drain_stderr(self) -> None:
        process = self._process
        if process is None or process.stderr is None:
            return
        while True:
            raw = await process.stderr.readline()
            if not raw:
                return
            text = raw.decode("utf-8", errors="replace").rstrip()
            if text:
                self._stderr_tail.append(text)
                logger.debug("codex stderr", extra={"line": text})


__all__ = [
    "CodexEngine",
    "CodexNotFoundError",
    "Engine",
    "EngineClosedError",
    "EngineConfig",
    "EngineError",
    "EngineFactory",
    "STREAM_LIMIT",
    "SessionInfo",
]
