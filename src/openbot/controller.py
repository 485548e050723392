"""Iteration controller: drives a bot run from workspace setup to final record.

One run resolves the workspace, acquires an isolated checkout, opens a
session record and then loops::

    preparing -> submitted -> streaming -> summarizing -> sleeping -> preparing ...

until a stop condition, an interrupt, or a fatal error. On every exit the
session is finalized first and the checkout released second.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Protocol, TextIO

from .approval import (
    ApprovalDecision,
    ApprovalGate,
    ApprovalPolicy,
    ApprovalRequest,
    SandboxMode,
    resolve_approval_policy,
)
from .codex.engine import Engine, EngineConfig, EngineError, EngineFactory
from .codex.events import (
    APPROVAL_REQUEST,
    COMMAND_BEGIN,
    COMMAND_END,
    ERROR,
    MESSAGE,
    MESSAGE_DELTA,
    STREAM_ERROR,
    TOKEN_COUNT,
    TURN_ABORTED,
    TURN_COMPLETE,
    EngineEvent,
)
from .config import OpenBotSettings
from .memory import USER_INPUT_KEY, MemoryStore, truncate
from .profiles.models import DEFAULT_INSTRUCTIONS, BotProfile
from .prompt import PromptBuilder, PromptContext, PromptError, build_prompt
from .skills import Skill, load_skills
from .storage.models import (
    CommandEvent,
    CompletionRequest,
    ErrorEvent,
    MessageEvent,
    SessionStatus,
    SessionSummary,
    TokenCountEvent,
    TokenUsage,
    utc_now,
)
from .storage.recorder import (
    RecorderError,
    SessionRecorder,
    clear_completion,
    list_sessions,
    load_metadata,
)
from .workspace import WorkspaceId, resolve
from .worktree import WorktreeHandle, WorktreeLifecycle

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    SUBMITTED = "submitted"
    STREAMING = "streaming"
    SUMMARIZING = "summarizing"
    SLEEPING = "sleeping"
    STOPPED = "stopped"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (RunState.STOPPED, RunState.ABORTED)


_RETRY_NEUTRAL = {TOKEN_COUNT, STREAM_ERROR}

_TERMINAL = {RunState.STOPPED, RunState.ABORTED}
_TRANSITIONS: dict[RunState, set[RunState]] = {
    RunState.IDLE: {RunState.PREPARING} | _TERMINAL,
    RunState.PREPARING: {RunState.SUBMITTED} | _TERMINAL,
    RunState.SUBMITTED: {RunState.STREAMING} | _TERMINAL,
    RunState.STREAMING: {RunState.SUMMARIZING} | _TERMINAL,
    RunState.SUMMARIZING: {RunState.SLEEPING} | _TERMINAL,
    RunState.SLEEPING: {RunState.PREPARING} | _TERMINAL,
    RunState.STOPPED: set(),
    RunState.ABORTED: set(),
}


class StopReason(str, Enum):
    MAX_ITERATIONS = "max_iterations"
    COMPLETION = "completion"
    STOP_PHRASE = "stop_phrase"
    TURN_ABORTED = "turn_aborted"
    INTERRUPTED = "interrupted"
    ERROR = "error"


class InvalidTransition(RuntimeError):
    """Raised when the controller is asked to move between unrelated states."""


class RunError(RuntimeError):
    """Raised for run requests that cannot start, such as resuming an unknown session."""


class OperatorChannel(Protocol):
    def start(self) -> None: ...

    async def next_line(self) -> str | None: ...

    def drain(self) -> list[str]: ...

    async def confirm(self, request: ApprovalRequest) -> bool | None: ...


@dataclass(slots=True)
class RunOptions:
    """Everything that varies between runs of the same controller."""

    bot_name: str
    instructions: str = DEFAULT_INSTRUCTIONS
    max_iterations: int = 10
    sleep_secs: float = 30
    stop_phrase: str | None = "TASK COMPLETE"
    model: str | None = None
    sandbox_mode: SandboxMode = SandboxMode.WORKSPACE_WRITE
    approval_policy: ApprovalPolicy | None = None
    resume_session_id: str | None = None
    use_isolation: bool = True
    skip_repo_check: bool = False
    project: str | None = None
    cwd: Path = field(default_factory=Path.cwd)

    @classmethod
    def from_profile(
        cls,
        profile: BotProfile,
        *,
        cwd: Path | None = None,
        resume_session_id: str | None = None,
    ) -> "RunOptions":
        return cls(
            bot_name=profile.name,
            instructions=profile.instructions,
            max_iterations=profile.max_iterations,
            sleep_secs=profile.sleep_secs,
            stop_phrase=profile.stop_phrase,
            model=profile.model,
            sandbox_mode=profile.sandbox,
            approval_policy=profile.approval_policy,
            resume_session_id=resume_session_id,
            use_isolation=profile.use_worktree,
            skip_repo_check=profile.skip_git_check,
            project=profile.project,
            cwd=Path(cwd) if cwd is not None else Path.cwd(),
        )


@dataclass(slots=True)
class RunResult:
    session_id: str
    status: SessionStatus
    state: RunState
    iterations: int
    stop_reason: StopReason
    branch: str | None = None
    last_response: str = ""
    completion: CompletionRequest | None = None


@dataclass(slots=True)
class _TurnOutcome:
    response: str = ""
    aborted: bool = False
    error: str | None = None


@dataclass(slots=True)
class _Run:
    options: RunOptions
    workspace: WorkspaceId
    memory: MemoryStore
    history_dir: Path
    session_id: str
    sandbox: SandboxMode
    policy: ApprovalPolicy
    gate: ApprovalGate
    handle: WorktreeHandle | None = None
    engine: Engine | None = None
    recorder: SessionRecorder | None = None
    iteration: int = 0
    base_iterations: int = 0
    command_count: int = 0
    tokens: TokenUsage | None = None
    last_failed_command: str | None = None
    pending_approval: ApprovalRequest | None = None
    turn_in_flight: bool = False
    consumed_input: bool = False
    turn_chunks: list[str] = field(default_factory=list)
    last_response: str = ""
    completion: CompletionRequest | None = None


class IterationController:
    """Run one bot session loop. A controller instance drives a single run."""

    def __init__(
        self,
        settings: OpenBotSettings,
        engine_factory: EngineFactory,
        *,
        operator: OperatorChannel | None = None,
        prompt_builder: PromptBuilder = build_prompt,
        skills_loader: Callable[[Iterable[Path]], list[Skill]] = load_skills,
        lifecycle: WorktreeLifecycle | None = None,
        clock: Callable[[], float] | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> None:
        self._settings = settings
        self._engine_factory = engine_factory
        self._operator = operator
        self._prompt_builder = prompt_builder
        self._skills_loader = skills_loader
        self._lifecycle = lifecycle or WorktreeLifecycle(namespace=settings.worktree_namespace)
        self._clock = clock or time.time
        self._stdout = stdout
        self._stderr = stderr
        self.state = RunState.IDLE
        self.transitions: list[tuple[RunState, RunState]] = []
        self.result: RunResult | None = None

    # ------------------------------------------------------------------
    # State machine

    def _transition(self, target: RunState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"Cannot move from {self.state.value} to {target.value}")
        logger.debug("State transition", extra={"from_state": self.state.value, "to_state": target.value})
        self.transitions.append((self.state, target))
        self.state = target

    # ------------------------------------------------------------------
    # Entry point

    async def run(self, options: RunOptions) -> RunResult:
        if self.state is not RunState.IDLE:
            raise RuntimeError("IterationController instances drive a single run")

        settings = self._settings
        workspace = resolve(options.cwd, skip_check=options.skip_repo_check, override=options.project)
        use_isolation = options.use_isolation
        if use_isolation and not workspace.is_repository:
            logger.warning(
                "Not a git repository; running without worktree isolation",
                extra={"path": str(workspace.root)},
            )
            use_isolation = False

        sandbox = SandboxMode(options.sandbox_mode)
        policy = resolve_approval_policy(sandbox, options.approval_policy)
        history_dir = settings.history_dir(options.bot_name, workspace.slug)
        memory = MemoryStore.load(settings.memory_path(options.bot_name, workspace.slug))

        if options.resume_session_id:
            try:
                load_metadata(history_dir, options.resume_session_id)
            except FileNotFoundError as exc:
                raise RunError(f"Cannot resume unknown session {options.resume_session_id}") from exc
            session_id = options.resume_session_id
        else:
            session_id = self._new_session_id()

        run = _Run(
            options=options,
            workspace=workspace,
            memory=memory,
            history_dir=history_dir,
            session_id=session_id,
            sandbox=sandbox,
            policy=policy,
            gate=ApprovalGate(self._operator, timeout=settings.approval_timeout_secs),
        )
        logger.info(
            "Starting run",
            extra={
                "bot": options.bot_name,
                "workspace": workspace.slug,
                "session_id": session_id,
                "sandbox_mode": sandbox.value,
                "approval_policy": policy.value,
            },
        )

        try:
            with self._lifecycle.scoped(workspace.root, options.bot_name, use_isolation) as handle:
                run.handle = handle
                return await self._run_session(run)
        except Exception:
            if not self.state.terminal:
                self._transition(RunState.ABORTED)
            raise

    def _new_session_id(self) -> str:
        stamp = datetime.fromtimestamp(self._clock(), timezone.utc).strftime("%Y%m%d-%H%M%S")
        return f"{stamp}-{uuid.uuid4().hex[:8]}"

    # ------------------------------------------------------------------
    # Session

    async def _run_session(self, run: _Run) -> RunResult:
        options = run.options
        assert run.handle is not None

        self._transition(RunState.PREPARING)
        run.iteration = 1
        prompt = self._prepare(run)

        engine = self._engine_factory(
            EngineConfig(
                cwd=run.handle.path,
                sandbox_mode=run.sandbox.value,
                approval_policy=run.policy.value,
                model=options.model or self._settings.codex_default_model,
                session_dir=run.history_dir / run.session_id,
            )
        )
        run.engine = engine
        try:
            await self._open_session(run, engine)
            return await self._loop(run, prompt)
        except asyncio.CancelledError:
            await self._handle_interrupt(run)
            raise
        except Exception as exc:
            self._abort(run, exc)
            raise
        finally:
            if run.recorder is not None:
                run.recorder.close()
            try:
                await engine.shutdown(self._settings.shutdown_timeout_secs)
            except EngineError as exc:
                logger.warning("Engine shutdown failed", extra={"error": str(exc)})

    async def _open_session(self, run: _Run, engine: Engine) -> None:
        options = run.options
        assert run.handle is not None
        engine_resume_id = None
        fields: dict[str, object] = {
            "bot": options.bot_name,
            "workspace": run.workspace.slug,
            "branch": run.handle.branch,
            "base_branch": run.handle.base_branch,
            "prompt_summary": truncate(options.instructions, 100),
        }
        if options.resume_session_id:
            previous = load_metadata(run.history_dir, options.resume_session_id)
            engine_resume_id = previous.engine_session_id or previous.session_id
        else:
            fields["session_number"] = len(list_sessions(run.history_dir)) + 1

        info = await engine.start(resume_session_id=engine_resume_id)
        fields["engine_session_id"] = info.session_id
        recorder = SessionRecorder.open(
            run.history_dir,
            run.session_id,
            model=info.model,
            started_at=utc_now(),
            **fields,
        )
        run.recorder = recorder
        run.gate.attach(recorder)
        run.base_iterations = recorder.metadata.iterations
        run.command_count = recorder.metadata.command_count
        run.tokens = recorder.metadata.tokens
        clear_completion(recorder.session_dir)
        self._status(f"Session {run.session_id} ({info.model})")

    async def _loop(self, run: _Run, prompt: str) -> RunResult:
        options = run.options
        engine = run.engine
        recorder = run.recorder
        assert engine is not None and recorder is not None
        if self._operator is not None:
            self._operator.start()

        while True:
            limit = str(options.max_iterations) if options.max_iterations > 0 else "unlimited"
            self._status(f"\n--- Iteration {run.iteration}/{limit} ---")

            self._transition(RunState.SUBMITTED)
            await engine.submit_turn(prompt)
            run.turn_in_flight = True
            self._transition(RunState.STREAMING)
            outcome = await self._stream_turn(run)
            run.turn_in_flight = False

            self._transition(RunState.SUMMARIZING)
            self._summarize(run, outcome)

            if outcome.aborted:
                return self._stop(run, StopReason.TURN_ABORTED, SessionStatus.INTERRUPTED)
            reason = self._should_stop(run, outcome)
            if reason is not None:
                return self._stop(run, reason, SessionStatus.COMPLETED)

            self._transition(RunState.SLEEPING)
            await self._sleep(run, options.sleep_secs)

            self._transition(RunState.PREPARING)
            run.iteration += 1
            prompt = self._prepare(run)

    # ------------------------------------------------------------------
    # Phases

    def _prepare(self, run: _Run) -> str:
        options = run.options
        settings = self._settings
        assert run.handle is not None

        skills = self._skills_loader(settings.skill_dirs(options.bot_name))
        user_input = run.memory.get(USER_INPUT_KEY)
        context = PromptContext(
            instructions=options.instructions,
            iteration=run.iteration,
            max_iterations=options.max_iterations,
            skills=skills,
            memory=run.memory.entries,
            recent_history=run.memory.recent(settings.history_window),
            bot_skill_dir=settings.bot_skills_dir(options.bot_name),
            project=run.workspace.slug,
            branch=run.handle.branch,
            base_branch=run.handle.base_branch,
            user_input=user_input,
        )
        try:
            prompt = self._prompt_builder(context)
        except PromptError:
            raise
        except Exception as exc:
            raise PromptError(f"Failed to build prompt for iteration {run.iteration}: {exc}") from exc
        if not prompt or not prompt.strip():
            raise PromptError(f"Prompt for iteration {run.iteration} is empty")
        run.consumed_input = user_input is not None
        return prompt

    async def _stream_turn(self, run: _Run, *, draining: bool = False) -> _TurnOutcome:
        engine = run.engine
        recorder = run.recorder
        assert engine is not None and recorder is not None

        if not draining:
            run.turn_chunks = []
            run.last_failed_command = None
        chunks = run.turn_chunks
        snapshot = ""
        while True:
            event = await engine.next_event()
            kind = event.kind
            # A failed command only counts as retried by the request that immediately follows it.
            failed_command = run.last_failed_command
            if kind not in _RETRY_NEUTRAL:
                run.last_failed_command = None
            if kind == MESSAGE_DELTA:
                delta = str(event.payload.get("delta") or "")
                if delta:
                    chunks.append(delta)
                    self._emit(delta)
                    recorder.record(MessageEvent(content=delta))
            elif kind == MESSAGE:
                message = str(event.payload.get("message") or "")
                if message and not chunks:
                    snapshot = message
                    self._emit(message + "\n")
                    recorder.record(MessageEvent(content=message))
            elif kind == COMMAND_BEGIN:
                self._status(f"[exec] {event.payload.get('command', '')}")
            elif kind == COMMAND_END:
                self._record_command(run, event)
            elif kind == TOKEN_COUNT:
                self._record_tokens(run, event)
            elif kind == APPROVAL_REQUEST:
                await self._handle_approval(run, event, retry_of=failed_command, draining=draining)
            elif kind == ERROR:
                message = str(event.payload.get("message") or "engine error")
                logger.warning("Engine reported an error", extra={"session_id": run.session_id, "error": message})
                self._status(f"[error] {message}")
                recorder.record(ErrorEvent(message=message))
                if not draining:
                    await self._settle_after_error(run)
                return _TurnOutcome(response="".join(chunks) or snapshot, error=message)
            elif kind == STREAM_ERROR:
                self._status(f"[retrying] {event.payload.get('message', '')}")
            elif kind == TURN_COMPLETE:
                response = "".join(chunks) or snapshot or str(event.payload.get("last_agent_message") or "")
                if chunks:
                    self._emit("\n")
                return _TurnOutcome(response=response)
            elif kind == TURN_ABORTED:
                return _TurnOutcome(response="".join(chunks) or snapshot, aborted=True)
            else:
                logger.debug("Ignoring engine event", extra={"kind": kind})

    def _record_command(self, run: _Run, event: EngineEvent) -> None:
        assert run.recorder is not None
        command = str(event.payload.get("command") or "")
        exit_code = int(event.payload.get("exit_code", -1))
        run.recorder.record(
            CommandEvent(command=command, exit_code=exit_code, duration_ms=int(event.payload.get("duration_ms", 0)))
        )
        run.command_count += 1
        if exit_code != 0:
            run.last_failed_command = command or None
            self._status(f"[exec] exited with code {exit_code}")

    async def _settle_after_error(self, run: _Run) -> None:
        """Consume the rest of a turn that reported an error, for at most ``error_settle_secs``.

        Codex may still close the turn after an error; leaving that event
        queued would end the next turn before it starts.
        """

        engine = run.engine
        assert engine is not None
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.error_settle_secs
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return
            try:
                event = await asyncio.wait_for(engine.next_event(), timeout=remaining)
            except asyncio.TimeoutError:
                return
            if event.kind in (TURN_COMPLETE, TURN_ABORTED):
                return
            if event.kind == APPROVAL_REQUEST:
                await self._handle_approval(run, event, retry_of=None, draining=True)
            else:
                logger.debug("Discarding event after engine error", extra={"kind": event.kind})

    def _record_tokens(self, run: _Run, event: EngineEvent) -> None:
        assert run.recorder is not None
        payload = dict(event.payload)
        cumulative = bool(payload.pop("cumulative", False))
        token_event = TokenCountEvent(**payload)
        run.recorder.record(token_event)
        if cumulative or run.tokens is None:
            run.tokens = TokenUsage.from_event(token_event)
        else:
            run.tokens = run.tokens.add(token_event)

    async def _handle_approval(
        self, run: _Run, event: EngineEvent, *, retry_of: str | None, draining: bool
    ) -> None:
        engine = run.engine
        assert engine is not None
        payload = event.payload
        command = str(payload.get("command") or "")
        request = ApprovalRequest(
            call_id=str(payload.get("call_id") or event.id or ""),
            command=command,
            kind=str(payload.get("kind") or "exec"),
            cwd=payload.get("cwd"),
            reason=payload.get("reason"),
            escalated_retry=bool(command) and command == retry_of,
        )
        if draining:
            decision = run.gate.deny(run.sandbox, run.policy, request, "run is shutting down")
        else:
            run.pending_approval = request
            decision = await run.gate.decide(run.sandbox, run.policy, request)
            run.pending_approval = None
        if decision is ApprovalDecision.DENY:
            self._status(f"[approval] denied: {command}")
        await engine.respond_approval(request, decision)

    def _summarize(self, run: _Run, outcome: _TurnOutcome) -> None:
        assert run.recorder is not None
        run.last_response = outcome.response
        run.memory.add_iteration(run.iteration, run.options.instructions, outcome.response)
        if run.consumed_input:
            run.memory.remove(USER_INPUT_KEY)
            run.consumed_input = False
        run.memory.save()
        run.recorder.update(
            iterations=run.base_iterations + run.iteration,
            command_count=run.command_count,
            tokens=run.tokens,
        )

    def _should_stop(self, run: _Run, outcome: _TurnOutcome) -> StopReason | None:
        options = run.options
        assert run.recorder is not None

        completion = run.recorder.read_completion()
        if completion is not None:
            run.completion = completion
            self._status(f"\nSession complete ({completion.action.value}): {completion.summary}")
            return StopReason.COMPLETION
        if options.stop_phrase and options.stop_phrase in outcome.response:
            self._status(f'\nAgent signaled completion: "{options.stop_phrase}"')
            return StopReason.STOP_PHRASE
        if options.max_iterations > 0 and run.iteration >= options.max_iterations:
            return StopReason.MAX_ITERATIONS
        return None

    async def _sleep(self, run: _Run, delay: float) -> None:
        operator = self._operator
        if operator is None:
            if delay > 0:
                await asyncio.sleep(delay)
            return

        # Let lines already read by the console reach its queue.
        await asyncio.sleep(0)
        buffered = [line for line in operator.drain() if line.strip()]
        if buffered:
            self._accept_input(run, "\n".join(buffered))
            return
        if delay <= 0 or getattr(operator, "closed", False):
            if delay > 0:
                await asyncio.sleep(delay)
            return

        self._status(f"Sleeping {delay:g} seconds (type to wake and inject input)...")
        timer = asyncio.ensure_future(asyncio.sleep(delay))
        reader = asyncio.ensure_future(operator.next_line())
        try:
            done, _ = await asyncio.wait({timer, reader}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (timer, reader):
                if not task.done():
                    task.cancel()

        if reader in done:
            line = reader.result()
            if line is None:
                self._status("stdin closed, continuing.")
            elif line.strip():
                self._accept_input(run, line)

    def _accept_input(self, run: _Run, text: str) -> None:
        self._status("User input received, injecting into next iteration.")
        run.memory.set(USER_INPUT_KEY, text)
        run.memory.save()

    # ------------------------------------------------------------------
    # Endings

    def _stop(self, run: _Run, reason: StopReason, status: SessionStatus) -> RunResult:
        assert run.recorder is not None
        self._transition(RunState.STOPPED)
        if run.completion is not None:
            summary = SessionSummary(status=status, summary=run.completion.summary, action=run.completion.action)
        else:
            summary = SessionSummary(status=status, summary=truncate(run.last_response, 500))
        run.recorder.finalize(summary)
        result = self._result(run, reason, status)
        self._status(f"\n--- Summary ---\nCompleted {run.iteration} iteration(s) ({reason.value})")
        if run.last_response:
            self._status(f"Last response: {truncate(run.last_response, 200)}")
        logger.info(
            "Run stopped",
            extra={"session_id": run.session_id, "stop_reason": reason.value, "iterations": run.iteration},
        )
        return result

    async def _handle_interrupt(self, run: _Run) -> None:
        engine = run.engine
        assert engine is not None
        logger.warning("Run interrupted", extra={"session_id": run.session_id, "state": self.state.value})

        if run.pending_approval is not None:
            request = run.pending_approval
            run.pending_approval = None
            try:
                await engine.respond_approval(request, ApprovalDecision.DENY)
            except EngineError as exc:
                logger.debug("Could not relay denial", extra={"error": str(exc)})

        if run.turn_in_flight and run.recorder is not None:
            try:
                await engine.interrupt()
                outcome = await asyncio.wait_for(
                    self._stream_turn(run, draining=True), timeout=self._settings.interrupt_grace_secs
                )
                run.last_response = outcome.response or run.last_response
            except asyncio.TimeoutError:
                logger.warning("In-flight turn did not finish within the grace period")
            except (EngineError, RecorderError) as exc:
                logger.warning("Could not drain the in-flight turn", extra={"error": str(exc)})
            run.turn_in_flight = False

        if not self.state.terminal:
            self._transition(RunState.STOPPED)
        if run.recorder is not None:
            try:
                run.recorder.finalize(
                    SessionSummary(status=SessionStatus.INTERRUPTED, summary=truncate(run.last_response, 500))
                )
            except RecorderError as exc:
                logger.error("Failed to finalize interrupted session", extra={"error": str(exc)})
            self.result = self._result(run, StopReason.INTERRUPTED, SessionStatus.INTERRUPTED)
            self._status(
                f"\nInterrupted. Resume with: openbot run {run.options.bot_name} --resume {run.session_id}"
            )
            logger.info("Resume token", extra={"session_id": run.session_id, "bot": run.options.bot_name})

    def _abort(self, run: _Run, exc: BaseException) -> None:
        logger.error("Run aborted", extra={"session_id": run.session_id, "error": str(exc)})
        if not self.state.terminal:
            self._transition(RunState.ABORTED)
        if run.recorder is None:
            return
        try:
            run.recorder.finalize(SessionSummary(status=SessionStatus.ABORTED, summary=truncate(str(exc), 500)))
        except RecorderError as finalize_exc:
            logger.error("Failed to finalize aborted session", extra={"error": str(finalize_exc)})
        self.result = self._result(run, StopReason.ERROR, SessionStatus.ABORTED)

    def _result(self, run: _Run, reason: StopReason, status: SessionStatus) -> RunResult:
        result = RunResult(
            session_id=run.session_id,
            status=status,
            state=self.state,
            iterations=run.iteration,
            stop_reason=reason,
            branch=run.handle.branch if run.handle is not None else None,
            last_response=run.last_response,
            completion=run.completion,
        )
        self.result = result
        return result

    # ------------------------------------------------------------------
    # Output

    def _emit(self, text: str) -> None:
        stream = self._stdout or sys.stdout
        stream.write(text)
        stream.flush()

    def _status(self, text: str) -> None:
        stream = self._stderr or sys.stderr
        print(text, file=stream, flush=True)


__all__ = [
    "InvalidTransition",
    "IterationController",
    "OperatorChannel",
    "RunError",
    "RunOptions",
    "RunResult",
    "RunState",
    "StopReason",
]
