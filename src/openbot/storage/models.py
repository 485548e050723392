"""Data models for session history and workspace memory."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CompletionAction(str, Enum):
    """What should happen to the run's branch once the session ends."""

    MERGE = "merge"
    REVIEW = "review"
    DISCARD = "discard"


class SessionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    INTERRUPTED = "interrupted"


class _EventBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utc_now)


class MessageEvent(_EventBase):
    type: Literal["message"] = "message"
    content: str


class CommandEvent(_EventBase):
    type: Literal["command"] = "command"
    command: str
    exit_code: int
    duration_ms: int = 0


class TokenCountEvent(_EventBase):
    type: Literal["token_count"] = "token_count"
    input_tokens: int = 0
    cached_input_tokens: int = 0
    output_tokens: int = 0
    reasoning_output_tokens: int = 0
    context_window: int | None = None


class ApprovalEvent(_EventBase):
    """Audit trail entry for one approval gate decision."""

    type: Literal["approval"] = "approval"
    call_id: str
    command: str
    sandbox_mode: str
    approval_policy: str
    decision: str
    reason: str


class ErrorEvent(_EventBase):
    type: Literal["error"] = "error"
    message: str


class UnknownEvent(_EventBase):
    """Record with a ``type`` this version does not understand, kept verbatim."""

    type: str = "unknown"
    raw: dict[str, Any] = Field(default_factory=dict)


KnownEvent = Annotated[
    Union[MessageEvent, CommandEvent, TokenCountEvent, ApprovalEvent, ErrorEvent],
    Field(discriminator="type"),
]
SessionEvent = Union[MessageEvent, CommandEvent, TokenCountEvent, ApprovalEvent, ErrorEvent, UnknownEvent]

KNOWN_EVENT_TYPES = frozenset({"message", "command", "token_count", "approval", "error"})
known_event_adapter: TypeAdapter[KnownEvent] = TypeAdapter(KnownEvent)


class TokenUsage(BaseModel):
    input_tokens: int = 0
    cached_input_tokens: int = 0
    output_tokens: int = 0
    reasoning_output_tokens: int = 0
    context_window: int | None = None

    @classmethod
    def from_event(cls, event: TokenCountEvent) -> "TokenUsage":
        return cls(
            input_tokens=event.input_tokens,
            cached_input_tokens=event.cached_input_tokens,
            output_tokens=event.output_tokens,
            reasoning_output_tokens=event.reasoning_output_tokens,
            context_window=event.context_window,
        )

    def add(self, event: TokenCountEvent) -> "TokenUsage":
        """Return the running total with one per-turn usage report folded in."""

        return TokenUsage(
            input_tokens=self.input_tokens + event.input_tokens,
            cached_input_tokens=self.cached_input_tokens + event.cached_input_tokens,
            output_tokens=self.output_tokens + event.output_tokens,
            reasoning_output_tokens=self.reasoning_output_tokens + event.reasoning_output_tokens,
            context_window=event.context_window or self.context_window,
        )


class SessionSummary(BaseModel):
    """Terminal values written into ``metadata.json`` when a session ends."""

    model_config = ConfigDict(frozen=True)

    status: SessionStatus
    summary: str = ""
    action: CompletionAction | None = None
    finished_at: datetime = Field(default_factory=utc_now)


class SessionMetadata(BaseModel):
    """Contents of ``metadata.json``; also accepts the legacy single-file layout."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    session_id: str
    session_number: int | None = None
    engine_session_id: str | None = None
    bot: str | None = None
    workspace: str | None = None
    model: str = "unknown"
    started_at: datetime
    status: SessionStatus = SessionStatus.RUNNING
    iterations: int = 0
    tokens: TokenUsage | None = None
    command_count: int = 0
    branch: str | None = None
    base_branch: str | None = None
    resume_count: int = 0
    resumed_at: datetime | None = None
    prompt_summary: str = ""
    finished_at: datetime | None = None
    duration_secs: int | None = None
    summary: str = Field(default="", validation_alias=AliasChoices("summary", "response_summary"))
    action: CompletionAction | None = None

    @property
    def finalized(self) -> bool:
        return self.finished_at is not None


class CompletionRequest(BaseModel):
    """Written by the ``session_complete`` tool to signal the end of a session."""

    summary: str
    action: CompletionAction
    requested_at: datetime = Field(default_factory=utc_now)


class IterationRecord(BaseModel):
    iteration: int
    timestamp: datetime = Field(default_factory=utc_now)
    prompt_summary: str
    response_summary: str


__all__ = [
    "ApprovalEvent",
    "CommandEvent",
    "CompletionAction",
    "CompletionRequest",
    "ErrorEvent",
    "IterationRecord",
    "KNOWN_EVENT_TYPES",
    "MessageEvent",
    "SessionEvent",
    "SessionMetadata",
    "SessionStatus",
    "SessionSummary",
    "TokenCountEvent",
    "TokenUsage",
    "UnknownEvent",
    "known_event_adapter",
    "utc_now",
]
