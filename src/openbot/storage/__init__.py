"""Session history storage for OpenBot."""

from .models import (
    ApprovalEvent,
    CommandEvent,
    CompletionAction,
    CompletionRequest,
    ErrorEvent,
    IterationRecord,
    MessageEvent,
    SessionEvent,
    SessionMetadata,
    SessionStatus,
    SessionSummary,
    TokenCountEvent,
    TokenUsage,
    UnknownEvent,
)
from .recorder import (
    EventLog,
    RecorderError,
    SessionFinalizedError,
    SessionRecorder,
    clear_completion,
    extract_commands,
    list_events,
    list_sessions,
    load_metadata,
    read_completion,
    recent,
    reconstruct_response,
    write_completion,
)

__all__ = [
    "ApprovalEvent",
    "CommandEvent",
    "CompletionAction",
    "CompletionRequest",
    "ErrorEvent",
    "EventLog",
    "IterationRecord",
    "MessageEvent",
    "RecorderError",
    "SessionEvent",
    "SessionFinalizedError",
    "SessionMetadata",
    "SessionRecorder",
    "SessionStatus",
    "SessionSummary",
    "TokenCountEvent",
    "TokenUsage",
    "UnknownEvent",
    "clear_completion",
    "extract_commands",
    "list_events",
    "list_sessions",
    "load_metadata",
    "read_completion",
    "recent",
    "reconstruct_response",
    "write_completion",
]
