"""Normalized view of the events the Codex protocol stream emits."""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass, field
from typing import Any, Mapping

SESSION_CONFIGURED = "session_configured"
MESSAGE_DELTA = "message_delta"
MESSAGE = "message"
COMMAND_BEGIN = "command_begin"
COMMAND_END = "command_end"
TOKEN_COUNT = "token_count"
APPROVAL_REQUEST = "approval_request"
TURN_COMPLETE = "turn_complete"
TURN_ABORTED = "turn_aborted"
ERROR = "error"
STREAM_ERROR = "stream_error"
SHUTDOWN_COMPLETE = "shutdown_complete"
UNKNOWN = "unknown"

TURN_ENDING = frozenset({TURN_COMPLETE, TURN_ABORTED, ERROR})

_DURATION_RE = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*(ns|us|µs|ms|s|m)?\s*$")
_UNIT_TO_MS = {"ns": 1e-6, "us": 1e-3, "µs": 1e-3, "ms": 1.0, "s": 1000.0, "m": 60000.0}


@dataclass(frozen=True, slots=True)
class EngineEvent:
    kind: str
    payload: dict[str, Any] = field(default_factory=dict)
    id: str | None = None

    @property
    def ends_turn(self) -> bool:
        return self.kind in TURN_ENDING

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> "EngineEvent":
        """Translate one decoded protocol line (``{"id", "msg": {...}}``) into an event."""

        event_id = data.get("id")
        event_id = str(event_id) if event_id is not None else None
        msg = data.get("msg")
        if not isinstance(msg, Mapping):
            return cls(UNKNOWN, {"raw": dict(data)}, event_id)

        wire_type = msg.get("type")
        if wire_type == "session_configured":
            return cls(
                SESSION_CONFIGURED,
                {"session_id": str(msg.get("session_id", "")), "model": msg.get("model")},
                event_id,
            )
        if wire_type == "agent_message_delta":
            return cls(MESSAGE_DELTA, {"delta": str(msg.get("delta", ""))}, event_id)
        if wire_type == "agent_message":
            return cls(MESSAGE, {"message": str(msg.get("message", ""))}, event_id)
        if wire_type == "exec_command_begin":
            return cls(
                COMMAND_BEGIN,
                {"call_id": str(msg.get("call_id", "")), "command": format_command(msg.get("command"))},
                event_id,
            )
        if wire_type == "exec_command_end":
            return cls(
                COMMAND_END,
                {
                    "call_id": str(msg.get("call_id", "")),
                    "command": format_command(msg.get("command")),
                    "exit_code": _as_int(msg.get("exit_code"), default=-1),
                    "duration_ms": duration_ms(msg.get("duration")),
                },
                event_id,
            )
        if wire_type == "token_count":
            return cls(TOKEN_COUNT, _token_payload(msg), event_id)
        if wire_type == "exec_approval_request":
            return cls(
                APPROVAL_REQUEST,
                {
                    "call_id": str(msg.get("call_id", "")),
                    "kind": "exec",
                    "command": format_command(msg.get("command")),
                    "cwd": msg.get("cwd"),
                    "reason": msg.get("reason"),
                },
                event_id,
            )
        if wire_type == "apply_patch_approval_request":
            changes = msg.get("changes")
            files = sorted(changes) if isinstance(changes, Mapping) else []
            return cls(
                APPROVAL_REQUEST,
                {
                    "call_id": str(msg.get("call_id", "")),
                    "kind": "patch",
                    "command": "apply_patch " + " ".join(files) if files else "apply_patch",
                    "cwd": None,
                    "reason": msg.get("reason"),
                },
                event_id,
            )
        if wire_type == "task_complete":
            return cls(TURN_COMPLETE, {"last_agent_message": msg.get("last_agent_message")}, event_id)
        if wire_type == "turn_aborted":
            return cls(TURN_ABORTED, {"reason": str(msg.get("reason", ""))}, event_id)
        if wire_type == "error":
            return cls(ERROR, {"message": str(msg.get("message", ""))}, event_id)
        if wire_type == "stream_error":
            return cls(STREAM_ERROR, {"message": str(msg.get("message", ""))}, event_id)
        if wire_type == "shutdown_complete":
            return cls(SHUTDOWN_COMPLETE, {}, event_id)
        return cls(UNKNOWN, {"type": wire_type, "raw": dict(msg)}, event_id)


def format_command(command: Any) -> str:
    if command is None:
        return ""
    if isinstance(command, str):
        return command
    if isinstance(command, (list, tuple)):
        return shlex.join(str(part) for part in command)
    return str(command)


def duration_ms(value: Any) -> int:
    """Accept ``{"secs", "nanos"}``, ``"1.5s"``-style strings, or plain milliseconds."""

    if value is None:
        return 0
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return max(int(value), 0)
    if isinstance(value, Mapping):
        secs = _as_int(value.get("secs"), default=0)
        nanos = _as_int(value.get("nanos"), default=0)
        return secs * 1000 + nanos // 1_000_000
    if isinstance(value, str):
        match = _DURATION_RE.match(value)
        if match:
            amount = float(match.group(1))
            return int(amount * _UNIT_TO_MS[match.group(2) or "ms"])
    return 0


def _as_int(value: Any, *, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _token_payload(msg: Mapping[str, Any]) -> dict[str, Any]:
    # Newer engines nest cumulative usage under ``info``.
    info = msg.get("info")
    context_window = None
    usage: Mapping[str, Any] = msg
    if isinstance(info, Mapping):
        total = info.get("total_token_usage")
        if isinstance(total, Mapping):
            usage = total
        context_window = info.get("model_context_window")
    return {
        "cumulative": usage is not msg,
        "input_tokens": _as_int(usage.get("input_tokens"), default=0),
        "cached_input_tokens": _as_int(usage.get("cached_input_tokens"), default=0),
        "output_tokens": _as_int(usage.get("output_tokens"), default=0),
        "reasoning_output_tokens": _as_int(usage.get("reasoning_output_tokens"), default=0),
        "context_window": _as_int(context_window, default=0) or None,
    }


__all__ = [
    "APPROVAL_REQUEST",
    "COMMAND_BEGIN",
    "COMMAND_END",
    "ERROR",
    "EngineEvent",
    "MESSAGE",
    "MESSAGE_DELTA",
    "SESSION_CONFIGURED",
    "SHUTDOWN_COMPLETE",
    "STREAM_ERROR",
    "TOKEN_COUNT",
    "TURN_ABORTED",
    "TURN_COMPLETE",
    "TURN_ENDING",
    "UNKNOWN",
    "duration_ms",
    "format_command",
]
