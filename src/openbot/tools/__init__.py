"""Session tools exposed to the engine over MCP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from fastmcp import Context, FastMCP

from ..storage import (
    CompletionAction,
    CompletionRequest,
    extract_commands,
    list_events,
    list_sessions,
    load_metadata,
    reconstruct_response,
    write_completion,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500


@dataclass(slots=True)
class ToolHandles:
    """The plain functions behind the registered tools, callable without a transport."""

    session_complete: Callable[..., dict[str, Any]]
    session_history: Callable[..., dict[str, Any]]


def register_tools(
    server: FastMCP,
    *,
    history_dir: Path | None,
    session_dir: Path | None,
) -> ToolHandles:
    """Register the session tools on ``server``.

    ``session_dir`` is the directory of the session the engine is running
    in; ``history_dir`` holds every session of the same bot and workspace.
    """

    def _require_history() -> Path:
        if history_dir is None:
            raise ValueError("OPENBOT_SESSION_DIR is not set; session history is unavailable")
        return history_dir

    def _session_complete(
        summary: str,
        action: str = "review",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Signal that the current session's work is done."""

        if session_dir is None:
            raise ValueError("OPENBOT_SESSION_DIR is not set; there is no session to complete")
        text = summary.strip()
        if not text:
            raise ValueError("summary must not be empty")
        try:
            parsed = CompletionAction(action.strip().lower())
        except ValueError as exc:
            allowed = ", ".join(item.value for item in CompletionAction)
            raise ValueError(f"action must be one of: {allowed}") from exc

        request = CompletionRequest(summary=text, action=parsed)
        path = write_completion(session_dir, request)

        _emit_log(
            context,
            "info",
            "Session completion requested",
            extra={"session_id": session_dir.name, "action": parsed.value},
        )
        return {
            "status": "recorded",
            "session_id": session_dir.name,
            "action": parsed.value,
            "path": str(path),
        }

    def _list(base: Path) -> dict[str, Any]:
        sessions = list_sessions(base)
        entries = [
            {
                "session_id": meta.session_id,
                "session_number": meta.session_number,
                "status": meta.status.value,
                "started_at": meta.started_at.isoformat(),
                "iterations": meta.iterations,
                "command_count": meta.command_count,
                "branch": meta.branch,
                "summary": meta.summary,
                "action": meta.action.value if meta.action else None,
            }
            for meta in reversed(sessions)
        ]
        return {"count": len(entries), "sessions": entries}

    def _view(base: Path, session_id: str, offset: int, limit: int) -> dict[str, Any]:
        try:
            metadata = load_metadata(base, session_id)
        except FileNotFoundError as exc:
            raise ValueError(f"Unknown session: {session_id}") from exc

        events = list(list_events(base, session_id))
        total = len(events)
        offset = max(offset, 0)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        end = max(total - offset, 0)
        start = max(end - limit, 0)
        page = events[start:end]
        return {
            "session": metadata.model_dump(mode="json"),
            "total_events": total,
            "offset": offset,
            "limit": limit,
            "has_more": start > 0,
            "response": reconstruct_response(page),
            "commands": [command.model_dump(mode="json") for command in extract_commands(page)],
            "events": [event.model_dump(mode="json") for event in page],
        }

    def _session_history(
        action: str = "list",
        session_id: str | None = None,
        offset: int = 0,
        limit: int = 50,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Browse previous sessions: ``list`` them, or ``view`` one page of a session's events."""

        base = _require_history()
        normalized = action.strip().lower()
        if normalized == "list":
            result = _list(base)
        elif normalized == "view":
            if not session_id:
                raise ValueError("session_id is required when action='view'")
            result = _view(base, session_id, offset, limit)
        else:
            raise ValueError("action must be 'list' or 'view'")

        _emit_log(
            context,
            "debug",
            "Session history requested",
            extra={"action": normalized, "session_id": session_id, "offset": offset},
        )
        return result

    server.tool(
        name="session_complete",
        description=(
            "Call when your work for this session is done. Provide a summary of what you "
            "accomplished and an action for your branch: merge, review, or discard."
        ),
    )(_session_complete)

    server.tool(
        name="session_history",
        description=(
            "Browse previous sessions. action='list' returns an overview, newest first; "
            "action='view' with session_id returns events from the end of that session. "
            "Increase offset to page backward."
        ),
    )(_session_history)

    return ToolHandles(session_complete=_session_complete, session_history=_session_history)


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Log through the MCP context logger when there is one, else the module logger."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["MAX_PAGE_SIZE", "ToolHandles", "register_tools"]
