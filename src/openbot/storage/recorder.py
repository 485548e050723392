"""Durable, append-only session history on the local filesystem.

Each session lives in ``history/<session_id>/``:

- ``metadata.json`` -- session summary, rewritten atomically
- ``events.jsonl`` -- one JSON record per line, fsynced on every append
- ``completion.json`` -- optional completion request left by the session tools

Legacy ``history/<session_id>.json`` files are still readable.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import IO, Any, Iterable, Iterator

from pydantic import ValidationError

from .models import (
    CommandEvent,
    CompletionRequest,
    KNOWN_EVENT_TYPES,
    MessageEvent,
    SessionEvent,
    SessionMetadata,
    SessionStatus,
    SessionSummary,
    UnknownEvent,
    known_event_adapter,
)

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
EVENTS_FILE = "events.jsonl"
COMPLETION_FILE = "completion.json"


class RecorderError(RuntimeError):
    """Raised when the session record cannot be written durably."""


class SessionFinalizedError(RecorderError):
    """Raised when a finalized session is finalized again with a different summary."""


def _fsync_directory(path: Path) -> None:
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError:  # pragma: no cover - platforms without directory handles
        return
    try:
        os.fsync(fd)
    except OSError:  # pragma: no cover - some filesystems refuse directory fsync
        pass
    finally:
        os.close(fd)


def write_json_atomic(path: Path, payload: str) -> None:
    """Replace ``path`` with ``payload`` so readers never observe a partial file."""

    tmp_path = path.with_name(f".{path.name}.tmp")
    with open(tmp_path, "w", encoding="utf-8") as handle:
        handle.write(payload)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, path)
    _fsync_directory(path.parent)


class SessionRecorder:
    """Write handle for one session directory."""

    def __init__(self, session_dir: Path, metadata: SessionMetadata, events: IO[bytes]) -> None:
        self._session_dir = session_dir
        self._metadata = metadata
        self._events = events

    @classmethod
    def open(
        cls,
        history_dir: Path,
        session_id: str,
        *,
        model: str,
        started_at: datetime,
        **fields: Any,
    ) -> "SessionRecorder":
        """Create (or reopen, for a resumed session) a session directory.

        Reopening keeps the stored identity and start time, bumps
        ``resume_count``, flips the status back to running and marks
        ``resumed_at`` so durations only count time spent running.
        """

        session_dir = Path(history_dir) / session_id
        metadata_path = session_dir / METADATA_FILE
        try:
            session_dir.mkdir(parents=True, exist_ok=True)
            if metadata_path.exists():
                previous = SessionMetadata.model_validate_json(metadata_path.read_text(encoding="utf-8"))
                metadata = previous.model_copy(
                    update={
                        **fields,
                        "model": model or previous.model,
                        "status": SessionStatus.RUNNING,
                        "resume_count": previous.resume_count + 1,
                        "finished_at": None,
                        "resumed_at": started_at,
                    }
                )
            else:
                metadata = SessionMetadata(session_id=session_id, model=model, started_at=started_at, **fields)
            write_json_atomic(metadata_path, metadata.model_dump_json(indent=2))
            events = open(session_dir / EVENTS_FILE, "ab")
            _terminate_torn_line(events)
        except (OSError, ValidationError) as exc:
            raise RecorderError(f"Unable to open session record in {session_dir}: {exc}") from exc

        _fsync_directory(session_dir)
        return cls(session_dir, metadata, events)

    @property
    def session_id(self) -> str:
        return self._metadata.session_id

    @property
    def session_dir(self) -> Path:
        return self._session_dir

    @property
    def metadata(self) -> SessionMetadata:
        return self._metadata

    def record(self, event: SessionEvent) -> None:
        """Append ``event`` and return only once it has reached stable storage."""

        if self._events.closed:
            raise RecorderError(f"Session {self.session_id} is closed")
        line = event.model_dump_json().encode("utf-8") + b"\n"
        try:
            self._events.write(line)
            self._events.flush()
            os.fsync(self._events.fileno())
        except OSError as exc:
            raise RecorderError(f"Failed to persist event for session {self.session_id}: {exc}") from exc

    def update(self, **fields: Any) -> SessionMetadata:
        """Rewrite the in-progress metadata with ``fields`` merged in."""

        if self._metadata.finalized:
            raise SessionFinalizedError(f"Session {self.session_id} is already finalized")
        self._metadata = self._metadata.model_copy(update=fields)
        self._write_metadata()
        return self._metadata

    def finalize(self, summary: SessionSummary) -> SessionMetadata:
        """Write the terminal metadata. Repeating the same summary is a no-op."""

        if self._metadata.finalized:
            current = (self._metadata.status, self._metadata.summary, self._metadata.action)
            if current == (summary.status, summary.summary, summary.action):
                self.close()
                return self._metadata
            raise SessionFinalizedError(
                f"Session {self.session_id} was already finalized as {self._metadata.status.value}"
            )

        metadata = self._metadata
        if metadata.resumed_at is None:
            duration = max(int((summary.finished_at - metadata.started_at).total_seconds()), 0)
        else:
            # Previous runs contributed their own totals; time between runs is not counted.
            elapsed = max(int((summary.finished_at - metadata.resumed_at).total_seconds()), 0)
            duration = (metadata.duration_secs or 0) + elapsed
        self._metadata = self._metadata.model_copy(
            update={
                "status": summary.status,
                "summary": summary.summary,
                "action": summary.action,
                "finished_at": summary.finished_at,
                "duration_secs": duration,
            }
        )
        self._write_metadata()
        self.close()
        return self._metadata

    def read_completion(self) -> CompletionRequest | None:
        return read_completion(self._session_dir)

    def close(self) -> None:
        if not self._events.closed:
            self._events.close()

    def __enter__(self) -> "SessionRecorder":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    def _write_metadata(self) -> None:
        try:
            write_json_atomic(self._session_dir / METADATA_FILE, self._metadata.model_dump_json(indent=2))
        except OSError as exc:
            raise RecorderError(f"Failed to write metadata for session {self.session_id}: {exc}") from exc


def _terminate_torn_line(events: IO[bytes]) -> None:
    """Close off a trailing partial record so the next append starts on a fresh line."""

    path = Path(events.name)
    size = path.stat().st_size
    if size == 0:
        return
    with open(path, "rb") as reader:
        reader.seek(size - 1)
        last = reader.read(1)
    if last != b"\n":
        events.write(b"\n")
        events.flush()
        os.fsync(events.fileno())


def parse_event(data: dict[str, Any]) -> SessionEvent:
    """Map one decoded record to its event model; unknown types become :class:`UnknownEvent`."""

    event_type = data.get("type")
    if event_type not in KNOWN_EVENT_TYPES:
        payload = {key: value for key, value in data.items() if key not in {"type", "timestamp"}}
        timestamp = data.get("timestamp")
        if timestamp is None:
            return UnknownEvent(type=str(event_type or "unknown"), raw=payload)
        return UnknownEvent(type=str(event_type or "unknown"), raw=payload, timestamp=timestamp)
    return known_event_adapter.validate_python(data)


class EventLog:
    """Lazy, restartable view over a session's events in write order.

    Iterating re-opens the underlying file each time. Lines that cannot be
    decoded (typically a record torn by a crash) are skipped.
    """

    def __init__(self, history_dir: Path, session_id: str) -> None:
        self._history_dir = Path(history_dir)
        self._session_id = session_id

    @property
    def path(self) -> Path:
        return self._history_dir / self._session_id / EVENTS_FILE

    def __iter__(self) -> Iterator[SessionEvent]:
        if self.path.exists():
            yield from self._iter_jsonl()
            return
        legacy = _legacy_path(self._history_dir, self._session_id)
        if legacy.exists():
            yield from _legacy_events(legacy)

    def _iter_jsonl(self) -> Iterator[SessionEvent]:
        with open(self.path, "r", encoding="utf-8", errors="replace") as handle:
            for lineno, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                try:
                    data = json.loads(line)
                    if not isinstance(data, dict):
                        raise ValueError("event record is not an object")
                    yield parse_event(data)
                except (ValueError, ValidationError) as exc:
                    logger.warning(
                        "Skipping unreadable event record",
                        extra={"session_id": self._session_id, "line": lineno, "error": str(exc)},
                    )


def list_events(history_dir: Path, session_id: str) -> EventLog:
    return EventLog(history_dir, session_id)


def _legacy_path(history_dir: Path, session_id: str) -> Path:
    return Path(history_dir) / f"{session_id}.json"


def _read_legacy(path: Path) -> dict[str, Any]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a session object")
    return data


def _legacy_metadata(path: Path) -> SessionMetadata:
    data = _read_legacy(path)
    data.setdefault("status", SessionStatus.COMPLETED.value)
    return SessionMetadata.model_validate(data)


def _legacy_events(path: Path) -> Iterator[SessionEvent]:
    data = _read_legacy(path)
    timestamp = data.get("started_at")
    stamp = {"timestamp": timestamp} if timestamp else {}
    if isinstance(data.get("events"), list):
        for record in data["events"]:
            if not isinstance(record, dict):
                continue
            try:
                yield parse_event({**stamp, **record})
            except ValidationError as exc:
                logger.warning("Skipping unreadable legacy event", extra={"path": str(path), "error": str(exc)})
        return
    response = data.get("response") or data.get("response_summary")
    if response:
        yield MessageEvent(content=str(response), **stamp)
    for command in data.get("commands") or []:
        if not isinstance(command, dict):
            continue
        yield CommandEvent(
            command=str(command.get("command", "")),
            exit_code=int(command.get("exit_code", 0)),
            duration_ms=int(command.get("duration_ms", 0)),
            **stamp,
        )


def load_metadata(history_dir: Path, session_id: str) -> SessionMetadata:
    """Load a session's metadata (directory layout first, then the legacy file)."""

    meta_path = Path(history_dir) / session_id / METADATA_FILE
    if meta_path.exists():
        return SessionMetadata.model_validate_json(meta_path.read_text(encoding="utf-8"))
    legacy = _legacy_path(history_dir, session_id)
    if legacy.exists():
        return _legacy_metadata(legacy)
    raise FileNotFoundError(f"No session {session_id} in {history_dir}")


def list_sessions(history_dir: Path) -> list[SessionMetadata]:
    """Return all readable sessions, oldest first."""

    history_dir = Path(history_dir)
    if not history_dir.exists():
        return []

    sessions: list[SessionMetadata] = []
    for entry in history_dir.iterdir():
        try:
            if entry.is_dir():
                meta_path = entry / METADATA_FILE
                if not meta_path.exists():
                    continue
                sessions.append(SessionMetadata.model_validate_json(meta_path.read_text(encoding="utf-8")))
            elif entry.suffix == ".json" and not entry.name.startswith("."):
                sessions.append(_legacy_metadata(entry))
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Skipping unreadable session", extra={"path": str(entry), "error": str(exc)})

    sessions.sort(key=lambda meta: (meta.started_at, meta.session_number or 0))
    return sessions


def recent(history_dir: Path, count: int) -> list[SessionMetadata]:
    sessions = list_sessions(history_dir)
    return sessions[-count:] if count > 0 else []


def read_completion(session_dir: Path) -> CompletionRequest | None:
    path = Path(session_dir) / COMPLETION_FILE
    if not path.exists():
        return None
    try:
        return CompletionRequest.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as exc:
        logger.warning("Ignoring unreadable completion request", extra={"path": str(path), "error": str(exc)})
        return None


def write_completion(session_dir: Path, request: CompletionRequest) -> Path:
    path = Path(session_dir) / COMPLETION_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    write_json_atomic(path, request.model_dump_json(indent=2))
    return path


def clear_completion(session_dir: Path) -> None:
    path = Path(session_dir) / COMPLETION_FILE
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def reconstruct_response(events: Iterable[SessionEvent]) -> str:
    return "".join(event.content for event in events if isinstance(event, MessageEvent))


def extract_commands(events: Iterable[SessionEvent]) -> list[CommandEvent]:
    return [event for event in events if isinstance(event, CommandEvent)]


__all__ = [
    "EventLog",
    "RecorderError",
    "SessionFinalizedError",
    "SessionRecorder",
    "clear_completion",
    "extract_commands",
    "list_events",
    "list_sessions",
    "load_metadata",
    "parse_event",
    "read_completion",
    "recent",
    "reconstruct_response",
    "write_completion",
    "write_json_atomic",
]
