"""Persistent per-workspace memory: key/value entries plus iteration history.

The agent's own notes live in ``entries``. ``history`` grows by one
:class:`IterationRecord` per completed iteration and is kept in full on disk;
only the most recent few are surfaced into prompts.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from .storage.models import IterationRecord
from .storage.recorder import write_json_atomic

USER_INPUT_KEY = "user_input"


class MemoryStoreError(RuntimeError):
    """Raised when the memory file cannot be read or written."""


class Memory(BaseModel):
    entries: dict[str, str] = Field(default_factory=dict)
    history: list[IterationRecord] = Field(default_factory=list)


def truncate(text: str, limit: int) -> str:
    """Cap ``text`` at ``limit`` characters, marking the cut with an ellipsis."""

    if len(text) <= limit:
        return text
    return f"{text[:limit]}..."


class MemoryStore:
    """Load, mutate and persist a :class:`Memory` document."""

    def __init__(self, path: Path, memory: Memory | None = None) -> None:
        self.path = Path(path)
        self.memory = memory or Memory()

    @classmethod
    def load(cls, path: Path) -> "MemoryStore":
        path = Path(path)
        if not path.exists():
            return cls(path)
        try:
            memory = Memory.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            raise MemoryStoreError(f"Unable to read memory file {path}: {exc}") from exc
        return cls(path, memory)

    def save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            write_json_atomic(self.path, self.memory.model_dump_json(indent=2))
        except OSError as exc:
            raise MemoryStoreError(f"Unable to write memory file {self.path}: {exc}") from exc

    @property
    def entries(self) -> dict[str, str]:
        return dict(self.memory.entries)

    @property
    def history(self) -> list[IterationRecord]:
        return list(self.memory.history)

    def get(self, key: str) -> str | None:
        return self.memory.entries.get(key)

    def set(self, key: str, value: str) -> None:
        self.memory.entries[key] = value

    def remove(self, key: str) -> str | None:
        return self.memory.entries.pop(key, None)

    def clear(self) -> None:
        """Drop all entries. Iteration history is kept."""

        self.memory.entries.clear()

    def add_iteration(self, iteration: int, prompt_summary: str, response_summary: str) -> IterationRecord:
        record = IterationRecord(
            iteration=iteration,
            prompt_summary=truncate(prompt_summary, 100),
            response_summary=truncate(response_summary, 500),
        )
        self.memory.history.append(record)
        return record

    def recent(self, count: int = 5) -> list[IterationRecord]:
        """Return the last ``count`` records, oldest first."""

        if count <= 0:
            return []
        return list(self.memory.history[-count:])

    def display(self) -> str:
        if not self.memory.entries:
            return "No memory entries.\n"
        return "".join(f"  {key} = {value}\n" for key, value in self.memory.entries.items())


__all__ = ["Memory", "MemoryStore", "MemoryStoreError", "USER_INPUT_KEY", "truncate"]
