"""Codex engine integration for OpenBot."""

from .engine import (
    CodexEngine,
    CodexNotFoundError,
    Engine,
    EngineClosedError,
    EngineConfig,
    EngineError,
    EngineFactory,
    SessionInfo,
)
from .events import EngineEvent

__all__ = [
    "CodexEngine",
    "CodexNotFoundError",
    "Engine",
    "EngineClosedError",
    "EngineConfig",
    "EngineError",
    "EngineEvent",
    "EngineFactory",
    "SessionInfo",
]
