"""Helpers for launching the Codex CLI."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Mapping, Sequence

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}

SESSION_TOOLS_SERVER = "openbot"
SESSION_TOOLS_COMMAND = "openbot-session-tools"


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return the parent environment minus interpreter overrides, plus ``additional``."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


def toml_value(value: object) -> str:
    """Render ``value`` as a TOML literal for a ``-c key=value`` override."""

    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, Mapping):
        inner = ", ".join(f"{key} = {toml_value(item)}" for key, item in value.items())
        return "{" + inner + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(toml_value(item) for item in value) + "]"
    return json.dumps(str(value))


def config_overrides(
    *,
    model: str | None = None,
    sandbox_mode: str | None = None,
    approval_policy: str | None = None,
    resume_session_id: str | None = None,
    session_dir: Path | None = None,
    tools_command: Sequence[str] | None = None,
) -> list[str]:
    """Build the ``-c`` flags that configure one protocol-mode session."""

    pairs: list[tuple[str, object]] = []
    if model:
        pairs.append(("model", model))
    if sandbox_mode:
        pairs.append(("sandbox_mode", sandbox_mode))
    if approval_policy:
        pairs.append(("approval_policy", approval_policy))
    if resume_session_id:
        pairs.append(("experimental_resume", resume_session_id))
    if session_dir is not None:
        command = list(tools_command or [SESSION_TOOLS_COMMAND])
        prefix = f"mcp_servers.{SESSION_TOOLS_SERVER}"
        pairs.append((f"{prefix}.command", command[0]))
        if len(command) > 1:
            pairs.append((f"{prefix}.args", command[1:]))
        pairs.append((f"{prefix}.env", {"OPENBOT_SESSION_DIR": str(session_dir)}))

    flags: list[str] = []
    for key, value in pairs:
        flags.extend(["-c", f"{key}={toml_value(value)}"])
    return flags


__all__ = [
    "SESSION_TOOLS_COMMAND",
    "SESSION_TOOLS_SERVER",
    "config_overrides",
    "sanitize_environment",
    "toml_value",
]
