"""Configuration management for OpenBot."""

from __future__ import annotations

import shlex
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class OpenBotSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    home: Path = Field(default=Path("~/.openbot"), validation_alias="OPENBOT_HOME")
    codex_path: str | None = Field(default=None, validation_alias="CODEX_PATH")
    codex_default_model: str | None = Field(default=None, validation_alias="CODEX_DEFAULT_MODEL")
    codex_args: Annotated[tuple[str, ...], NoDecode] = Field(default=(), validation_alias="OPENBOT_CODEX_ARGS")
    log_level: str = Field(default="INFO", validation_alias="OPENBOT_LOG_LEVEL")
    worktree_namespace: str = Field(default="openbot", validation_alias="OPENBOT_WORKTREE_NAMESPACE")
    approval_timeout_secs: float = Field(default=300.0, validation_alias="OPENBOT_APPROVAL_TIMEOUT")
    interrupt_grace_secs: float = Field(default=10.0, validation_alias="OPENBOT_INTERRUPT_GRACE")
    shutdown_timeout_secs: float = Field(default=5.0, validation_alias="OPENBOT_SHUTDOWN_TIMEOUT")
    error_settle_secs: float = Field(default=2.0, validation_alias="OPENBOT_ERROR_SETTLE")
    history_window: int = Field(default=5, validation_alias="OPENBOT_HISTORY_WINDOW")
    session_dir: Path | None = Field(default=None, validation_alias="OPENBOT_SESSION_DIR")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "OPENBOT_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("home", "session_dir")
    @classmethod
    def _expand_paths(cls, value: Path | None) -> Path | None:
        return value.expanduser() if value is not None else None

    @field_validator("codex_args", mode="before")
    @classmethod
    def _parse_codex_args(cls, value):
        if value is None or value == "":
            return ()
        if isinstance(value, (list, tuple)):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            return tuple(shlex.split(value))
        raise TypeError("OPENBOT_CODEX_ARGS must be a list of arguments or a shell-style string")

    @field_validator("worktree_namespace")
    @classmethod
    def _validate_namespace(cls, value: str) -> str:
        normalized = value.strip().strip("/")
        if not normalized or " " in normalized:
            raise ValueError("OPENBOT_WORKTREE_NAMESPACE must be a non-empty branch prefix")
        return normalized

    @field_validator("history_window")
    @classmethod
    def _validate_history_window(cls, value: int) -> int:
        if value < 1:
            raise ValueError("OPENBOT_HISTORY_WINDOW must be >= 1")
        return value

    @property
    def global_skills_dir(self) -> Path:
        return self.home / "skills"

    def bot_dir(self, bot_name: str) -> Path:
        return self.home / "bots" / bot_name

    def bot_skills_dir(self, bot_name: str) -> Path:
        return self.bot_dir(bot_name) / "skills"

    def bot_config_path(self, bot_name: str) -> Path:
        return self.bot_dir(bot_name) / "config.md"

    def skill_dirs(self, bot_name: str) -> list[Path]:
        """Global skills first so bot-local skills override them by name."""

        return [self.global_skills_dir, self.bot_skills_dir(bot_name)]

    def workspace_dir(self, bot_name: str, slug: str) -> Path:
        return self.bot_dir(bot_name) / "workspaces" / slug

    def memory_path(self, bot_name: str, slug: str) -> Path:
        return self.workspace_dir(bot_name, slug) / "memory.json"

    def history_dir(self, bot_name: str, slug: str) -> Path:
        return self.workspace_dir(bot_name, slug) / "history"


@lru_cache(maxsize=1)
def get_settings() -> OpenBotSettings:
    """Return cached settings instance."""

    settings = OpenBotSettings()
    settings.home = settings.home.expanduser().resolve()
    if settings.session_dir is not None:
        settings.session_dir = settings.session_dir.expanduser().resolve()
    return settings


__all__ = ["OpenBotSettings", "get_settings"]
