"""Bot profile model."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..approval import ApprovalPolicy, SandboxMode

DEFAULT_INSTRUCTIONS = (
    "You are an autonomous AI agent. Complete tasks thoroughly and report your progress."
)


class BotProfile(BaseModel):
    """Runtime configuration for a bot, read from its ``config.md``."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(default="", description="Bot name; the directory under bots/.")
    description: str = Field(default="", description="Short description shown by `openbot bots`.")
    instructions: str = Field(
        default=DEFAULT_INSTRUCTIONS,
        description="Base prompt for every iteration; the markdown body of config.md.",
    )
    max_iterations: int = Field(default=10, ge=0, description="Iteration cap; 0 means unlimited.")
    sleep_secs: float = Field(default=30, ge=0, description="Pause between iterations; 0 means none.")
    stop_phrase: str | None = Field(default="TASK COMPLETE")
    model: str | None = None
    sandbox: SandboxMode = SandboxMode.WORKSPACE_WRITE
    approval_policy: ApprovalPolicy | None = None
    skip_git_check: bool = False
    use_worktree: bool = True
    project: str | None = Field(default=None, description="Explicit workspace slug override.")

    @field_validator("instructions", mode="before")
    @classmethod
    def _default_instructions(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_INSTRUCTIONS
        return value

    @field_validator("stop_phrase", "model", "project", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def with_overrides(self, **overrides: Any) -> "BotProfile":
        """Return a copy with every non-``None`` override applied and re-validated."""

        updates = {key: value for key, value in overrides.items() if value is not None}
        if not updates:
            return self
        return BotProfile.model_validate({**self.model_dump(), **updates})


__all__ = ["BotProfile", "DEFAULT_INSTRUCTIONS"]
