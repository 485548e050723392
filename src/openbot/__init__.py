"""OpenBot: autonomous Codex agent loops with isolated worktrees and durable session history."""

__version__ = "0.3.0"

__all__ = ["__version__"]
