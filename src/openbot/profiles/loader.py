"""Profile loading utilities."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .models import BotProfile

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)


class ProfileLoadError(RuntimeError):
    """Raised when a bot's config.md cannot be parsed."""


def split_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Split a markdown document into its YAML frontmatter mapping and body.

    Documents without a leading ``---`` block have empty frontmatter.
    """

    match = _FRONTMATTER_RE.match(text)
    if match is None:
        return {}, text.strip()
    document = yaml.safe_load(match.group(1))
    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise ValueError("frontmatter must be a mapping")
    return document, text[match.end():].strip()


class ProfileLoader:
    """Loads bot profiles from ``<home>/bots/<name>/config.md``."""

    def __init__(self, home: Path) -> None:
        self._bots_dir = Path(home) / "bots"

    @property
    def bots_dir(self) -> Path:
        return self._bots_dir

    def config_path(self, bot_name: str) -> Path:
        return self._bots_dir / bot_name / "config.md"

    def load(self, bot_name: str) -> BotProfile:
        """Return the profile for ``bot_name``; a missing config file yields defaults."""

        path = self.config_path(bot_name)
        if not path.exists():
            return BotProfile(name=bot_name)

        try:
            frontmatter, body = split_frontmatter(path.read_text(encoding="utf-8"))
        except (OSError, ValueError, yaml.YAMLError) as exc:
            raise ProfileLoadError(f"Failed to parse {path}: {exc}") from exc

        document = {**frontmatter, "name": bot_name}
        if body:
            document["instructions"] = body
        try:
            return BotProfile.model_validate(document)
        except ValidationError as exc:
            raise ProfileLoadError(f"Profile validation error in {path}: {exc}") from exc

    def list_bots(self) -> list[str]:
        if not self._bots_dir.exists():
            return []
        return sorted(entry.name for entry in self._bots_dir.iterdir() if entry.is_dir())

    def load_all(self) -> dict[str, BotProfile]:
        """Load every bot profile. Errors for individual bots are collected and raised together."""

        profiles: dict[str, BotProfile] = {}
        errors: list[str] = []
        for name in self.list_bots():
            try:
                profiles[name] = self.load(name)
            except ProfileLoadError as exc:
                errors.append(str(exc))
        if errors:
            raise ProfileLoadError("; ".join(errors))
        return profiles


__all__ = ["ProfileLoadError", "ProfileLoader", "split_frontmatter"]
