"""Skill documents: reusable markdown workflows injected into every prompt."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import yaml

from .profiles.loader import split_frontmatter

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Skill:
    name: str
    description: str
    body: str
    source_path: Path


def parse_skill(path: Path) -> Skill:
    """Parse one skill file; the file stem is the name when frontmatter has none."""

    frontmatter, body = split_frontmatter(path.read_text(encoding="utf-8"))
    name = str(frontmatter.get("name") or path.stem).strip()
    description = str(frontmatter.get("description") or "").strip()
    return Skill(name=name, description=description, body=body, source_path=path)


def load_skills(dirs: Iterable[Path]) -> list[Skill]:
    """Load ``*.md`` skills from ``dirs`` in order.

    A skill in a later directory replaces an earlier one with the same name.
    Files that cannot be read or parsed are skipped with a warning.
    """

    skills: dict[str, Skill] = {}
    for directory in dirs:
        directory = Path(directory)
        if not directory.is_dir():
            continue
        for path in sorted(directory.glob("*.md")):
            try:
                skill = parse_skill(path)
            except (OSError, UnicodeDecodeError, ValueError, yaml.YAMLError) as exc:
                logger.warning("Skipping skill file", extra={"path": str(path), "error": str(exc)})
                continue
            skills.pop(skill.name, None)
            skills[skill.name] = skill
    return list(skills.values())


def format_skills_section(skills: Iterable[Skill]) -> str:
    parts: list[str] = []
    for skill in skills:
        block = f"### {skill.name}\n"
        if skill.description:
            block += f"{skill.description}\n"
        if skill.body:
            block += f"\n{skill.body}\n"
        parts.append(block + "\n")
    if not parts:
        return ""
    return "## Available Skills\n\n" + "".join(parts)


__all__ = ["Skill", "format_skills_section", "load_skills", "parse_skill"]
