"""Prompt assembly for one iteration."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Sequence

from .memory import USER_INPUT_KEY
from .skills import Skill, format_skills_section
from .storage.models import IterationRecord

HISTORY_SUMMARY_LIMIT = 200


class PromptError(RuntimeError):
    """Raised when the prompt for an iteration cannot be built."""


@dataclass(slots=True)
class PromptContext:
    """Everything the prompt builder may draw on for one iteration."""

    instructions: str
    iteration: int
    max_iterations: int = 0
    skills: Sequence[Skill] = field(default_factory=list)
    memory: Mapping[str, str] = field(default_factory=dict)
    recent_history: Sequence[IterationRecord] = field(default_factory=list)
    bot_skill_dir: Path | None = None
    project: str | None = None
    branch: str | None = None
    base_branch: str | None = None
    user_input: str | None = None


PromptBuilder = Callable[[PromptContext], str]


def _clip(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit]


def build_prompt(context: PromptContext) -> str:
    sections: list[str] = [context.instructions.strip() + "\n"]

    status = ["## Status"]
    if context.project:
        status.append(f"- Project: {context.project}")
    limit = str(context.max_iterations) if context.max_iterations > 0 else "unlimited"
    status.append(f"- Iteration: {context.iteration} of {limit}")
    if context.branch:
        base = context.base_branch or "the base branch"
        status.extend(
            [
                f"- Branch: `{context.branch}` (based on `{base}`)",
                "- You are working in an isolated git worktree. Commit your changes on this branch.",
                "- When you call `session_complete`, choose an action for your commits:",
                f"  - `merge`: your branch gets merged into `{base}`",
                "  - `review`: leave the branch for the user to review",
                "  - `discard`: drop the changes",
            ]
        )
    sections.append("\n".join(status) + "\n")

    skills_section = format_skills_section(context.skills)
    if skills_section:
        sections.append(skills_section)

    entries = {key: value for key, value in context.memory.items() if key != USER_INPUT_KEY}
    if entries:
        lines = ["## Memory (from previous iterations)", ""]
        lines.extend(f"- **{key}**: {value}" for key, value in entries.items())
        sections.append("\n".join(lines) + "\n")

    if context.user_input:
        sections.append(
            "## User Input\n\n"
            "The user provided the following input. Address this directly in your response:\n\n"
            f"> {context.user_input}\n"
        )

    if context.recent_history:
        lines = ["### Recent History"]
        lines.extend(
            f"- Iteration {record.iteration}: {_clip(record.response_summary, HISTORY_SUMMARY_LIMIT)}"
            for record in context.recent_history
        )
        sections.append("\n".join(lines) + "\n")

    sections.append(
        "## Instructions\n"
        "You are a fully autonomous agent. Do not ask for human input; make decisions and act.\n"
        "Your goal is to ship working code: make changes, test them, and commit.\n\n"
        "- Work through the task independently and make as much progress as you can\n"
        "- When you are done, call the `session_complete` tool with a summary of what you accomplished\n"
        "- You can call the `session_history` tool to browse previous sessions in detail. "
        "Use action='list' for an overview or action='view' with a session_id to read the events "
        "(shows the end first; increase offset to page backward).\n"
        "- Do not stop and ask for clarification; use your best judgment and keep moving\n"
    )

    skill_dir = context.bot_skill_dir or Path("skills")
    sections.append(
        "## Skills System\n\n"
        "Skills are reusable markdown workflows loaded into your prompt each iteration.\n"
        f"You currently have {len(context.skills)} skill(s) loaded "
        '(listed above under "Available Skills" if any).\n\n'
        f"**Creating skills:** Write a markdown file to `{skill_dir}/` with YAML frontmatter:\n"
        "```\n"
        "---\n"
        "name: skill-name\n"
        "description: What this skill does\n"
        "---\n"
        "Step-by-step instructions, examples, and guidelines here.\n"
        "```\n"
        "The skill will be loaded automatically in your next iteration.\n"
    )

    return "\n".join(sections)


__all__ = ["HISTORY_SUMMARY_LIMIT", "PromptBuilder", "PromptContext", "PromptError", "build_prompt"]
