"""OpenBot command line interface."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from pydantic import ValidationError

from .approval import ApprovalPolicy, SandboxMode
from .codex import CodexEngine, EngineConfig, EngineError
from .config import get_settings
from .console import OperatorConsole
from .controller import IterationController, RunError, RunOptions
from .memory import MemoryStore, MemoryStoreError, truncate
from .profiles import ProfileLoadError, ProfileLoader
from .prompt import PromptError
from .server import configure_logging
from .skills import load_skills
from .storage import RecorderError, extract_commands, list_events, list_sessions, load_metadata, reconstruct_response
from .vcs import GitError
from .workspace import NotARepository, resolve
from .worktree import WorktreeError

CLI_ERRORS = (
    EngineError,
    GitError,
    MemoryStoreError,
    NotARepository,
    ProfileLoadError,
    PromptError,
    RecorderError,
    RunError,
    ValidationError,
    WorktreeError,
)


def _workspace_slug(args: argparse.Namespace) -> str:
    return resolve(Path.cwd(), skip_check=True, override=getattr(args, "project", None)).slug


def cmd_run(args: argparse.Namespace) -> int:
    settings = get_settings()
    configure_logging(settings.log_level)

    profile = ProfileLoader(settings.home).load(args.bot)
    profile = profile.with_overrides(
        instructions=args.prompt,
        max_iterations=args.max_iterations,
        sleep_secs=args.sleep,
        model=args.model,
        sandbox=args.sandbox,
        approval_policy=args.approval_policy,
        project=args.project,
        skip_git_check=True if args.skip_git_check else None,
        use_worktree=False if args.no_worktree else None,
    )
    options = RunOptions.from_profile(profile, cwd=Path.cwd(), resume_session_id=args.resume)

    def engine_factory(config: EngineConfig) -> CodexEngine:
        return CodexEngine(config, executable=settings.codex_path, extra_args=settings.codex_args)

    controller = IterationController(settings, engine_factory, operator=OperatorConsole())
    result = asyncio.run(controller.run(options))
    if result.branch:
        print(f"Branch: {result.branch}", file=sys.stderr)
    return 0


def cmd_memory(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = MemoryStore.load(settings.memory_path(args.bot, _workspace_slug(args)))

    if args.action == "show":
        sys.stdout.write(store.display())
        return 0
    if args.action == "set":
        if args.key is None or args.value is None:
            print("error: memory set requires KEY and VALUE", file=sys.stderr)
            return 2
        store.set(args.key, args.value)
    elif args.action == "remove":
        if args.key is None:
            print("error: memory remove requires KEY", file=sys.stderr)
            return 2
        if store.remove(args.key) is None:
            print(f"No memory entry named {args.key}.", file=sys.stderr)
            return 1
    elif args.action == "clear":
        store.clear()
    store.save()
    return 0


def cmd_skills(args: argparse.Namespace) -> int:
    settings = get_settings()
    skills = load_skills(settings.skill_dirs(args.bot))
    if not skills:
        print("No skills loaded.")
        return 0
    for skill in skills:
        line = f"{skill.name}"
        if skill.description:
            line += f" - {skill.description}"
        print(f"{line}  ({skill.source_path})")
    return 0


def cmd_history(args: argparse.Namespace) -> int:
    settings = get_settings()
    history_dir = settings.history_dir(args.bot, _workspace_slug(args))

    if args.session_id is None:
        sessions = list_sessions(history_dir)
        if args.limit is not None and args.limit > 0:
            sessions = sessions[-args.limit :]
        if not sessions:
            print("No sessions recorded.")
            return 0
        for meta in sessions:
            action = f" -> {meta.action.value}" if meta.action else ""
            print(
                f"{meta.session_id} [{meta.status.value}{action}] "
                f"{meta.started_at:%Y-%m-%d %H:%M} iterations={meta.iterations} "
                f"{truncate(meta.summary, 80)}"
            )
        return 0

    try:
        meta = load_metadata(history_dir, args.session_id)
    except FileNotFoundError:
        print(f"error: no session {args.session_id}", file=sys.stderr)
        return 1
    events = list(list_events(history_dir, args.session_id))
    print(f"Session {meta.session_id} ({meta.status.value}, model {meta.model})")
    if meta.branch:
        print(f"Branch: {meta.branch} (based on {meta.base_branch})")
    if meta.summary:
        print(f"Summary: {meta.summary}")
    for command in extract_commands(events):
        print(f"[exec] {command.command} (exit {command.exit_code}, {command.duration_ms} ms)")
    response = reconstruct_response(events)
    if response:
        print()
        print(response)
    return 0


def cmd_bots(args: argparse.Namespace) -> int:
    settings = get_settings()
    loader = ProfileLoader(settings.home)
    names = loader.list_bots()
    if not names:
        print(f"No bots found in {loader.bots_dir}.")
        return 0
    for name in names:
        profile = loader.load(name)
        print(f"{name}: {profile.description}" if profile.description else name)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="openbot", description="Run autonomous coding bots in a loop")
    sub = parser.add_subparsers(dest="cmd")

    p_run = sub.add_parser("run", help="Run a bot against the current repository")
    p_run.add_argument("bot")
    p_run.add_argument("-n", "--max-iterations", type=int, default=None, help="0 means unlimited")
    p_run.add_argument("-s", "--sleep", type=float, default=None, help="Seconds between iterations")
    p_run.add_argument("-p", "--prompt", default=None, help="Override the bot's instructions")
    p_run.add_argument("--model", default=None)
    p_run.add_argument("--sandbox", choices=[mode.value for mode in SandboxMode], default=None)
    p_run.add_argument("--approval-policy", choices=[policy.value for policy in ApprovalPolicy], default=None)
    p_run.add_argument("--resume", default=None, metavar="SESSION_ID", help="Continue a previous session")
    p_run.add_argument("--no-worktree", action="store_true", help="Work in the repository itself")
    p_run.add_argument("--skip-git-check", action="store_true", help="Allow running outside a git repository")
    p_run.add_argument("--project", default=None, help="Explicit workspace slug")
    p_run.set_defaults(func=cmd_run)

    p_memory = sub.add_parser("memory", help="Inspect or edit a bot's workspace memory")
    p_memory.add_argument("bot")
    p_memory.add_argument("action", choices=["show", "set", "remove", "clear"], nargs="?", default="show")
    p_memory.add_argument("key", nargs="?")
    p_memory.add_argument("value", nargs="?")
    p_memory.add_argument("--project", default=None)
    p_memory.set_defaults(func=cmd_memory)

    p_skills = sub.add_parser("skills", help="List the skills a bot would load")
    p_skills.add_argument("bot")
    p_skills.set_defaults(func=cmd_skills)

    p_history = sub.add_parser("history", help="List sessions or show one session")
    p_history.add_argument("bot")
    p_history.add_argument("session_id", nargs="?")
    p_history.add_argument("--project", default=None)
    p_history.add_argument("--limit", type=int, default=None, help="Show only the latest N sessions")
    p_history.set_defaults(func=cmd_history)

    p_bots = sub.add_parser("bots", help="List configured bots")
    p_bots.set_defaults(func=cmd_bots)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 0
    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130
    except CLI_ERRORS as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


__all__ = ["CLI_ERRORS", "build_parser", "main"]


if __name__ == "__main__":
    sys.exit(main())
