"""OpenBot diagnostics CLI."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

from openbot.config import OpenBotSettings
from openbot.storage import list_events, list_sessions
from openbot.vcs import GitError, list_worktrees
from openbot.workspace import NotARepository, resolve


def history_dir_for(settings: OpenBotSettings, bot: str, project: str | None) -> Path:
    slug = resolve(Path.cwd(), skip_check=True, override=project).slug
    return settings.history_dir(bot, slug)


def cmd_sessions(args: argparse.Namespace) -> None:
    settings = OpenBotSettings()
    history_dir = history_dir_for(settings, args.bot, args.project)
    sessions = list_sessions(history_dir)
    if args.status:
        sessions = [meta for meta in sessions if meta.status.value == args.status]
    if args.limit is not None and args.limit > 0:
        sessions = sessions[-args.limit :]
    print(json.dumps([meta.model_dump(mode="json") for meta in sessions], indent=2))


def cmd_events(args: argparse.Namespace) -> None:
    settings = OpenBotSettings()
    history_dir = history_dir_for(settings, args.bot, args.project)
    events = list(list_events(history_dir, args.session_id))
    if args.type:
        events = [event for event in events if event.type == args.type]
    if args.limit is not None and args.limit > 0:
        events = events[-args.limit :]
    print(json.dumps([event.model_dump(mode="json") for event in events], indent=2))


def cmd_orphans(args: argparse.Namespace) -> None:
    settings = OpenBotSettings()
    try:
        workspace = resolve(Path(args.repo) if args.repo else Path.cwd())
    except NotARepository as exc:
        print(f"Not a repository: {exc}")
        raise SystemExit(1)

    try:
        worktrees = list_worktrees(workspace.root)
    except GitError as exc:
        print(f"git unavailable: {exc}")
        raise SystemExit(1)

    prefix = f"refs/heads/{settings.worktree_namespace}/"
    orphans = [
        {
            "path": entry.get("worktree"),
            "branch": entry.get("branch", "").removeprefix("refs/heads/"),
            "exists": Path(entry.get("worktree", "")).exists(),
            "prunable": "prunable" in entry,
        }
        for entry in worktrees
        if entry.get("branch", "").startswith(prefix)
    ]
    print(json.dumps(orphans, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="OpenBot diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_sessions = sub.add_parser("sessions", help="List recorded sessions as JSON")
    p_sessions.add_argument("bot")
    p_sessions.add_argument("--project")
    p_sessions.add_argument("--status", choices=["running", "completed", "aborted", "interrupted"])
    p_sessions.add_argument("--limit", type=int, default=None, help="If provided, show only the latest N")
    p_sessions.set_defaults(func=cmd_sessions)

    p_events = sub.add_parser("events", help="Dump a session's events as JSON")
    p_events.add_argument("bot")
    p_events.add_argument("session_id")
    p_events.add_argument("--project")
    p_events.add_argument("--type", help="Only events of this type (message, command, approval, ...)")
    p_events.add_argument("--limit", type=int, default=None, help="If provided, show only the last N")
    p_events.set_defaults(func=cmd_events)

    p_orphans = sub.add_parser(
        "orphans",
        help="List bot worktrees still registered with git (left behind by failed cleanup)",
    )
    p_orphans.add_argument("--repo", help="Repository to inspect (default: current directory)")
    p_orphans.set_defaults(func=cmd_orphans)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
