"""Fanout MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import json
from dataclasses import asdict
from pathlib import Path

from fanout_mcp.config import FanoutSettings
from fanout_mcp.recorder import SESSIONS_FILE
from fanout_mcp.storage import ChromaStore, ChromaUnavailableError


def load_store(settings: FanoutSettings) -> ChromaStore:
    try:
        return ChromaStore(settings.chroma_persist_path)
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)


def _dump(records) -> None:
    print(json.dumps([asdict(record) for record in records], indent=2, default=str))


def cmd_runs(args: argparse.Namespace) -> None:
    settings = FanoutSettings()
    store = load_store(settings)
    try:
        runs = store.list_runs()
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)
    if args.json:
        _dump(runs)
    else:
        for run in runs:
            print(f"{run.run_id} [{run.status}] <- {run.session_id}")


def cmd_worktrees(args: argparse.Namespace) -> None:
    settings = FanoutSettings()
    store = load_store(settings)
    try:
        records = store.list_worktrees(run_id=args.run_id)
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)
    _dump(records)


def cmd_sessions(args: argparse.Namespace) -> None:
    settings = FanoutSettings()
    store = load_store(settings)
    try:
        records = store.list_session_tracking(run_id=args.run_id)
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)
    _dump(records)


def cmd_events(args: argparse.Namespace) -> None:
    settings = FanoutSettings()
    store = load_store(settings)
    try:
        events = store.fetch_session_events(f"run::{args.run_id}", limit=args.limit)
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)
    if args.json:
        _dump(events)
    else:
        for event in events:
            print(f"{event.timestamp.isoformat()} {event.event_type} {event.document}")


def cmd_index(args: argparse.Namespace) -> None:
    settings = FanoutSettings()
    path = Path(args.path) if args.path else settings.resolved_state_dir / SESSIONS_FILE
    if not path.is_file():
        print(f"No session index at {path}")
        raise SystemExit(1)
    entries = json.loads(path.read_text(encoding="utf-8"))
    for entry in entries:
        commit = entry.get("commit") or "-"
        print(f"{entry['agent_id']} {entry.get('session_id', '-')} {commit[:8]} {entry.get('branch', '-')}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fanout MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_runs = sub.add_parser("runs", help="List the latest status of recorded runs")
    p_runs.add_argument("--json", action="store_true", help="Output JSON")
    p_runs.set_defaults(func=cmd_runs)

    p_worktrees = sub.add_parser("worktrees", help="List worktree records")
    p_worktrees.add_argument("--run-id")
    p_worktrees.set_defaults(func=cmd_worktrees)

    p_sessions = sub.add_parser("sessions", help="List agent session records")
    p_sessions.add_argument("--run-id")
    p_sessions.set_defaults(func=cmd_sessions)

    p_events = sub.add_parser("events", help="Dump the event log of one run in order")
    p_events.add_argument("--run-id", required=True)
    p_events.add_argument("--limit", type=int)
    p_events.add_argument("--json", action="store_true", help="Output JSON")
    p_events.set_defaults(func=cmd_events)

    p_index = sub.add_parser("index", help=f"Print the {SESSIONS_FILE} session index")
    p_index.add_argument("--path", help="Explicit path to the index file")
    p_index.set_defaults(func=cmd_index)

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
