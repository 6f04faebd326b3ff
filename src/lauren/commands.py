from __future__ import annotations

import argparse
import sys
from pathlib import Path

from lauren.config import load_config
from lauren.constants import (
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_STATE_DIR,
    ENV_MAX_ITERATIONS,
    ENV_STATE_DIR,
)
from lauren.loop import run_loop
from lauren.models import ConfigError, InvocationError, LaurenConfig, LedgerError, MissingGoalError
from lauren.state import StateStore, initialize_state_dir, summarize_statuses


def _load_config_or_report(args: argparse.Namespace, command: str) -> LaurenConfig | None:
    try:
        return load_config(
            state_dir=getattr(args, "state_dir", None),
            max_iterations=getattr(args, "max_iterations", None),
        )
    except ConfigError as exc:
        print(f"lauren {command}: ERROR {exc}", file=sys.stderr)
        return None


def _cmd_run(args: argparse.Namespace) -> int:
    config = _load_config_or_report(args, "run")
    if config is None:
        return 2
    try:
        outcome = run_loop(config)
    except MissingGoalError as exc:
        print(f"lauren: ERROR {exc}", file=sys.stderr)
        return 1
    except InvocationError as exc:
        print(f"lauren: ERROR {exc}", file=sys.stderr)
        return 1
    return outcome.exit_code


def _cmd_init(args: argparse.Namespace) -> int:
    config = _load_config_or_report(args, "init")
    if config is None:
        return 2
    goal_text = args.goal or ""
    if args.goal_file:
        try:
            goal_text = Path(args.goal_file).expanduser().read_text(encoding="utf-8")
        except OSError as exc:
            print(f"lauren init: ERROR could not read goal file: {exc}", file=sys.stderr)
            return 1

    store = StateStore(config.state_dir)
    created = initialize_state_dir(store, goal_text=goal_text)
    print(f"state_dir: {store.state_dir}")
    for path in created:
        print(f"created: {path}")
    if not store.has_goal():
        print(
            f"lauren init: write the goal to {store.goal_path} before running lauren",
            file=sys.stderr,
        )
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    config = _load_config_or_report(args, "status")
    if config is None:
        return 2
    store = StateStore(config.state_dir)
    print(f"state_dir: {store.state_dir}")
    print(f"goal: {'present' if store.has_goal() else 'missing'}")
    print(f"complete: {'yes' if store.is_complete() else 'no'}")
    print(f"max_iterations: {config.max_iterations}")
    print(f"runner: {config.agent_runner.runner}")
    try:
        requirements, issues = store.load_ledger()
    except LedgerError as exc:
        print(f"lauren status: ERROR {exc}", file=sys.stderr)
        return 1
    counts = summarize_statuses(requirements)
    print(f"requirements: {len(requirements)}")
    for status, count in counts.items():
        print(f"  {status}: {count}")
    print(f"ledger_issues: {len(issues)}")
    print(f"learnings: {store.learnings_entry_count()}")
    return 0


def _cmd_check(args: argparse.Namespace) -> int:
    config = _load_config_or_report(args, "check")
    if config is None:
        return 2
    store = StateStore(config.state_dir)
    try:
        requirements, issues = store.load_ledger()
    except LedgerError as exc:
        print(f"lauren check: ERROR {exc}", file=sys.stderr)
        return 1
    for issue in issues:
        print(f"lauren check: {issue}", file=sys.stderr)
    if issues:
        return 1
    print(f"ledger ok: {len(requirements)} requirement(s)")
    return 0


def _add_state_dir_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--state-dir",
        default=None,
        help=f"State directory (default: ${ENV_STATE_DIR} or {DEFAULT_STATE_DIR})",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lauren",
        description="Drive a goal to completion with an autonomous coding agent",
    )
    subparsers = parser.add_subparsers(dest="command")

    run = subparsers.add_parser("run", help="Run planning/execution iterations (the default)")
    _add_state_dir_argument(run)
    run.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help=f"Iteration budget (default: ${ENV_MAX_ITERATIONS} or {DEFAULT_MAX_ITERATIONS})",
    )
    run.set_defaults(handler=_cmd_run)

    init = subparsers.add_parser("init", help="Create the state directory skeleton")
    _add_state_dir_argument(init)
    goal_source = init.add_mutually_exclusive_group()
    goal_source.add_argument("--goal", default=None, help="Goal text to write to goal.md")
    goal_source.add_argument("--goal-file", default=None, help="File whose content becomes goal.md")
    init.set_defaults(handler=_cmd_init)

    status = subparsers.add_parser("status", help="Summarize goal, ledger, and learnings")
    _add_state_dir_argument(status)
    status.set_defaults(handler=_cmd_status)

    check = subparsers.add_parser("check", help="Validate the requirements ledger")
    _add_state_dir_argument(check)
    check.set_defaults(handler=_cmd_check)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "handler", None)
    if handler is None:
        # Bare invocation runs the loop configured from the environment.
        return _cmd_run(args)
    return int(handler(args))
