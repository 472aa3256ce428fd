#!/usr/bin/env python3
"""issueflow CLI entrypoint."""

import argparse
import logging
import sys
from pathlib import Path

from issueflow.commands import cache as cmd_cache_module
from issueflow.commands import run as cmd_run_module
from issueflow.commands import state as cmd_state_module
from issueflow.lib import constants
from issueflow.qa.checks import CHECK_TYPES


def get_project_dir(args) -> Path:
    """Project directory from --project-dir, defaulting to the cwd."""
    return Path(args.project_dir).resolve() if args.project_dir else Path.cwd()


def with_project(fn):
    """Adapt a command module function (args, project_dir) to argparse's func(args)."""
    def command(args):
        return fn(args, get_project_dir(args))
    command.__name__ = fn.__name__
    return command


def positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number


def non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be a non-negative integer, got {value}")
    return number


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="issueflow", description="Multi-phase issue workflow orchestrator")
    parser.add_argument("--project-dir", "-C", help="Project directory (default: current directory)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    # issueflow run
    p_run = subparsers.add_parser("run", help="Run phases for issues")
    p_run.add_argument("issues", nargs="+", type=int, help="Issue numbers, in execution order")
    p_run.add_argument("--phases", help=f"Comma-separated phases (default: {','.join(constants.DEFAULT_PHASES)})")
    mode = p_run.add_mutually_exclusive_group()
    mode.add_argument("--sequential", dest="mode", action="store_const", const=constants.MODE_SEQUENTIAL,
                      help="Stop the queue at the first failed issue (default)")
    mode.add_argument("--fan-out", dest="mode", action="store_const", const=constants.MODE_FAN_OUT,
                      help="Run every issue even when one fails")
    p_run.add_argument("--dry-run", action="store_true", help="Show what would run without spawning agents")
    p_run.add_argument("--verbose", "-v", action="store_true", help="Show agent output")
    p_run.add_argument("--timeout", type=float, help="Per-phase timeout in seconds")
    p_run.add_argument("--quality-loop", action="store_true", help="Enable the quality loop for new issues")
    p_run.add_argument("--max-iterations", type=positive_int, help="Quality loop iteration limit")
    p_run.add_argument("--no-log", action="store_true", help="Do not write a run log")
    p_run.set_defaults(func=with_project(cmd_run_module.cmd_run), mode=None)

    # issueflow state
    p_state = subparsers.add_parser("state", help="Inspect or update workflow state")
    state_sub = p_state.add_subparsers(dest="state_cmd", required=True)

    p = state_sub.add_parser("init", help="Start tracking an issue")
    p.add_argument("issue", type=positive_int)
    p.add_argument("--title", help="Issue title (fetched from the tracker if omitted)")
    p.add_argument("--worktree", help="Worktree path")
    p.add_argument("--branch", help="Branch name")
    p.add_argument("--quality-loop", action="store_true")
    p.add_argument("--max-iterations", type=positive_int, default=3)
    p.set_defaults(func=with_project(cmd_state_module.cmd_state_init))

    for name, fn, help_text in (
        ("start", cmd_state_module.cmd_state_start, "Mark a phase in progress"),
        ("complete", cmd_state_module.cmd_state_complete, "Mark a phase completed"),
        ("fail", cmd_state_module.cmd_state_fail, "Mark a phase failed"),
        ("skip", cmd_state_module.cmd_state_skip, "Mark a phase skipped"),
    ):
        p = state_sub.add_parser(name, help=help_text)
        p.add_argument("issue", type=positive_int)
        p.add_argument("phase")
        if name == "fail":
            p.add_argument("--error", help="Failure message")
        p.set_defaults(func=with_project(fn))

    p = state_sub.add_parser("status", help="Set an issue's status")
    p.add_argument("issue", type=positive_int)
    p.add_argument("status", choices=constants.ISSUE_STATUSES)
    p.set_defaults(func=with_project(cmd_state_module.cmd_state_status))

    p = state_sub.add_parser("pr", help="Record an issue's pull request")
    p.add_argument("issue", type=positive_int)
    p.add_argument("pr_number", type=positive_int)
    p.add_argument("url")
    p.set_defaults(func=with_project(cmd_state_module.cmd_state_pr))

    p = state_sub.add_parser("iteration", help="Record the current quality loop iteration")
    p.add_argument("issue", type=positive_int)
    p.add_argument("iteration", type=non_negative_int)
    p.set_defaults(func=with_project(cmd_state_module.cmd_state_iteration))

    p = state_sub.add_parser("init-ac", help="Create acceptance criteria AC-1..AC-N")
    p.add_argument("issue", type=positive_int)
    p.add_argument("count", type=positive_int)
    p.add_argument("--method", choices=constants.VERIFICATION_METHODS, default="manual",
                   help="Verification method for every criterion")
    p.set_defaults(func=with_project(cmd_state_module.cmd_state_init_ac))

    p = state_sub.add_parser("ac", help="Update an acceptance criterion")
    p.add_argument("issue", type=positive_int)
    p.add_argument("ac_id")
    p.add_argument("status", choices=constants.AC_STATUSES)
    p.add_argument("--notes")
    p.set_defaults(func=with_project(cmd_state_module.cmd_state_ac))

    p = state_sub.add_parser("show", help="Show tracked issues")
    p.add_argument("issue", nargs="?", type=positive_int)
    p.set_defaults(func=with_project(cmd_state_module.cmd_state_show))

    p = state_sub.add_parser("remove", help="Stop tracking an issue")
    p.add_argument("issue", type=positive_int)
    p.set_defaults(func=with_project(cmd_state_module.cmd_state_remove))

    p = state_sub.add_parser("cleanup", help="Remove stale and orphaned entries")
    p.add_argument("--dry-run", action="store_true", help="Report without changing state")
    p.add_argument("--max-age", type=float, help="Days before merged/abandoned entries are removed")
    p.add_argument("--all", action="store_true", help="Remove orphaned entries instead of marking them abandoned")
    p.set_defaults(func=with_project(cmd_state_module.cmd_state_cleanup))

    p = state_sub.add_parser("reconcile", help="Promote merged issues")
    p.set_defaults(func=with_project(cmd_state_module.cmd_state_reconcile))

    p = state_sub.add_parser("rebuild", help="Rebuild state from run logs")
    p.add_argument("--force", action="store_true", help="Replace an existing state file")
    p.set_defaults(func=with_project(cmd_state_module.cmd_state_rebuild))

    p = state_sub.add_parser("discover", help="Find worktrees for untracked issues")
    p.add_argument("--add", action="store_true", help="Start tracking what is found")
    p.set_defaults(func=with_project(cmd_state_module.cmd_state_discover))

    # issueflow qa-cache
    p_cache = subparsers.add_parser("qa-cache", help="Query or update cached QA results")
    p_cache.add_argument("--verbose", "-v", action="store_true", help="Log cache decisions")
    cache_sub = p_cache.add_subparsers(dest="cache_cmd", required=True)

    p = cache_sub.add_parser("check", help="Exit 0 if a valid cached result exists")
    p.add_argument("kind", help=f"One of: {', '.join(CHECK_TYPES)}")
    p.set_defaults(func=with_project(cmd_cache_module.cmd_cache_check))

    p = cache_sub.add_parser("get", help="Print a cached result")
    p.add_argument("kind")
    p.set_defaults(func=with_project(cmd_cache_module.cmd_cache_get))

    p = cache_sub.add_parser("set", help="Cache a result read as JSON from stdin")
    p.add_argument("kind")
    p.add_argument("--ttl", type=float, help="Seconds the result stays valid")
    p.set_defaults(func=with_project(cmd_cache_module.cmd_cache_set))

    p = cache_sub.add_parser("clear", help="Clear one or all cached results")
    p.add_argument("kind", nargs="?")
    p.set_defaults(func=with_project(cmd_cache_module.cmd_cache_clear))

    p = cache_sub.add_parser("status", help="Show cache status for every check")
    p.set_defaults(func=with_project(cmd_cache_module.cmd_cache_status))

    p = cache_sub.add_parser("hash", help="Print current diff and config hashes")
    p.set_defaults(func=with_project(cmd_cache_module.cmd_cache_hash))

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        # argparse exits 2 on bad arguments, 0 for --help
        return e.code if isinstance(e.code, int) else constants.EXIT_CONFIG_ERROR

    if not getattr(args, "func", None):
        parser.print_help()
        return constants.EXIT_CONFIG_ERROR

    configure_logging(args.debug)
    if args.command == "qa-cache" and args.verbose:
        logging.getLogger("issueflow.qa").setLevel(logging.INFO)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
