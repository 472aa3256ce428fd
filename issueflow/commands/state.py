"""
issueflow state - Inspect and update the workflow state document.

Agents call the write subcommands (start/complete/fail/...) to report
progress when they run standalone. Under `issueflow run` the orchestrator
owns the document, so those writes become no-ops.
"""

import json
import os
from pathlib import Path

from issueflow.lib import constants
from issueflow.lib.config import load_settings, ConfigError
from issueflow.lib.github import get_issue_info
from issueflow.runner.run_log import get_logs_dir
from issueflow.workflow.cleanup import cleanup_stale_entries, reconcile_state_at_startup
from issueflow.workflow.discovery import discover_untracked_worktrees, track_discovered
from issueflow.workflow.rebuild import rebuild_state_from_logs
from issueflow.workflow.state_schema import create_acceptance_criteria, create_acceptance_criterion
from issueflow.workflow.state_store import StateError, StateFileError, StateStore


def _under_orchestrator() -> bool:
    return bool(os.environ.get(constants.ORCHESTRATOR_ENV))


def _store(project_dir: Path) -> StateStore:
    return StateStore.for_project(project_dir)


def _apply(fn) -> int:
    """Run a state mutation, mapping state errors to exit codes."""
    if _under_orchestrator():
        return constants.EXIT_OK
    try:
        fn()
    except StateFileError as e:
        print(f"ERROR: {e}")
        return constants.EXIT_CONFIG_ERROR
    except StateError as e:
        print(f"ERROR: {e}")
        return constants.EXIT_FAILED
    return constants.EXIT_OK


def cmd_state_init(args, project_dir: Path) -> int:
    def init():
        title = args.title or get_issue_info(args.issue, project_dir).title
        _store(project_dir).initialize_issue(
            args.issue, title, worktree=args.worktree, branch=args.branch,
            quality_loop=args.quality_loop, max_iterations=args.max_iterations,
        )
        print(f"Initialized issue #{args.issue}: {title}")
    return _apply(init)


def _phase_command(status: str):
    def command(args, project_dir: Path) -> int:
        error = getattr(args, "error", None)
        return _apply(lambda: _store(project_dir).update_phase_status(args.issue, args.phase, status, error=error))
    return command


cmd_state_start = _phase_command(constants.PHASE_IN_PROGRESS)
cmd_state_complete = _phase_command(constants.PHASE_COMPLETED)
cmd_state_fail = _phase_command(constants.PHASE_FAILED)
cmd_state_skip = _phase_command(constants.PHASE_SKIPPED)


def cmd_state_status(args, project_dir: Path) -> int:
    return _apply(lambda: _store(project_dir).update_issue_status(args.issue, args.status))


def cmd_state_pr(args, project_dir: Path) -> int:
    return _apply(lambda: _store(project_dir).update_pr_info(args.issue, args.pr_number, args.url))


def cmd_state_iteration(args, project_dir: Path) -> int:
    return _apply(lambda: _store(project_dir).update_loop_iteration(args.issue, args.iteration))


def cmd_state_init_ac(args, project_dir: Path) -> int:
    """Replace an issue's acceptance criteria with AC-1..AC-N, all pending."""
    def init_ac():
        criteria = create_acceptance_criteria([
            create_acceptance_criterion(f"AC-{i}", f"Acceptance criterion {i}", args.method)
            for i in range(1, args.count + 1)
        ])
        _store(project_dir).update_acceptance_criteria(args.issue, criteria)
        print(f"Initialized {args.count} acceptance criteria for issue #{args.issue}")
    return _apply(init_ac)


def cmd_state_ac(args, project_dir: Path) -> int:
    return _apply(lambda: _store(project_dir).update_ac_status(args.issue, args.ac_id, args.status, args.notes))


def cmd_state_remove(args, project_dir: Path) -> int:
    def remove():
        if _store(project_dir).remove_issue(args.issue):
            print(f"Removed issue #{args.issue}")
        else:
            print(f"Issue #{args.issue} is not tracked")
    return _apply(remove)


def cmd_state_show(args, project_dir: Path) -> int:
    store = _store(project_dir)
    try:
        if args.issue is not None:
            issue = store.get_issue_state(args.issue)
            if issue is None:
                print(f"ERROR: Issue #{args.issue} not found")
                return constants.EXIT_FAILED
            print(json.dumps(issue.to_dict(), indent=2))
            return constants.EXIT_OK
        issues = store.get_all_issue_states()
    except StateFileError as e:
        print(f"ERROR: {e}")
        return constants.EXIT_CONFIG_ERROR

    if not issues:
        print("No issues tracked.")
        return constants.EXIT_OK
    for number, issue in sorted(issues.items()):
        phase = f" [{issue.current_phase}]" if issue.current_phase else ""
        print(f"#{number:<6} {issue.status:<16}{phase} {issue.title}")
    return constants.EXIT_OK


def cmd_state_cleanup(args, project_dir: Path) -> int:
    if _under_orchestrator() and not args.dry_run:
        return constants.EXIT_OK
    try:
        settings = load_settings(project_dir)
    except ConfigError as e:
        print(f"ERROR: {e}")
        return constants.EXIT_CONFIG_ERROR

    max_age = args.max_age if args.max_age is not None else settings.cleanup_max_age_days
    result = cleanup_stale_entries(
        _store(project_dir),
        project_dir,
        dry_run=args.dry_run,
        max_age_days=max_age,
        remove_all=args.all,
        base_branch=settings.base_branch,
    )
    if not result.success:
        print(f"ERROR: {result.error}")
        return constants.EXIT_FAILED

    prefix = "Would remove" if args.dry_run else "Removed"
    if result.removed:
        print(f"{prefix}: {', '.join(f'#{n}' for n in result.removed)}")
    if result.merged:
        print(f"  merged: {', '.join(f'#{n}' for n in result.merged)}")
    if result.orphaned:
        verb = "Would mark" if args.dry_run else "Marked"
        print(f"{verb} abandoned: {', '.join(f'#{n}' for n in result.orphaned)}")
    if not (result.removed or result.orphaned):
        print("Nothing to clean up.")
    return constants.EXIT_OK


def cmd_state_reconcile(args, project_dir: Path) -> int:
    if _under_orchestrator():
        return constants.EXIT_OK
    try:
        settings = load_settings(project_dir)
    except ConfigError as e:
        print(f"ERROR: {e}")
        return constants.EXIT_CONFIG_ERROR

    result = reconcile_state_at_startup(_store(project_dir), project_dir, settings.base_branch)
    if not result.success:
        print(f"ERROR: {result.error}")
        return constants.EXIT_FAILED
    for number in result.advanced:
        print(f"#{number}: merged")
    for number in result.still_pending:
        print(f"#{number}: still ready for merge")
    if not (result.advanced or result.still_pending):
        print("No issues awaiting merge.")
    return constants.EXIT_OK


def cmd_state_rebuild(args, project_dir: Path) -> int:
    if _under_orchestrator():
        return constants.EXIT_OK
    store = _store(project_dir)
    if store.state_exists() and not args.force:
        print(f"ERROR: {store.state_path} exists. Use --force to replace it.")
        return constants.EXIT_FAILED

    result = rebuild_state_from_logs(store, get_logs_dir(project_dir))
    if not result.success:
        print(f"ERROR: {result.error}")
        return constants.EXIT_FAILED
    print(f"Rebuilt {result.issues_found} issue(s) from {result.logs_processed} run log(s)")
    return constants.EXIT_OK


def cmd_state_discover(args, project_dir: Path) -> int:
    store = _store(project_dir)
    try:
        result = discover_untracked_worktrees(store, project_dir, get_logs_dir(project_dir))
    except StateFileError as e:
        print(f"ERROR: {e}")
        return constants.EXIT_CONFIG_ERROR

    if not result.success:
        print(f"ERROR: {result.error}")
        return constants.EXIT_FAILED

    print(f"Scanned {result.worktrees_scanned} worktree(s), {result.already_tracked} already tracked")
    for item in result.discovered:
        phase = f" (last phase: {item.inferred_phase})" if item.inferred_phase else ""
        print(f"  + #{item.issue_number} {item.title} [{item.branch}]{phase}")
    for skipped in result.skipped:
        print(f"  - {skipped.path}: {skipped.reason}")

    if args.add and result.discovered and not _under_orchestrator():
        added = track_discovered(store, result.discovered)
        print(f"Added {len(added)} issue(s) to state")
    return constants.EXIT_OK
