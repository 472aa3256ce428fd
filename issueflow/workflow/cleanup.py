"""
Startup reconciliation and stale-entry cleanup for the state document.

Both talk to collaborators (gh, git) that may be unavailable. An answer of
"unknown" or "unavailable" is treated as "not merged" and never as an error.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

from issueflow.git.branch import MergeEvidence, check_issue_merged
from issueflow.git.worktree import list_worktrees, normalize_path
from issueflow.lib import constants
from issueflow.lib.github import PRMergeState, get_pr_merge_state
from issueflow.workflow.state_schema import IssueState, now_iso, parse_iso
from issueflow.workflow.state_store import StateFileError, StateStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_DAYS = 7


@dataclass
class ReconcileResult:
    success: bool
    advanced: list[int] = field(default_factory=list)
    still_pending: list[int] = field(default_factory=list)
    error: str | None = None


@dataclass
class CleanupResult:
    success: bool
    removed: list[int] = field(default_factory=list)
    orphaned: list[int] = field(default_factory=list)
    merged: list[int] = field(default_factory=list)
    error: str | None = None


def is_issue_merged(
    issue: IssueState,
    repo: Path | None = None,
    base_branch: str = "main",
) -> bool:
    """
    Decide whether an issue's work has verifiably landed.

    The PR state is authoritative when gh answers; git ancestry is consulted
    only when there is no PR or gh could not tell.
    """
    if issue.pr is not None:
        pr_state = get_pr_merge_state(issue.pr.number, repo)
        if pr_state == PRMergeState.MERGED:
            return True
        if pr_state != PRMergeState.UNKNOWN:
            return False

    evidence = check_issue_merged(repo, issue.number, branch=issue.branch, base=base_branch)
    if evidence == MergeEvidence.UNAVAILABLE:
        logger.debug(f"[CLEANUP] #{issue.number}: no merge evidence available")
    return evidence == MergeEvidence.MERGED


def reconcile_state_at_startup(
    store: StateStore,
    repo: Path | None = None,
    base_branch: str = "main",
) -> ReconcileResult:
    """Promote ready_for_merge issues whose PR or branch has been merged."""
    try:
        pending = store.get_issues_by_status(constants.ISSUE_READY_FOR_MERGE)
    except StateFileError as e:
        return ReconcileResult(success=False, error=str(e))

    result = ReconcileResult(success=True)
    if not pending:
        return result

    state = store.get_state()
    for issue in pending:
        if is_issue_merged(issue, repo, base_branch):
            issue.status = constants.ISSUE_MERGED
            issue.last_activity = now_iso()
            result.advanced.append(issue.number)
            logger.info(f"[CLEANUP] #{issue.number}: ready_for_merge -> merged")
        else:
            result.still_pending.append(issue.number)

    if result.advanced:
        store.save_state(state)
    return result


def _is_older_than(timestamp: str, max_age_days: float) -> bool:
    try:
        moment = parse_iso(timestamp)
    except ValueError:
        return False
    return datetime.now(timezone.utc) - moment > timedelta(days=max_age_days)


def cleanup_stale_entries(
    store: StateStore,
    repo: Path | None = None,
    dry_run: bool = False,
    max_age_days: float | None = None,
    remove_all: bool = False,
    base_branch: str = "main",
) -> CleanupResult:
    """
    Remove or flag entries whose worktree is gone, then evict old ones.

    Orphans (worktree recorded but no longer active):
    - merged PR or merged status: removed, listed in merged
    - already abandoned, or remove_all: removed
    - otherwise: marked abandoned and kept, listed in orphaned

    Independently, merged/abandoned entries whose last_activity is older
    than max_age_days are removed. Nothing is written in dry-run mode.
    """
    if max_age_days is None:
        max_age_days = DEFAULT_MAX_AGE_DAYS

    try:
        state = store.get_state()
    except StateFileError as e:
        return CleanupResult(success=False, error=str(e))

    result = CleanupResult(success=True)
    to_remove: set[int] = set()
    to_abandon: set[int] = set()

    listing = list_worktrees(repo)
    if not listing.available:
        logger.warning("[CLEANUP] Could not list worktrees; skipping orphan detection")
    else:
        active = listing.paths()
        for number, issue in sorted(state.issues.items()):
            if not issue.worktree:
                continue
            if normalize_path(issue.worktree) in active and Path(issue.worktree).is_dir():
                continue

            merged = issue.status == constants.ISSUE_MERGED
            if not merged and issue.pr is not None:
                merged = get_pr_merge_state(issue.pr.number, repo) == PRMergeState.MERGED

            if merged:
                to_remove.add(number)
                result.merged.append(number)
            elif issue.status == constants.ISSUE_ABANDONED or remove_all:
                to_remove.add(number)
            else:
                to_abandon.add(number)
                result.orphaned.append(number)

    for number, issue in sorted(state.issues.items()):
        if number in to_remove:
            continue
        if issue.status in (constants.ISSUE_MERGED, constants.ISSUE_ABANDONED) \
                and _is_older_than(issue.last_activity, max_age_days):
            to_remove.add(number)

    result.removed = sorted(to_remove)

    if dry_run:
        logger.info(f"[CLEANUP] dry run: would remove {result.removed}, abandon {sorted(to_abandon)}")
        return result

    if not to_remove and not to_abandon:
        return result

    now = now_iso()
    for number in to_abandon:
        state.issues[number].status = constants.ISSUE_ABANDONED
        state.issues[number].last_activity = now
    for number in to_remove:
        del state.issues[number]
    store.save_state(state)
    return result
