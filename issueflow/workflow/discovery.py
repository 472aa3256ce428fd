"""Find worktrees for issues the state document does not know about yet."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from issueflow.git.worktree import list_worktrees, parse_issue_number_from_branch
from issueflow.lib.github import get_issue_info
from issueflow.runner import run_log
from issueflow.workflow.state_store import StateStore

logger = logging.getLogger(__name__)

PROTECTED_BRANCHES = {"main", "master"}


@dataclass
class DiscoveredWorktree:
    issue_number: int
    title: str
    worktree: str
    branch: str
    inferred_phase: str | None = None


@dataclass
class SkippedWorktree:
    path: str
    reason: str


@dataclass
class DiscoveryResult:
    success: bool
    worktrees_scanned: int = 0
    already_tracked: int = 0
    discovered: list[DiscoveredWorktree] = field(default_factory=list)
    skipped: list[SkippedWorktree] = field(default_factory=list)
    error: str | None = None


def infer_last_phase(logs_dir: Path | None, issue_number: int) -> str | None:
    """Last phase recorded for an issue in the newest run log that mentions it."""
    if logs_dir is None:
        return None
    for path in run_log.list_run_logs(logs_dir):
        data = run_log.load_run_log(path)
        if data is None:
            continue
        for entry in data["issues"]:
            if entry["issue_number"] == issue_number and entry["phases"]:
                return entry["phases"][-1]["phase"]
    return None


def discover_untracked_worktrees(
    store: StateStore,
    repo: Path | None = None,
    logs_dir: Path | None = None,
) -> DiscoveryResult:
    listing = list_worktrees(repo)
    if not listing.available:
        return DiscoveryResult(success=False, error="Could not list git worktrees")

    tracked = store.get_all_issue_states()
    result = DiscoveryResult(success=True, worktrees_scanned=len(listing.worktrees))

    for wt in listing.worktrees:
        if wt.prunable:
            result.skipped.append(SkippedWorktree(wt.path, "directory missing"))
            continue
        if wt.branch is None:
            result.skipped.append(SkippedWorktree(wt.path, "detached HEAD"))
            continue
        if wt.branch in PROTECTED_BRANCHES:
            result.skipped.append(SkippedWorktree(wt.path, f"{wt.branch} branch"))
            continue

        number = parse_issue_number_from_branch(wt.branch)
        if number is None:
            result.skipped.append(SkippedWorktree(wt.path, f"no issue number in branch '{wt.branch}'"))
            continue
        if number in tracked:
            result.already_tracked += 1
            continue

        info = get_issue_info(number, repo)
        title = info.title if info.available else f"(title unavailable for #{number})"
        result.discovered.append(DiscoveredWorktree(
            issue_number=number,
            title=title,
            worktree=wt.path,
            branch=wt.branch,
            inferred_phase=infer_last_phase(logs_dir, number),
        ))

    logger.info(
        f"[STATE] Scanned {result.worktrees_scanned} worktree(s): "
        f"{len(result.discovered)} new, {result.already_tracked} tracked"
    )
    return result


def track_discovered(store: StateStore, discovered: list[DiscoveredWorktree]) -> list[int]:
    """Add discovered worktrees to the state document. Returns the new issue numbers."""
    added = []
    for item in discovered:
        store.initialize_issue(item.issue_number, item.title, worktree=item.worktree, branch=item.branch)
        if item.inferred_phase:
            state = store.get_state()
            state.issues[item.issue_number].current_phase = item.inferred_phase
            store.save_state(state)
        added.append(item.issue_number)
    return added
