"""Branch and merge-ancestry queries."""

import re
from enum import Enum
from pathlib import Path

from issueflow.git.runner import run_git


class MergeEvidence(Enum):
    """Answer to "has this issue's work landed on the base branch?"."""
    MERGED = "merged"
    NOT_MERGED = "not_merged"
    UNAVAILABLE = "unavailable"


def get_current_branch(worktree: Path | None) -> str | None:
    """Current branch name, or None on detached HEAD or error."""
    result = run_git(["branch", "--show-current"], worktree)
    if result.success:
        return result.stdout.strip() or None
    return None


def get_commit_sha(worktree: Path | None, ref: str = "HEAD") -> str | None:
    result = run_git(["rev-parse", ref], worktree)
    if result.success:
        return result.stdout.strip() or None
    return None


def is_ancestor(repo: Path | None, ancestor: str, descendant: str) -> MergeEvidence:
    """
    Check ancestry with `git merge-base --is-ancestor`.

    Exit 0 means ancestor, exit 1 means not; anything else (unknown ref,
    timeout, no git) is UNAVAILABLE.
    """
    result = run_git(["merge-base", "--is-ancestor", ancestor, descendant], repo)
    if result.success:
        return MergeEvidence.MERGED
    if result.returncode == 1 and not result.timed_out:
        return MergeEvidence.NOT_MERGED
    return MergeEvidence.UNAVAILABLE


def get_merged_branches(repo: Path | None, base: str = "main") -> list[str] | None:
    """Local branches already merged into base, or None if git failed."""
    result = run_git(["branch", "--merged", base, "--format=%(refname:short)"], repo)
    if not result.success:
        return None
    return result.lines()


def _merge_commit_mentions(repo: Path | None, issue_number: int, base: str) -> bool | None:
    result = run_git(
        [
            "log", base, "--oneline", "-20",
            "--grep", f"Merge #{issue_number}",
            "--grep", f"Merge.*#{issue_number}\\b",
            "--grep", f"(#{issue_number})",
        ],
        repo,
    )
    if not result.success:
        return None
    return bool(result.lines())


def check_issue_merged(
    repo: Path | None,
    issue_number: int,
    branch: str | None = None,
    base: str = "main",
) -> MergeEvidence:
    """
    Look for local evidence that an issue's work reached base.

    With a recorded branch, only ancestry of that branch counts. Without
    one, any `feature/<n>-*` branch merged into base counts, then a recent
    merge commit on base mentioning `#<n>`.
    """
    if branch:
        return is_ancestor(repo, branch, base)

    merged = get_merged_branches(repo, base)
    if merged is not None:
        pattern = re.compile(rf"^feature/{issue_number}(-|$)")
        if any(pattern.match(name) for name in merged):
            return MergeEvidence.MERGED

    mentioned = _merge_commit_mentions(repo, issue_number, base)
    if mentioned:
        return MergeEvidence.MERGED
    if merged is None and mentioned is None:
        return MergeEvidence.UNAVAILABLE
    return MergeEvidence.NOT_MERGED
