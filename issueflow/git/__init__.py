"""Read-only git queries used by the cache, cleanup and discovery.

Return type conventions:
- Functions returning GitResult: Caller must check .success before using output.
  Example: run_git()
- Functions returning MergeEvidence: UNAVAILABLE means git could not answer,
  which callers treat as "not merged" rather than an error.
  Examples: is_ancestor(), check_issue_merged()
- Functions returning parsed values: None when git failed (so "no changes"
  and "could not check" stay distinct), or empty values where the caller
  only reports statistics.
  Examples: get_changed_file_names() -> None, get_diff_stats() -> DiffStats()
"""

from issueflow.git.runner import GitResult, run_git
from issueflow.git.diff import (
    DiffStats,
    FileDiffStat,
    get_merge_base,
    get_diff_text,
    get_changed_file_names,
    get_numstat,
    get_name_status,
    get_diff_stats,
)
from issueflow.git.branch import (
    MergeEvidence,
    get_current_branch,
    get_commit_sha,
    is_ancestor,
    get_merged_branches,
    check_issue_merged,
)
from issueflow.git.worktree import (
    WorktreeInfo,
    WorktreeListing,
    list_worktrees,
    parse_issue_number_from_branch,
)

__all__ = [
    # runner
    "GitResult",
    "run_git",
    # diff
    "DiffStats",
    "FileDiffStat",
    "get_merge_base",
    "get_diff_text",
    "get_changed_file_names",
    "get_numstat",
    "get_name_status",
    "get_diff_stats",
    # branch
    "MergeEvidence",
    "get_current_branch",
    "get_commit_sha",
    "is_ancestor",
    "get_merged_branches",
    "check_issue_merged",
    # worktree
    "WorktreeInfo",
    "WorktreeListing",
    "list_worktrees",
    "parse_issue_number_from_branch",
]
