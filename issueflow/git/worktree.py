"""Worktree enumeration via `git worktree list --porcelain`."""

import re
from dataclasses import dataclass, field
from pathlib import Path

from issueflow.git.runner import run_git

# Branch naming conventions that carry an issue number, tried in order
ISSUE_BRANCH_PATTERNS = [
    re.compile(r"^feature/(\d+)(?:-|$)"),
    re.compile(r"^issue-(\d+)$"),
    re.compile(r"^(\d+)-"),
]


@dataclass
class WorktreeInfo:
    path: str
    head: str | None = None
    branch: str | None = None  # None for detached HEAD
    prunable: bool = False  # directory gone, not yet pruned


@dataclass
class WorktreeListing:
    """Active worktrees; available=False when git could not be asked."""
    available: bool
    worktrees: list[WorktreeInfo] = field(default_factory=list)

    def paths(self) -> set[str]:
        return {normalize_path(w.path) for w in self.worktrees if not w.prunable}


def normalize_path(path: str | Path) -> str:
    return str(Path(path).expanduser().resolve())


def parse_worktree_porcelain(output: str) -> list[WorktreeInfo]:
    """Parse porcelain output into one WorktreeInfo per blank-line separated block."""
    worktrees: list[WorktreeInfo] = []
    current: WorktreeInfo | None = None

    for line in output.splitlines():
        if line.startswith("worktree "):
            current = WorktreeInfo(path=line[len("worktree "):])
            worktrees.append(current)
        elif current is None:
            continue
        elif line.startswith("HEAD "):
            current.head = line[len("HEAD "):]
        elif line.startswith("branch "):
            current.branch = line[len("branch "):].removeprefix("refs/heads/")
        elif line == "detached":
            current.branch = None
        elif line == "prunable" or line.startswith("prunable "):
            current.prunable = True

    return worktrees


def list_worktrees(repo: Path | None) -> WorktreeListing:
    result = run_git(["worktree", "list", "--porcelain"], repo)
    if not result.success:
        return WorktreeListing(available=False)
    return WorktreeListing(available=True, worktrees=parse_worktree_porcelain(result.stdout))


def parse_issue_number_from_branch(branch: str) -> int | None:
    """Extract an issue number from feature/N-slug, issue-N or N-slug."""
    for pattern in ISSUE_BRANCH_PATTERNS:
        match = pattern.match(branch)
        if match:
            number = int(match.group(1))
            return number if number > 0 else None
    return None
