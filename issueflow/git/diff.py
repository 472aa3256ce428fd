"""Diff queries against a merge-base reference."""

from dataclasses import dataclass, field
from pathlib import Path

from issueflow.git.runner import run_git

STATUS_ADDED = "added"
STATUS_MODIFIED = "modified"
STATUS_DELETED = "deleted"
STATUS_RENAMED = "renamed"


@dataclass
class FileDiffStat:
    """Per-file change counts."""
    path: str
    additions: int
    deletions: int
    status: str = STATUS_MODIFIED


@dataclass
class DiffStats:
    """Aggregate diff statistics for a worktree against its base."""
    files_modified: list[str] = field(default_factory=list)
    file_diff_stats: list[FileDiffStat] = field(default_factory=list)
    total_additions: int = 0
    total_deletions: int = 0

    def to_dict(self) -> dict:
        return {
            "files_modified": list(self.files_modified),
            "file_diff_stats": [
                {"path": s.path, "additions": s.additions, "deletions": s.deletions, "status": s.status}
                for s in self.file_diff_stats
            ],
            "total_additions": self.total_additions,
            "total_deletions": self.total_deletions,
        }


def get_merge_base(repo: Path | None, base: str, ref: str = "HEAD") -> str | None:
    """SHA of the merge base between base and ref, or None."""
    result = run_git(["merge-base", base, ref], repo)
    if result.success and result.stdout.strip():
        return result.stdout.strip()
    return None


def get_diff_text(repo: Path | None, ref: str) -> str | None:
    """
    Full diff of the working tree against ref.

    Returns None when git fails, "" when there are no changes.
    """
    result = run_git(["diff", ref], repo, timeout=60)
    if not result.success:
        return None
    return result.stdout


def get_changed_file_names(repo: Path | None, ref: str) -> list[str] | None:
    """Paths changed in the working tree since ref, or None if git failed."""
    result = run_git(["diff", "--name-only", ref], repo)
    if not result.success:
        return None
    return result.lines()


def parse_numstat(output: str) -> list[FileDiffStat]:
    """Parse `git diff --numstat`. Binary files ("-") count as zero."""
    stats = []
    for line in output.splitlines():
        parts = line.split("\t")
        if len(parts) < 3:
            continue
        added, deleted, path = parts[0], parts[1], parts[-1]
        stats.append(FileDiffStat(
            path=path,
            additions=0 if added == "-" else int(added),
            deletions=0 if deleted == "-" else int(deleted),
        ))
    return stats


def parse_name_status(output: str) -> dict[str, str]:
    """Parse `git diff --name-status` into path -> added/modified/deleted/renamed."""
    statuses = {}
    for line in output.splitlines():
        parts = line.split("\t")
        if len(parts) < 2 or not parts[0]:
            continue
        code = parts[0][0]
        path = parts[-1]
        if code == "A":
            statuses[path] = STATUS_ADDED
        elif code == "D":
            statuses[path] = STATUS_DELETED
        elif code == "R":
            statuses[path] = STATUS_RENAMED
        else:
            statuses[path] = STATUS_MODIFIED
    return statuses


def get_numstat(repo: Path | None, ref_range: str) -> list[FileDiffStat]:
    result = run_git(["diff", "--numstat", ref_range], repo)
    if not result.success:
        return []
    return parse_numstat(result.stdout)


def get_name_status(repo: Path | None, ref_range: str) -> dict[str, str]:
    result = run_git(["diff", "--name-status", ref_range], repo)
    if not result.success:
        return {}
    return parse_name_status(result.stdout)


def get_diff_stats(worktree: Path | None, base: str = "main") -> DiffStats:
    """
    Change statistics for a worktree branch against base.

    Failures yield empty statistics.
    """
    ref_range = f"{base}...HEAD"
    numstat = get_numstat(worktree, ref_range)
    statuses = get_name_status(worktree, ref_range)

    for stat in numstat:
        stat.status = statuses.get(stat.path, STATUS_MODIFIED)

    return DiffStats(
        files_modified=[s.path for s in numstat],
        file_diff_stats=numstat,
        total_additions=sum(s.additions for s in numstat),
        total_deletions=sum(s.deletions for s in numstat),
    )
