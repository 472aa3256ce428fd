"""
Issue tracker queries through the gh CLI.

Every query degrades to a documented placeholder instead of raising, so a
missing or unauthenticated gh never aborts a run.
"""

import json
import logging
import subprocess
from enum import Enum
from pathlib import Path
from typing import NamedTuple

logger = logging.getLogger(__name__)


# Timeout for GitHub CLI operations (seconds)
GH_TIMEOUT_SECONDS = 30


class PRMergeState(Enum):
    MERGED = "merged"
    CLOSED = "closed"
    OPEN = "open"
    UNKNOWN = "unknown"  # gh missing, failed, or returned something unexpected


class IssueInfo(NamedTuple):
    """Issue title and labels; available=False means placeholders were used."""
    number: int
    title: str
    labels: list[str]
    available: bool = True


def _run_gh(args: list[str], cwd: Path | None) -> subprocess.CompletedProcess | None:
    try:
        return subprocess.run(
            ["gh"] + args,
            capture_output=True,
            text=True,
            cwd=str(cwd) if cwd else None,
            timeout=GH_TIMEOUT_SECONDS,
        )
    except subprocess.TimeoutExpired:
        logger.warning(f"gh {' '.join(args[:2])} timed out after {GH_TIMEOUT_SECONDS}s")
    except (subprocess.SubprocessError, OSError) as e:
        logger.debug(f"gh {' '.join(args[:2])} failed: {e}")
    return None


def check_gh_cli() -> bool:
    """Check if gh CLI is available and authenticated."""
    result = _run_gh(["auth", "status"], None)
    return result is not None and result.returncode == 0


def placeholder_title(issue_number: int) -> str:
    return f"Issue #{issue_number}"


def get_issue_info(issue_number: int, repo_path: Path | None = None) -> IssueInfo:
    """Fetch title and label names for an issue."""
    fallback = IssueInfo(issue_number, placeholder_title(issue_number), [], available=False)

    result = _run_gh(["issue", "view", str(issue_number), "--json", "title,labels"], repo_path)
    if result is None or result.returncode != 0:
        return fallback

    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        logger.warning(f"Unparseable gh output for issue #{issue_number}: {e}")
        return fallback

    labels = [label.get("name", "") for label in data.get("labels") or [] if label.get("name")]
    return IssueInfo(
        number=issue_number,
        title=data.get("title") or placeholder_title(issue_number),
        labels=labels,
    )


def get_pr_merge_state(pr_number: int, repo_path: Path | None = None) -> PRMergeState:
    """Merge state of a PR, UNKNOWN when gh cannot tell us."""
    result = _run_gh(["pr", "view", str(pr_number), "--json", "state", "-q", ".state"], repo_path)
    if result is None or result.returncode != 0:
        return PRMergeState.UNKNOWN

    state = result.stdout.strip().upper()
    if state == "MERGED":
        return PRMergeState.MERGED
    if state == "CLOSED":
        return PRMergeState.CLOSED
    if state == "OPEN":
        return PRMergeState.OPEN
    return PRMergeState.UNKNOWN
