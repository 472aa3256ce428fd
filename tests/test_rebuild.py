"""Tests for issueflow.workflow.rebuild and issueflow.workflow.discovery modules."""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from issueflow.git.worktree import WorktreeInfo, WorktreeListing
from issueflow.lib import constants
from issueflow.lib.github import IssueInfo
from issueflow.runner.run_log import (
    LOG_FAILURE,
    LOG_SUCCESS,
    PhaseLog,
    RunLogWriter,
)
from issueflow.workflow.discovery import (
    discover_untracked_worktrees,
    infer_last_phase,
    track_discovered,
)
from issueflow.workflow.rebuild import rebuild_state_from_logs
from issueflow.workflow.state_store import StateStore


CONFIG = {"phases": ["spec", "exec"], "mode": "sequential", "dry_run": False}


def phase_log(issue: int, phase: str, status: str = LOG_SUCCESS, error: str | None = None) -> PhaseLog:
    return PhaseLog(
        phase=phase,
        issue_number=issue,
        start_time="2024-05-01T10:00:00.000Z",
        end_time="2024-05-01T10:01:00.000Z",
        duration_seconds=60.0,
        status=status,
        error=error,
    )


def write_log(logs_dir, started: datetime, issues: dict[int, list[PhaseLog]]):
    writer = RunLogWriter(logs_dir, CONFIG)
    writer.start = started
    for number, phases in issues.items():
        writer.start_issue(number, f"Issue {number}")
        for entry in phases:
            writer.log_phase(entry)
        writer.complete_issue()
    return writer.finalize()


@pytest.fixture
def logs_dir(tmp_path):
    return tmp_path / ".issueflow" / "logs"


@pytest.fixture
def store(tmp_path):
    return StateStore.for_project(tmp_path)


class TestRebuildStateFromLogs:
    """Test rebuild_state_from_logs function."""

    def test_missing_log_dir(self, store, logs_dir):
        result = rebuild_state_from_logs(store, logs_dir)
        assert result.success is False
        assert "Log directory not found" in result.error
        assert not store.state_exists()

    def test_newest_log_wins(self, store, logs_dir):
        write_log(logs_dir, datetime(2024, 5, 1, tzinfo=timezone.utc), {
            7: [phase_log(7, "spec"), phase_log(7, "exec", LOG_FAILURE, "Exit code 1")],
        })
        write_log(logs_dir, datetime(2024, 5, 2, tzinfo=timezone.utc), {
            7: [phase_log(7, "spec"), phase_log(7, "exec")],
            8: [phase_log(8, "spec", LOG_FAILURE, "Timeout after 30s")],
        })

        result = rebuild_state_from_logs(store, logs_dir)
        assert result.success
        assert result.logs_processed == 2
        assert result.issues_found == 2

        seven = store.get_issue_state(7)
        assert seven.status == constants.ISSUE_READY_FOR_MERGE
        assert seven.phases["exec"].status == constants.PHASE_COMPLETED
        assert seven.current_phase == "exec"

        eight = store.get_issue_state(8)
        assert eight.status == constants.ISSUE_IN_PROGRESS
        assert eight.phases["spec"].status == constants.PHASE_FAILED
        assert eight.phases["spec"].error == "Timeout after 30s"

    def test_invalid_logs_skipped(self, store, logs_dir):
        write_log(logs_dir, datetime(2024, 5, 1, tzinfo=timezone.utc), {3: [phase_log(3, "spec")]})
        (logs_dir / "run-20991231T000000000000-deadbeef.json").write_text("{broken")

        result = rebuild_state_from_logs(store, logs_dir)
        assert result.logs_processed == 1
        assert store.get_issue_state(3) is not None


class TestDiscovery:
    """Test discover_untracked_worktrees function."""

    WORKTREES = WorktreeListing(available=True, worktrees=[
        WorktreeInfo(path="/repo", branch="main"),
        WorktreeInfo(path="/wt/detached", branch=None),
        WorktreeInfo(path="/wt/misc", branch="experiment"),
        WorktreeInfo(path="/wt/5", branch="feature/5-tracked"),
        WorktreeInfo(path="/wt/9", branch="feature/9-new-thing"),
    ])

    @patch("issueflow.workflow.discovery.get_issue_info")
    @patch("issueflow.workflow.discovery.list_worktrees")
    def test_finds_untracked_issue_worktrees(self, mock_list, mock_info, store, logs_dir):
        store.initialize_issue(5, "Tracked")
        mock_list.return_value = self.WORKTREES
        mock_info.return_value = IssueInfo(9, "New thing", [])
        write_log(logs_dir, datetime(2024, 5, 1, tzinfo=timezone.utc), {
            9: [phase_log(9, "spec"), phase_log(9, "exec", LOG_FAILURE)],
        })

        result = discover_untracked_worktrees(store, logs_dir=logs_dir)
        assert result.success
        assert result.worktrees_scanned == 5
        assert result.already_tracked == 1
        assert [d.issue_number for d in result.discovered] == [9]
        assert result.discovered[0].title == "New thing"
        assert result.discovered[0].inferred_phase == "exec"
        assert sorted(s.path for s in result.skipped) == ["/repo", "/wt/detached", "/wt/misc"]

    @patch("issueflow.workflow.discovery.get_issue_info")
    @patch("issueflow.workflow.discovery.list_worktrees")
    def test_title_placeholder_when_tracker_unavailable(self, mock_list, mock_info, store):
        mock_list.return_value = WorktreeListing(available=True, worktrees=[
            WorktreeInfo(path="/wt/9", branch="issue-9"),
        ])
        mock_info.return_value = IssueInfo(9, "Issue #9", [], available=False)

        result = discover_untracked_worktrees(store)
        assert result.discovered[0].title == "(title unavailable for #9)"

    @patch("issueflow.workflow.discovery.list_worktrees")
    def test_fails_without_listing(self, mock_list, store):
        mock_list.return_value = WorktreeListing(available=False)
        assert discover_untracked_worktrees(store).success is False

    @patch("issueflow.workflow.discovery.get_issue_info")
    @patch("issueflow.workflow.discovery.list_worktrees")
    def test_track_discovered(self, mock_list, mock_info, store, logs_dir):
        mock_list.return_value = self.WORKTREES
        mock_info.return_value = IssueInfo(9, "New thing", [])
        write_log(logs_dir, datetime(2024, 5, 1, tzinfo=timezone.utc), {9: [phase_log(9, "spec")]})

        result = discover_untracked_worktrees(store, logs_dir=logs_dir)
        added = track_discovered(store, result.discovered)

        assert 9 in added
        issue = store.get_issue_state(9)
        assert issue.worktree == "/wt/9"
        assert issue.branch == "feature/9-new-thing"
        assert issue.current_phase == "spec"

    def test_infer_last_phase_without_logs(self, logs_dir):
        assert infer_last_phase(logs_dir, 1) is None
        assert infer_last_phase(None, 1) is None
