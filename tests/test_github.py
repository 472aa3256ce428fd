"""Tests for issueflow.lib.github module."""

import json
import subprocess
from unittest.mock import patch, MagicMock

from issueflow.lib.github import (
    PRMergeState,
    check_gh_cli,
    get_issue_info,
    get_pr_merge_state,
)


def completed(stdout: str = "", returncode: int = 0) -> MagicMock:
    return MagicMock(returncode=returncode, stdout=stdout, stderr="")


class TestGetIssueInfo:
    """Test get_issue_info function."""

    @patch("issueflow.lib.github.subprocess.run")
    def test_returns_title_and_labels(self, mock_run):
        mock_run.return_value = completed(json.dumps({
            "title": "Add login page",
            "labels": [{"name": "enhancement"}, {"name": "ui"}],
        }))

        info = get_issue_info(42)
        assert info.available is True
        assert info.title == "Add login page"
        assert info.labels == ["enhancement", "ui"]
        assert mock_run.call_args[0][0][:4] == ["gh", "issue", "view", "42"]

    @patch("issueflow.lib.github.subprocess.run")
    def test_placeholder_when_gh_fails(self, mock_run):
        mock_run.return_value = completed(returncode=1)

        info = get_issue_info(42)
        assert info.available is False
        assert info.title == "Issue #42"
        assert info.labels == []

    @patch("issueflow.lib.github.subprocess.run")
    def test_placeholder_on_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="gh", timeout=30)
        assert get_issue_info(7).title == "Issue #7"

    @patch("issueflow.lib.github.subprocess.run")
    def test_placeholder_when_gh_missing(self, mock_run):
        mock_run.side_effect = FileNotFoundError(2, "No such file or directory", "gh")
        assert get_issue_info(7).available is False

    @patch("issueflow.lib.github.subprocess.run")
    def test_placeholder_on_bad_json(self, mock_run):
        mock_run.return_value = completed("not json")
        assert get_issue_info(7).available is False


class TestGetPrMergeState:
    """Test get_pr_merge_state function."""

    @patch("issueflow.lib.github.subprocess.run")
    def test_maps_states(self, mock_run):
        for raw, expected in (
            ("MERGED\n", PRMergeState.MERGED),
            ("CLOSED\n", PRMergeState.CLOSED),
            ("OPEN\n", PRMergeState.OPEN),
            ("DRAFT\n", PRMergeState.UNKNOWN),
        ):
            mock_run.return_value = completed(raw)
            assert get_pr_merge_state(10) == expected

    @patch("issueflow.lib.github.subprocess.run")
    def test_unknown_on_failure(self, mock_run):
        mock_run.return_value = completed(returncode=1)
        assert get_pr_merge_state(10) == PRMergeState.UNKNOWN

    @patch("issueflow.lib.github.subprocess.run")
    def test_unknown_on_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="gh", timeout=30)
        assert get_pr_merge_state(10) == PRMergeState.UNKNOWN


class TestCheckGhCli:
    """Test check_gh_cli function."""

    @patch("issueflow.lib.github.subprocess.run")
    def test_authenticated(self, mock_run):
        mock_run.return_value = completed()
        assert check_gh_cli() is True

    @patch("issueflow.lib.github.subprocess.run")
    def test_not_installed(self, mock_run):
        mock_run.side_effect = FileNotFoundError(2, "No such file or directory", "gh")
        assert check_gh_cli() is False
