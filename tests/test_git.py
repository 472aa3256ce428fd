"""Tests for issueflow.git module."""

import subprocess
from pathlib import Path
from unittest.mock import patch, MagicMock

from issueflow.git.runner import run_git, GitResult
from issueflow.git.diff import (
    parse_numstat,
    parse_name_status,
    get_changed_file_names,
    get_diff_stats,
    get_merge_base,
)
from issueflow.git.branch import (
    MergeEvidence,
    check_issue_merged,
    get_commit_sha,
    get_current_branch,
    is_ancestor,
)
from issueflow.git.worktree import (
    WorktreeListing,
    list_worktrees,
    parse_worktree_porcelain,
    parse_issue_number_from_branch,
)


def ok(stdout: str = "") -> GitResult:
    return GitResult(returncode=0, stdout=stdout, stderr="")


def fail(returncode: int = 128) -> GitResult:
    return GitResult(returncode=returncode, stdout="", stderr="fatal: error")


class TestGitResult:
    """Test GitResult dataclass."""

    def test_success_when_returncode_zero(self):
        assert GitResult(returncode=0, stdout="ok", stderr="").success is True

    def test_failure_when_timed_out(self):
        result = GitResult(returncode=0, stdout="ok", stderr="", timed_out=True)
        assert result.success is False

    def test_lines_strips_blank_lines(self):
        result = GitResult(returncode=0, stdout="a.py\n\n  b.py  \n", stderr="")
        assert result.lines() == ["a.py", "b.py"]


class TestRunGit:
    """Test run_git function."""

    @patch("issueflow.git.runner.subprocess.run")
    def test_passes_cwd_with_C_flag(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        run_git(["diff", "--name-only"], Path("/my/repo"))
        assert mock_run.call_args[0][0] == ["git", "-C", "/my/repo", "diff", "--name-only"]

    @patch("issueflow.git.runner.subprocess.run")
    def test_omits_C_flag_without_cwd(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        run_git(["status"])
        assert mock_run.call_args[0][0] == ["git", "status"]

    @patch("issueflow.git.runner.subprocess.run")
    def test_handles_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="git", timeout=30)
        result = run_git(["status"], Path("/tmp"))
        assert not result.success
        assert result.timed_out
        assert "timed out" in result.stderr

    @patch("issueflow.git.runner.subprocess.run")
    def test_missing_git_binary_is_not_raised(self, mock_run):
        mock_run.side_effect = FileNotFoundError(2, "No such file or directory", "git")
        result = run_git(["status"], Path("/tmp"))
        assert not result.success
        assert result.returncode == 127


class TestParseNumstat:
    """Test numstat parsing."""

    def test_parses_counts(self):
        stats = parse_numstat("10\t2\tsrc/app.py\n0\t5\tREADME.md\n")
        assert [(s.path, s.additions, s.deletions) for s in stats] == [
            ("src/app.py", 10, 2),
            ("README.md", 0, 5),
        ]

    def test_binary_files_count_as_zero(self):
        stats = parse_numstat("-\t-\tassets/logo.png\n")
        assert stats[0].additions == 0
        assert stats[0].deletions == 0

    def test_ignores_malformed_lines(self):
        assert parse_numstat("garbage\n\n") == []


class TestParseNameStatus:
    """Test name-status parsing."""

    def test_maps_status_codes(self):
        output = "A\tnew.py\nD\told.py\nR100\tbefore.py\tafter.py\nM\tchanged.py\nT\ttype.py\n"
        assert parse_name_status(output) == {
            "new.py": "added",
            "old.py": "deleted",
            "after.py": "renamed",
            "changed.py": "modified",
            "type.py": "modified",
        }


class TestDiffQueries:
    """Test diff helpers built on run_git."""

    @patch("issueflow.git.diff.run_git")
    def test_changed_file_names_none_on_failure(self, mock_run):
        mock_run.return_value = fail()
        assert get_changed_file_names(Path("/repo"), "abc123") is None

    @patch("issueflow.git.diff.run_git")
    def test_changed_file_names_empty_when_clean(self, mock_run):
        mock_run.return_value = ok("")
        assert get_changed_file_names(Path("/repo"), "abc123") == []

    @patch("issueflow.git.diff.run_git")
    def test_merge_base(self, mock_run):
        mock_run.return_value = ok("abc123\n")
        assert get_merge_base(Path("/repo"), "main") == "abc123"
        assert mock_run.call_args[0][0] == ["merge-base", "main", "HEAD"]

    @patch("issueflow.git.diff.run_git")
    def test_diff_stats_combines_numstat_and_status(self, mock_run):
        def fake(args, cwd, timeout=30):
            if "--numstat" in args:
                return ok("3\t1\tsrc/a.py\n7\t0\tsrc/b.py\n")
            return ok("M\tsrc/a.py\nA\tsrc/b.py\n")
        mock_run.side_effect = fake

        stats = get_diff_stats(Path("/repo"), base="main")
        assert stats.files_modified == ["src/a.py", "src/b.py"]
        assert stats.total_additions == 10
        assert stats.total_deletions == 1
        assert [s.status for s in stats.file_diff_stats] == ["modified", "added"]

    @patch("issueflow.git.diff.run_git")
    def test_diff_stats_empty_on_failure(self, mock_run):
        mock_run.return_value = fail()
        stats = get_diff_stats(Path("/repo"))
        assert stats.files_modified == []
        assert stats.total_additions == 0


class TestBranchQueries:
    """Test branch and commit lookups."""

    @patch("issueflow.git.branch.run_git")
    def test_current_branch(self, mock_run):
        mock_run.return_value = ok("feature/42-login\n")
        assert get_current_branch(Path("/wt")) == "feature/42-login"

    @patch("issueflow.git.branch.run_git")
    def test_detached_head(self, mock_run):
        mock_run.return_value = ok("")
        assert get_current_branch(Path("/wt")) is None

    @patch("issueflow.git.branch.run_git")
    def test_commit_sha(self, mock_run):
        mock_run.return_value = ok("deadbeef\n")
        assert get_commit_sha(Path("/wt")) == "deadbeef"
        mock_run.return_value = fail()
        assert get_commit_sha(Path("/wt")) is None


class TestMergeEvidence:
    """Test ancestry and issue merge checks."""

    @patch("issueflow.git.branch.run_git")
    def test_is_ancestor_three_way(self, mock_run):
        mock_run.return_value = ok()
        assert is_ancestor(Path("/repo"), "feature/1-x", "main") == MergeEvidence.MERGED
        mock_run.return_value = fail(returncode=1)
        assert is_ancestor(Path("/repo"), "feature/1-x", "main") == MergeEvidence.NOT_MERGED
        mock_run.return_value = fail(returncode=128)
        assert is_ancestor(Path("/repo"), "feature/1-x", "main") == MergeEvidence.UNAVAILABLE

    @patch("issueflow.git.branch.run_git")
    def test_recorded_branch_uses_ancestry_only(self, mock_run):
        mock_run.return_value = ok()
        evidence = check_issue_merged(Path("/repo"), 42, branch="feature/42-login", base="main")
        assert evidence == MergeEvidence.MERGED
        assert mock_run.call_args[0][0] == ["merge-base", "--is-ancestor", "feature/42-login", "main"]

    @patch("issueflow.git.branch.run_git")
    def test_merged_feature_branch_counts(self, mock_run):
        mock_run.return_value = ok("main\nfeature/42-login\nfeature/420-other\n")
        assert check_issue_merged(Path("/repo"), 42) == MergeEvidence.MERGED

    @patch("issueflow.git.branch.run_git")
    def test_similar_issue_number_does_not_count(self, mock_run):
        def fake(args, cwd, timeout=30):
            if args[0] == "branch":
                return ok("main\nfeature/420-other\n")
            return ok("")
        mock_run.side_effect = fake
        assert check_issue_merged(Path("/repo"), 42) == MergeEvidence.NOT_MERGED

    @patch("issueflow.git.branch.run_git")
    def test_merge_commit_message_counts(self, mock_run):
        def fake(args, cwd, timeout=30):
            if args[0] == "branch":
                return ok("main\n")
            return ok("abc1234 Add login (#42)\n")
        mock_run.side_effect = fake
        assert check_issue_merged(Path("/repo"), 42) == MergeEvidence.MERGED

    @patch("issueflow.git.branch.run_git")
    def test_unavailable_when_git_fails(self, mock_run):
        mock_run.return_value = fail()
        assert check_issue_merged(Path("/repo"), 42) == MergeEvidence.UNAVAILABLE


class TestWorktrees:
    """Test worktree listing and branch parsing."""

    PORCELAIN = (
        "worktree /repo\n"
        "HEAD 1111111\n"
        "branch refs/heads/main\n"
        "\n"
        "worktree /repo/../wt/42\n"
        "HEAD 2222222\n"
        "branch refs/heads/feature/42-login\n"
        "\n"
        "worktree /tmp/detached\n"
        "HEAD 3333333\n"
        "detached\n"
    )

    def test_parse_porcelain(self):
        worktrees = parse_worktree_porcelain(self.PORCELAIN)
        assert [w.branch for w in worktrees] == ["main", "feature/42-login", None]
        assert worktrees[1].head == "2222222"

    def test_prunable_worktree_not_active(self):
        output = self.PORCELAIN + "\nworktree /tmp/gone-7\nHEAD 4444444\nbranch refs/heads/feature/7-x\nprunable gitdir file points to non-existent location\n"
        worktrees = parse_worktree_porcelain(output)
        assert worktrees[-1].prunable is True
        assert worktrees[1].prunable is False
        listing = WorktreeListing(available=True, worktrees=worktrees)
        assert str(Path("/tmp/gone-7").resolve()) not in listing.paths()

    @patch("issueflow.git.worktree.run_git")
    def test_list_unavailable_on_failure(self, mock_run):
        mock_run.return_value = fail()
        listing = list_worktrees(Path("/repo"))
        assert listing.available is False
        assert listing.worktrees == []

    @patch("issueflow.git.worktree.run_git")
    def test_paths_are_normalized(self, mock_run):
        mock_run.return_value = ok(self.PORCELAIN)
        listing = list_worktrees(Path("/repo"))
        assert str(Path("/wt/42").resolve()) in listing.paths()

    def test_branch_patterns(self):
        assert parse_issue_number_from_branch("feature/42-login") == 42
        assert parse_issue_number_from_branch("feature/7") == 7
        assert parse_issue_number_from_branch("issue-13") == 13
        assert parse_issue_number_from_branch("99-hotfix") == 99
        assert parse_issue_number_from_branch("main") is None
        assert parse_issue_number_from_branch("feature/login") is None
