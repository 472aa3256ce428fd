"""Tests for issueflow.runner.run_log and issueflow.runner.metrics modules."""

import json

import pytest

from issueflow.runner.metrics import MetricsWriter, RunMetrics, determine_outcome
from issueflow.runner.run_log import (
    ISSUE_FAILURE,
    ISSUE_PARTIAL,
    ISSUE_SUCCESS,
    LOG_FAILURE,
    LOG_SKIPPED,
    LOG_SUCCESS,
    PhaseLog,
    RunLogWriter,
    list_run_logs,
    load_run_log,
)


CONFIG = {"phases": ["spec", "exec"], "mode": "sequential", "dry_run": False, "phase_timeout": 1800}


def entry(issue: int, phase: str, status: str = LOG_SUCCESS, duration: float = 1.5) -> PhaseLog:
    return PhaseLog(
        phase=phase,
        issue_number=issue,
        start_time="2024-05-01T10:00:00.000Z",
        end_time="2024-05-01T10:00:01.500Z",
        duration_seconds=duration,
        status=status,
        error="Exit code 1" if status == LOG_FAILURE else None,
        exit_code=1 if status == LOG_FAILURE else 0,
    )


@pytest.fixture
def writer(tmp_path):
    return RunLogWriter(tmp_path / "logs", CONFIG)


class TestRunLogWriter:
    """Test RunLogWriter."""

    def test_finalize_writes_valid_document(self, writer):
        writer.start_issue(1, "First", ["bug"])
        writer.log_phase(entry(1, "spec"))
        writer.log_phase(entry(1, "exec", duration=2.5))
        writer.complete_issue()

        path = writer.finalize()
        assert path.name.startswith("run-")
        data = load_run_log(path)
        assert data["run_id"] == writer.run_id
        assert data["config"]["phases"] == ["spec", "exec"]
        issue = data["issues"][0]
        assert issue["status"] == ISSUE_SUCCESS
        assert issue["labels"] == ["bug"]
        assert issue["total_duration_seconds"] == 4.0
        assert data["summary"]["total_issues"] == 1
        assert data["summary"]["passed"] == 1

    def test_derived_issue_status(self, writer):
        writer.start_issue(1, "Partial")
        writer.log_phase(entry(1, "spec"))
        writer.log_phase(entry(1, "exec", LOG_FAILURE))
        assert writer.complete_issue().status == ISSUE_PARTIAL

        writer.start_issue(2, "Failed")
        writer.log_phase(entry(2, "spec", LOG_FAILURE))
        assert writer.complete_issue().status == ISSUE_FAILURE

        writer.start_issue(3, "Skipped counts as passed")
        writer.log_phase(entry(3, "spec", LOG_SKIPPED))
        assert writer.complete_issue().status == ISSUE_SUCCESS

    def test_explicit_success_flag(self, writer):
        writer.start_issue(1, "Cancelled after spec")
        writer.log_phase(entry(1, "spec"))
        assert writer.complete_issue(success=False).status == ISSUE_PARTIAL

    def test_phase_for_wrong_issue_rejected(self, writer):
        writer.start_issue(1, "One")
        with pytest.raises(ValueError):
            writer.log_phase(entry(2, "spec"))

    def test_finalize_is_idempotent(self, writer):
        writer.start_issue(1, "Open issue")
        writer.log_phase(entry(1, "spec"))
        first = writer.finalize()
        assert writer.finalized
        assert writer.finalize() == first
        assert len(list_run_logs(first.parent)) == 1
        # The open issue was closed by finalize()
        assert json.loads(first.read_text())["issues"][0]["issue_number"] == 1

    def test_failed_count_in_summary(self, writer):
        writer.start_issue(1, "One")
        writer.log_phase(entry(1, "spec", LOG_FAILURE))
        writer.complete_issue()
        summary = load_run_log(writer.finalize())["summary"]
        assert summary["passed"] == 0
        assert summary["failed"] == 1


class TestRunLogFiles:
    """Test listing and loading run logs."""

    def test_list_missing_dir(self, tmp_path):
        assert list_run_logs(tmp_path / "nope") == []

    def test_newest_first(self, tmp_path):
        logs = tmp_path / "logs"
        logs.mkdir()
        for name in ("run-20240101T000000000000-aaaa.json", "run-20240301T000000000000-bbbb.json"):
            (logs / name).write_text("{}")
        assert [p.name for p in list_run_logs(logs)][0].startswith("run-20240301")

    def test_invalid_log_returns_none(self, tmp_path):
        path = tmp_path / "run-1.json"
        path.write_text('{"version": 1}')
        assert load_run_log(path) is None


class TestMetrics:
    """Test run metrics."""

    def test_determine_outcome(self):
        assert determine_outcome(3, 3) == "success"
        assert determine_outcome(0, 3) == "failed"
        assert determine_outcome(1, 3) == "partial"
        assert determine_outcome(0, 0) == "failed"

    def test_record_appends(self, tmp_path):
        metrics = MetricsWriter(tmp_path / "metrics.json")
        metrics.record_run(RunMetrics(issues=[1], phases=["spec"], outcome="success", duration_seconds=3.2))
        metrics.record_run(RunMetrics(issues=[2, 3], phases=["exec"], outcome="partial", duration_seconds=9,
                                      flags=["fan-out"], lines_added=10))
        runs = metrics.read_runs()
        assert [r["issues"] for r in runs] == [[1], [2, 3]]
        assert runs[1]["metrics"]["lines_added"] == 10
        assert runs[1]["flags"] == ["fan-out"]

    def test_unreadable_file_started_over(self, tmp_path):
        path = tmp_path / "metrics.json"
        path.write_text("garbage")
        metrics = MetricsWriter(path)
        metrics.record_run(RunMetrics(issues=[1], phases=["qa"], outcome="failed", duration_seconds=1))
        assert len(json.loads(path.read_text())["runs"]) == 1
