"""
Run logs: one JSON document per `issueflow run` invocation.

A log is accumulated in memory while the run progresses and written once by
finalize(). Logs are the audit trail and the input for rebuilding a lost
state document.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from issueflow.lib import constants
from issueflow.lib.fileio import write_json_atomic
from issueflow.lib.validate import ValidationError, load_json_document, validate_before_write
from issueflow.workflow.state_schema import now_iso

logger = logging.getLogger(__name__)

# Phase log statuses
LOG_SUCCESS = "success"
LOG_FAILURE = "failure"
LOG_TIMEOUT = "timeout"
LOG_SKIPPED = "skipped"
LOG_CANCELLED = "cancelled"

# Issue log statuses
ISSUE_SUCCESS = "success"
ISSUE_FAILURE = "failure"
ISSUE_PARTIAL = "partial"


@dataclass
class PhaseLog:
    phase: str
    issue_number: int
    start_time: str
    end_time: str
    duration_seconds: float
    status: str
    error: str | None = None
    exit_code: int | None = None

    def to_dict(self) -> dict:
        data = {
            "phase": self.phase,
            "issue_number": self.issue_number,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_seconds": round(self.duration_seconds, 3),
            "status": self.status,
        }
        if self.error is not None:
            data["error"] = self.error
        if self.exit_code is not None:
            data["exit_code"] = self.exit_code
        return data


@dataclass
class IssueLog:
    issue_number: int
    title: str
    labels: list[str] = field(default_factory=list)
    status: str = ISSUE_SUCCESS
    phases: list[PhaseLog] = field(default_factory=list)
    total_duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        return {
            "issue_number": self.issue_number,
            "title": self.title,
            "labels": list(self.labels),
            "status": self.status,
            "phases": [p.to_dict() for p in self.phases],
            "total_duration_seconds": round(self.total_duration_seconds, 3),
        }


def get_logs_dir(project_dir: Path) -> Path:
    return project_dir / constants.DATA_DIR_NAME / constants.LOGS_DIR_NAME


class RunLogWriter:
    """Collects one run's timeline and writes it exactly once."""

    def __init__(self, logs_dir: Path, config: dict):
        self.logs_dir = Path(logs_dir)
        self.config = dict(config)
        self.run_id = str(uuid.uuid4())
        self.start = datetime.now(timezone.utc)
        self.start_time = now_iso()
        self.issues: list[IssueLog] = []
        self._current: IssueLog | None = None
        self.path: Path | None = None

    @property
    def finalized(self) -> bool:
        return self.path is not None

    def start_issue(self, issue_number: int, title: str, labels: list[str] | None = None) -> None:
        if self._current is not None:
            self.complete_issue()
        self._current = IssueLog(issue_number=issue_number, title=title, labels=list(labels or []))

    def log_phase(self, entry: PhaseLog) -> None:
        if self._current is None or self._current.issue_number != entry.issue_number:
            raise ValueError(f"Phase logged for issue #{entry.issue_number} outside start_issue()")
        self._current.phases.append(entry)

    def complete_issue(self, success: bool | None = None) -> IssueLog | None:
        """
        Close the current issue.

        Without an explicit success flag the status is derived from the
        phases: all passed is success, some passed is partial.
        """
        issue = self._current
        if issue is None:
            return None
        passed = [p for p in issue.phases if p.status in (LOG_SUCCESS, LOG_SKIPPED)]
        if success is None:
            success = bool(issue.phases) and len(passed) == len(issue.phases)
        if success:
            issue.status = ISSUE_SUCCESS
        elif passed:
            issue.status = ISSUE_PARTIAL
        else:
            issue.status = ISSUE_FAILURE
        issue.total_duration_seconds = sum(p.duration_seconds for p in issue.phases)
        self.issues.append(issue)
        self._current = None
        return issue

    def to_dict(self, end_time: str) -> dict:
        passed = sum(1 for i in self.issues if i.status == ISSUE_SUCCESS)
        elapsed = (datetime.now(timezone.utc) - self.start).total_seconds()
        return {
            "version": constants.SCHEMA_VERSION,
            "run_id": self.run_id,
            "start_time": self.start_time,
            "end_time": end_time,
            "config": self.config,
            "issues": [i.to_dict() for i in self.issues],
            "summary": {
                "total_issues": len(self.issues),
                "passed": passed,
                "failed": len(self.issues) - passed,
                "total_duration_seconds": round(elapsed, 3),
            },
        }

    def finalize(self) -> Path:
        """Write the log. Calling it again returns the existing path."""
        if self.path is not None:
            return self.path
        if self._current is not None:
            self.complete_issue()

        data = self.to_dict(now_iso())
        stamp = self.start.strftime("%Y%m%dT%H%M%S%f")
        path = self.logs_dir / f"run-{stamp}-{self.run_id[:8]}.json"
        validate_before_write(data, "run-log", path)
        write_json_atomic(path, data)
        self.path = path
        logger.info(f"Run log written to {path}")
        return path


def list_run_logs(logs_dir: Path) -> list[Path]:
    """Run log paths, newest first (file names sort by start time)."""
    if not logs_dir.is_dir():
        return []
    return sorted(logs_dir.glob("run-*.json"), reverse=True)


def load_run_log(path: Path) -> dict | None:
    """Load one log; unreadable or off-schema logs are skipped with a warning."""
    try:
        return load_json_document(path, "run-log")
    except ValidationError as e:
        logger.warning(f"Skipping run log {path.name}: {e}")
        return None
