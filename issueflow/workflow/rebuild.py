"""Reconstruct the state document from run logs."""

import logging
from dataclasses import dataclass
from pathlib import Path

from issueflow.lib import constants
from issueflow.runner import run_log
from issueflow.workflow.state_schema import IssueState, PhaseState, WorkflowState, now_iso
from issueflow.workflow.state_store import StateStore

logger = logging.getLogger(__name__)

LOG_TO_PHASE_STATUS = {
    run_log.LOG_SUCCESS: constants.PHASE_COMPLETED,
    run_log.LOG_FAILURE: constants.PHASE_FAILED,
    run_log.LOG_TIMEOUT: constants.PHASE_FAILED,
    run_log.LOG_CANCELLED: constants.PHASE_FAILED,
    run_log.LOG_SKIPPED: constants.PHASE_SKIPPED,
}


@dataclass
class RebuildResult:
    success: bool
    logs_processed: int = 0
    issues_found: int = 0
    error: str | None = None


def issue_state_from_log(entry: dict) -> IssueState:
    """Build an issue record from one issue entry of a run log."""
    phases: dict[str, PhaseState] = {}
    for phase_log in entry["phases"]:
        status = LOG_TO_PHASE_STATUS.get(phase_log["status"], constants.PHASE_COMPLETED)
        phases[phase_log["phase"]] = PhaseState(
            status=status,
            started_at=phase_log["start_time"],
            completed_at=phase_log["end_time"],
            error=phase_log.get("error"),
        )

    last = entry["phases"][-1] if entry["phases"] else None
    return IssueState(
        number=entry["issue_number"],
        title=entry["title"],
        status=(
            constants.ISSUE_READY_FOR_MERGE
            if entry["status"] == run_log.ISSUE_SUCCESS
            else constants.ISSUE_IN_PROGRESS
        ),
        current_phase=last["phase"] if last else None,
        phases=phases,
        last_activity=last["end_time"] if last else now_iso(),
    )


def rebuild_state_from_logs(store: StateStore, logs_dir: Path) -> RebuildResult:
    """
    Replace the state document with one derived from run logs.

    Logs are read newest first and the first log that mentions an issue
    wins, so each issue reflects its most recent run.
    """
    if not logs_dir.is_dir():
        return RebuildResult(success=False, error=f"Log directory not found: {logs_dir}")

    state = WorkflowState()
    processed = 0
    for path in run_log.list_run_logs(logs_dir):
        data = run_log.load_run_log(path)
        if data is None:
            continue
        processed += 1
        for entry in data["issues"]:
            number = entry["issue_number"]
            if number not in state.issues:
                state.issues[number] = issue_state_from_log(entry)

    store.save_state(state)
    logger.info(f"[STATE] Rebuilt {len(state.issues)} issue(s) from {processed} run log(s)")
    return RebuildResult(success=True, logs_processed=processed, issues_found=len(state.issues))
