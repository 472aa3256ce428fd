"""
Persistent workflow state.

One JSON document (.issueflow/state.json) is the durable record of every
tracked issue and its phases. The store is the only writer: each mutation
helper loads (from the in-memory copy after the first read), mutates and
saves in one call.

A document that fails to parse or validate is fatal. The store never
replaces a broken file with an empty one, because that would silently
discard the user's progress.
"""

import json
import logging
import threading
from pathlib import Path

from issueflow.lib import constants
from issueflow.lib.fileio import write_json_atomic
from issueflow.lib.validate import ValidationError, validate, validate_before_write
from issueflow.workflow.state_schema import (
    AcceptanceCriteria,
    IssueState,
    PhaseState,
    PRInfo,
    WorkflowState,
    create_empty_state,
    create_issue_state,
    now_iso,
)

logger = logging.getLogger(__name__)


class StateError(Exception):
    """A state operation could not be applied."""

    def __init__(self, message: str, issue_number: int | None = None):
        self.issue_number = issue_number
        super().__init__(message)


class IssueNotFoundError(StateError):
    def __init__(self, issue_number: int):
        super().__init__(f"Issue #{issue_number} not found", issue_number)


class AcceptanceCriterionNotFoundError(StateError):
    def __init__(self, issue_number: int, ac_id: str):
        self.ac_id = ac_id
        super().__init__(f'AC "{ac_id}" not found in issue #{issue_number}', issue_number)


class StateFileError(Exception):
    """The state document exists but cannot be trusted."""

    def __init__(self, path: Path, message: str):
        self.path = path
        super().__init__(message)


def default_state_path(project_dir: Path) -> Path:
    return project_dir / constants.DATA_DIR_NAME / constants.STATE_FILE_NAME


class StateStore:
    """Owner of the workflow state document for one project directory."""

    def __init__(self, state_path: Path):
        self.state_path = Path(state_path)
        self._state: WorkflowState | None = None
        self._lock = threading.RLock()

    @classmethod
    def for_project(cls, project_dir: Path) -> "StateStore":
        return cls(default_state_path(project_dir))

    # -- load / save ---------------------------------------------------------

    def state_exists(self) -> bool:
        return self.state_path.exists()

    def get_state(self) -> WorkflowState:
        """
        Return the state, reading the file only on first use.

        Raises:
            StateFileError: invalid JSON or a document off the state schema
        """
        with self._lock:
            if self._state is None:
                self._state = self._load()
            return self._state

    def clear_cache(self) -> None:
        """Forget the in-memory copy so the next get_state() re-reads disk."""
        with self._lock:
            self._state = None

    def _load(self) -> WorkflowState:
        try:
            text = self.state_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return create_empty_state()
        except OSError as e:
            raise StateFileError(self.state_path, f"Cannot read {self.state_path}: {e}") from None

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise StateFileError(self.state_path, f"Invalid JSON in {self.state_path}: {e}") from None

        try:
            validate(data, "state")
        except ValidationError as e:
            raise StateFileError(self.state_path, f"Invalid state document {self.state_path}: {e}") from None

        return WorkflowState.from_dict(data)

    def save_state(self, state: WorkflowState, issue_number: int | None = None) -> None:
        """
        Stamp last_updated, validate, and atomically replace the document.

        On failure the in-memory copy is dropped, so the next read comes from
        disk and earlier mutations of the rejected state do not linger.

        Raises:
            StateError: the document failed validation
            OSError: the write failed
        """
        with self._lock:
            state.last_updated = now_iso()
            data = state.to_dict()
            try:
                validate_before_write(data, "state", self.state_path)
                write_json_atomic(self.state_path, data)
            except ValidationError as e:
                self._state = None
                raise StateError(str(e), issue_number) from e
            except OSError:
                self._state = None
                raise
            self._state = state

    # -- queries -------------------------------------------------------------

    def get_issue_state(self, issue_number: int) -> IssueState | None:
        return self.get_state().issues.get(issue_number)

    def get_all_issue_states(self) -> dict[int, IssueState]:
        return dict(self.get_state().issues)

    def get_issues_by_status(self, status: str) -> list[IssueState]:
        return [issue for issue in self.get_state().issues.values() if issue.status == status]

    def _require_issue(self, state: WorkflowState, issue_number: int) -> IssueState:
        issue = state.issues.get(issue_number)
        if issue is None:
            raise IssueNotFoundError(issue_number)
        return issue

    # -- mutations -----------------------------------------------------------

    def initialize_issue(
        self,
        issue_number: int,
        title: str,
        worktree: str | None = None,
        branch: str | None = None,
        quality_loop: bool = False,
        max_iterations: int = 3,
    ) -> IssueState:
        """Create (or reset) the record for an issue with status not_started."""
        with self._lock:
            state = self.get_state()
            issue = create_issue_state(
                issue_number,
                title,
                worktree=worktree,
                branch=branch,
                quality_loop=quality_loop,
                max_iterations=max_iterations,
            )
            state.issues[issue_number] = issue
            self.save_state(state, issue_number)
            logger.info(f"[STATE] Initialized issue #{issue_number}: {title}")
            return issue

    def update_phase_status(
        self,
        issue_number: int,
        phase: str,
        status: str,
        error: str | None = None,
    ) -> PhaseState:
        """
        Record a phase transition.

        started_at is stamped the first time the phase enters in_progress and
        is never overwritten; completed_at likewise on the first terminal
        status. Starting a phase on a not_started issue moves the issue to
        in_progress.
        """
        if status not in constants.PHASE_STATUSES:
            raise StateError(f"Invalid phase status '{status}'", issue_number)

        with self._lock:
            state = self.get_state()
            issue = self._require_issue(state, issue_number)
            now = now_iso()

            record = issue.phases.get(phase)
            if record is None:
                record = PhaseState()
                issue.phases[phase] = record

            record.status = status
            if status == constants.PHASE_IN_PROGRESS and record.started_at is None:
                record.started_at = now
            if status in constants.TERMINAL_PHASE_STATUSES and record.completed_at is None:
                record.completed_at = now
            record.error = error
            if issue.loop.enabled:
                record.iteration = issue.loop.current_iteration

            issue.current_phase = phase
            if status == constants.PHASE_IN_PROGRESS and issue.status == constants.ISSUE_NOT_STARTED:
                issue.status = constants.ISSUE_IN_PROGRESS
            issue.last_activity = now

            self.save_state(state, issue_number)
            logger.debug(f"[STATE] #{issue_number} {phase} -> {status}")
            return record

    def update_issue_status(self, issue_number: int, status: str) -> IssueState:
        if status not in constants.ISSUE_STATUSES:
            raise StateError(f"Invalid issue status '{status}'", issue_number)

        with self._lock:
            state = self.get_state()
            issue = self._require_issue(state, issue_number)
            previous = issue.status
            issue.status = status
            issue.last_activity = now_iso()
            self.save_state(state, issue_number)
            logger.info(f"[STATE] #{issue_number} {previous} -> {status}")
            return issue

    def update_pr_info(self, issue_number: int, pr_number: int, url: str) -> IssueState:
        with self._lock:
            state = self.get_state()
            issue = self._require_issue(state, issue_number)
            issue.pr = PRInfo(number=pr_number, url=url)
            issue.last_activity = now_iso()
            self.save_state(state, issue_number)
            return issue

    def update_worktree_info(self, issue_number: int, worktree: str, branch: str) -> IssueState:
        with self._lock:
            state = self.get_state()
            issue = self._require_issue(state, issue_number)
            issue.worktree = worktree
            issue.branch = branch
            issue.last_activity = now_iso()
            self.save_state(state, issue_number)
            return issue

    def update_loop_iteration(self, issue_number: int, iteration: int) -> IssueState:
        if iteration < 0:
            raise StateError(f"Invalid loop iteration {iteration}", issue_number)

        with self._lock:
            state = self.get_state()
            issue = self._require_issue(state, issue_number)
            issue.loop.current_iteration = iteration
            issue.last_activity = now_iso()
            self.save_state(state, issue_number)
            return issue

    def update_acceptance_criteria(self, issue_number: int, criteria: AcceptanceCriteria) -> AcceptanceCriteria:
        with self._lock:
            state = self.get_state()
            issue = self._require_issue(state, issue_number)
            issue.acceptance_criteria = criteria
            issue.last_activity = now_iso()
            self.save_state(state, issue_number)
            return criteria

    def update_ac_status(
        self,
        issue_number: int,
        ac_id: str,
        status: str,
        notes: str | None = None,
    ) -> AcceptanceCriteria:
        """Set one criterion's status and stamp verified_at. Returns the updated set."""
        if status not in constants.AC_STATUSES:
            raise StateError(f"Invalid acceptance criterion status '{status}'", issue_number)

        with self._lock:
            state = self.get_state()
            issue = self._require_issue(state, issue_number)
            criteria = issue.acceptance_criteria
            if criteria is None:
                raise StateError(f"Issue #{issue_number} has no acceptance criteria", issue_number)

            item = criteria.find(ac_id)
            if item is None:
                raise AcceptanceCriterionNotFoundError(issue_number, ac_id)

            now = now_iso()
            item.status = status
            item.verified_at = now
            if notes is not None:
                item.notes = notes
            issue.last_activity = now
            self.save_state(state, issue_number)
            return criteria

    def remove_issue(self, issue_number: int) -> bool:
        """Drop an issue. Returns False (and writes nothing) if it was not tracked."""
        with self._lock:
            state = self.get_state()
            if issue_number not in state.issues:
                return False
            del state.issues[issue_number]
            self.save_state(state, issue_number)
            logger.info(f"[STATE] Removed issue #{issue_number}")
            return True
