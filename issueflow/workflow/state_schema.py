"""
Typed model of the workflow state document.

On disk the document is JSON with snake_case keys and issue numbers as
string keys; in memory issues are keyed by int. from_dict() assumes the
data already passed the "state" JSON schema.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from issueflow.lib import constants


def now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    """Parse timestamps written by now_iso() (and other offset-aware ISO strings)."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _drop_none(data: dict) -> dict:
    return {k: v for k, v in data.items() if v is not None}


@dataclass
class PhaseState:
    status: str = constants.PHASE_PENDING
    started_at: str | None = None
    completed_at: str | None = None
    error: str | None = None
    iteration: int | None = None

    def to_dict(self) -> dict:
        return _drop_none({
            "status": self.status,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "error": self.error,
            "iteration": self.iteration,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "PhaseState":
        return cls(
            status=data["status"],
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            error=data.get("error"),
            iteration=data.get("iteration"),
        )


@dataclass
class AcceptanceCriterion:
    id: str
    description: str
    verification_method: str = "manual"
    status: str = constants.AC_PENDING
    notes: str | None = None
    verified_at: str | None = None

    def to_dict(self) -> dict:
        return _drop_none({
            "id": self.id,
            "description": self.description,
            "verification_method": self.verification_method,
            "status": self.status,
            "notes": self.notes,
            "verified_at": self.verified_at,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "AcceptanceCriterion":
        return cls(
            id=data["id"],
            description=data["description"],
            verification_method=data.get("verification_method", "manual"),
            status=data.get("status", constants.AC_PENDING),
            notes=data.get("notes"),
            verified_at=data.get("verified_at"),
        )


@dataclass
class AcceptanceCriteria:
    """Criteria for one issue. The summary is always derived from items."""
    items: list[AcceptanceCriterion] = field(default_factory=list)
    extracted_at: str = field(default_factory=now_iso)

    @property
    def summary(self) -> dict[str, int]:
        counts = {status: 0 for status in constants.AC_STATUSES}
        for item in self.items:
            counts[item.status] += 1
        return {"total": len(self.items), **counts}

    def find(self, ac_id: str) -> AcceptanceCriterion | None:
        for item in self.items:
            if item.id == ac_id:
                return item
        return None

    def to_dict(self) -> dict:
        return {
            "items": [item.to_dict() for item in self.items],
            "extracted_at": self.extracted_at,
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AcceptanceCriteria":
        # A stored summary is ignored; it is recomputed from items
        return cls(
            items=[AcceptanceCriterion.from_dict(i) for i in data.get("items", [])],
            extracted_at=data.get("extracted_at") or now_iso(),
        )


@dataclass
class PRInfo:
    number: int
    url: str

    def to_dict(self) -> dict:
        return {"number": self.number, "url": self.url}


@dataclass
class LoopState:
    """Quality-loop settings and progress."""
    enabled: bool = False
    max_iterations: int = 3
    current_iteration: int = 0

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "max_iterations": self.max_iterations,
            "current_iteration": self.current_iteration,
        }


@dataclass
class IssueState:
    number: int
    title: str
    status: str = constants.ISSUE_NOT_STARTED
    current_phase: str | None = None
    phases: dict[str, PhaseState] = field(default_factory=dict)
    worktree: str | None = None
    branch: str | None = None
    pr: PRInfo | None = None
    loop: LoopState = field(default_factory=LoopState)
    acceptance_criteria: AcceptanceCriteria | None = None
    last_activity: str = field(default_factory=now_iso)

    def to_dict(self) -> dict:
        return _drop_none({
            "number": self.number,
            "title": self.title,
            "status": self.status,
            "current_phase": self.current_phase,
            "phases": {name: phase.to_dict() for name, phase in self.phases.items()},
            "worktree": self.worktree,
            "branch": self.branch,
            "pr": self.pr.to_dict() if self.pr else None,
            "loop": self.loop.to_dict(),
            "acceptance_criteria": self.acceptance_criteria.to_dict() if self.acceptance_criteria else None,
            "last_activity": self.last_activity,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "IssueState":
        pr = data.get("pr")
        loop = data.get("loop") or {}
        criteria = data.get("acceptance_criteria")
        return cls(
            number=data["number"],
            title=data["title"],
            status=data["status"],
            current_phase=data.get("current_phase"),
            phases={name: PhaseState.from_dict(p) for name, p in data.get("phases", {}).items()},
            worktree=data.get("worktree"),
            branch=data.get("branch"),
            pr=PRInfo(number=pr["number"], url=pr["url"]) if pr else None,
            loop=LoopState(
                enabled=loop.get("enabled", False),
                max_iterations=loop.get("max_iterations", 3),
                current_iteration=loop.get("current_iteration", 0),
            ),
            acceptance_criteria=AcceptanceCriteria.from_dict(criteria) if criteria else None,
            last_activity=data["last_activity"],
        )


@dataclass
class WorkflowState:
    version: int = constants.SCHEMA_VERSION
    last_updated: str = field(default_factory=now_iso)
    issues: dict[int, IssueState] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "last_updated": self.last_updated,
            "issues": {str(n): issue.to_dict() for n, issue in sorted(self.issues.items())},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowState":
        return cls(
            version=data["version"],
            last_updated=data["last_updated"],
            issues={int(key): IssueState.from_dict(issue) for key, issue in data["issues"].items()},
        )


def create_empty_state() -> WorkflowState:
    return WorkflowState()


def create_issue_state(
    number: int,
    title: str,
    worktree: str | None = None,
    branch: str | None = None,
    quality_loop: bool = False,
    max_iterations: int = 3,
) -> IssueState:
    return IssueState(
        number=number,
        title=title,
        worktree=worktree,
        branch=branch,
        loop=LoopState(enabled=quality_loop, max_iterations=max_iterations),
    )


def create_acceptance_criterion(
    ac_id: str,
    description: str,
    verification_method: str = "manual",
) -> AcceptanceCriterion:
    if verification_method not in constants.VERIFICATION_METHODS:
        raise ValueError(f"Unknown verification method '{verification_method}'")
    return AcceptanceCriterion(id=ac_id, description=description, verification_method=verification_method)


def create_acceptance_criteria(items: list[AcceptanceCriterion]) -> AcceptanceCriteria:
    return AcceptanceCriteria(items=list(items))
