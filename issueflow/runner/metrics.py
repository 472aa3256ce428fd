"""Local run metrics (.issueflow/metrics.json)."""

import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from issueflow.lib import constants
from issueflow.lib.fileio import write_json_atomic
from issueflow.lib.validate import ValidationError, load_json_document, validate_before_write
from issueflow.workflow.state_schema import now_iso

logger = logging.getLogger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_PARTIAL = "partial"
OUTCOME_FAILED = "failed"


def determine_outcome(succeeded: int, total: int) -> str:
    """success when every issue passed, failed when none did, partial otherwise."""
    if total > 0 and succeeded == total:
        return OUTCOME_SUCCESS
    if succeeded == 0:
        return OUTCOME_FAILED
    return OUTCOME_PARTIAL


@dataclass
class RunMetrics:
    issues: list[int]
    phases: list[str]
    outcome: str
    duration_seconds: float
    flags: list[str] = field(default_factory=list)
    files_changed: int = 0
    lines_added: int = 0
    lines_deleted: int = 0
    tokens_used: int = 0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    date: str = field(default_factory=now_iso)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": self.date,
            "issues": list(self.issues),
            "phases": list(self.phases),
            "outcome": self.outcome,
            "duration_seconds": round(self.duration_seconds, 3),
            "flags": list(self.flags),
            "metrics": {
                "tokens_used": self.tokens_used,
                "files_changed": self.files_changed,
                "lines_added": self.lines_added,
                "lines_deleted": self.lines_deleted,
            },
        }


def default_metrics_path(project_dir: Path) -> Path:
    return project_dir / constants.DATA_DIR_NAME / constants.METRICS_FILE_NAME


class MetricsWriter:
    """Appends one record per run; an unreadable file is started over."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def read_runs(self) -> list[dict]:
        if not self.path.exists():
            return []
        try:
            return load_json_document(self.path, "metrics")["runs"]
        except ValidationError as e:
            logger.warning(f"Starting new metrics file, existing one unreadable: {e}")
            return []

    def record_run(self, metrics: RunMetrics) -> None:
        runs = self.read_runs()
        runs.append(metrics.to_dict())
        data = {"version": constants.SCHEMA_VERSION, "runs": runs}
        validate_before_write(data, "metrics", self.path)
        write_json_atomic(self.path, data)
