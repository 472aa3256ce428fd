"""Shared constants for issueflow."""

# Project-local data directory and the documents inside it
DATA_DIR_NAME = ".issueflow"
STATE_FILE_NAME = "state.json"
SETTINGS_FILE_NAME = "settings.yaml"
METRICS_FILE_NAME = "metrics.json"
LOGS_DIR_NAME = "logs"
QA_CACHE_RELPATH = ("cache", "qa", "cache.json")

# Environment variable set while `issueflow run` owns the state document
ORCHESTRATOR_ENV = "ISSUEFLOW_ORCHESTRATOR"

SCHEMA_VERSION = 1

# Phases an agent knows how to run, in their natural order
KNOWN_PHASES = [
    "spec",
    "security-review",
    "testgen",
    "exec",
    "test",
    "qa",
    "loop",
]
DEFAULT_PHASES = ["spec", "exec", "qa"]

# Issue statuses
ISSUE_NOT_STARTED = "not_started"
ISSUE_IN_PROGRESS = "in_progress"
ISSUE_READY_FOR_MERGE = "ready_for_merge"
ISSUE_MERGED = "merged"
ISSUE_BLOCKED = "blocked"
ISSUE_ABANDONED = "abandoned"
ISSUE_STATUSES = [
    ISSUE_NOT_STARTED,
    ISSUE_IN_PROGRESS,
    ISSUE_READY_FOR_MERGE,
    ISSUE_MERGED,
    ISSUE_BLOCKED,
    ISSUE_ABANDONED,
]

# Phase statuses
PHASE_PENDING = "pending"
PHASE_IN_PROGRESS = "in_progress"
PHASE_COMPLETED = "completed"
PHASE_FAILED = "failed"
PHASE_SKIPPED = "skipped"
PHASE_STATUSES = [PHASE_PENDING, PHASE_IN_PROGRESS, PHASE_COMPLETED, PHASE_FAILED, PHASE_SKIPPED]
TERMINAL_PHASE_STATUSES = {PHASE_COMPLETED, PHASE_FAILED, PHASE_SKIPPED}

# Acceptance criteria
AC_PENDING = "pending"
AC_MET = "met"
AC_NOT_MET = "not_met"
AC_BLOCKED = "blocked"
AC_STATUSES = [AC_PENDING, AC_MET, AC_NOT_MET, AC_BLOCKED]
VERIFICATION_METHODS = [
    "unit_test",
    "integration_test",
    "browser_test",
    "manual",
    "code_review",
    "other",
]

# Execution modes
MODE_SEQUENTIAL = "sequential"
MODE_FAN_OUT = "fan-out"
EXECUTION_MODES = [MODE_SEQUENTIAL, MODE_FAN_OUT]

# Exit codes
EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130
