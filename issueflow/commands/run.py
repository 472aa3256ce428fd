"""
issueflow run - Execute phase chains for one or more issues.
"""

import logging
import time
from pathlib import Path

from issueflow.git.diff import get_diff_stats
from issueflow.lib import constants
from issueflow.lib.config import (
    ConfigError,
    Settings,
    check_binary_available,
    get_agent_binary,
    load_settings,
    validate_phases,
)
from issueflow.lib.github import IssueInfo, get_issue_info
from issueflow.runner.engine import ExecutionConfig, IssueResult, PhaseEngine, PhaseOutcome, PhaseResult
from issueflow.runner.metrics import MetricsWriter, RunMetrics, default_metrics_path, determine_outcome
from issueflow.runner.run_log import LOG_CANCELLED, PhaseLog, RunLogWriter, get_logs_dir
from issueflow.runner.shutdown import ShutdownCoordinator
from issueflow.workflow.cleanup import reconcile_state_at_startup
from issueflow.workflow.state_schema import now_iso
from issueflow.workflow.state_store import StateFileError, StateStore

logger = logging.getLogger(__name__)

PHASE_LOG_STATUS = {
    PhaseOutcome.SUCCESS: "success",
    PhaseOutcome.FAILURE: "failure",
    PhaseOutcome.TIMEOUT: "timeout",
    PhaseOutcome.CANCELLED: "cancelled",
}


class RunRecorder:
    """Engine listener that persists progress to the state store and run log."""

    def __init__(
        self,
        issue_info: dict[int, IssueInfo],
        store: StateStore | None,
        writer: RunLogWriter | None,
        quality_loop: bool = False,
        max_iterations: int = 3,
        dry_run: bool = False,
    ):
        self.issue_info = issue_info
        self.dry_run = dry_run
        self.store = store
        self.writer = writer
        self.quality_loop = quality_loop
        self.max_iterations = max_iterations
        self.active: tuple[int, str] | None = None
        self._active_since: tuple[str, float] | None = None

    def on_issue_start(self, issue_number: int) -> None:
        info = self.issue_info[issue_number]
        print(f"\nIssue #{issue_number}: {info.title}")
        if self.store is not None and self.store.get_issue_state(issue_number) is None:
            self.store.initialize_issue(
                issue_number,
                info.title,
                quality_loop=self.quality_loop,
                max_iterations=self.max_iterations,
            )
        if self.writer is not None:
            self.writer.start_issue(issue_number, info.title, info.labels)

    def on_phase_start(self, issue_number: int, phase: str) -> None:
        self.active = (issue_number, phase)
        self._active_since = (now_iso(), time.monotonic())
        if self.dry_run:
            print(f"  Would execute: /{phase} {issue_number}")
            return
        print(f"  ⏳ {phase}...", flush=True)
        if self.store is not None:
            self.store.update_phase_status(issue_number, phase, constants.PHASE_IN_PROGRESS)

    def on_phase_result(self, issue_number: int, result: PhaseResult) -> None:
        self.active = None
        if result.success:
            print(f"  ✓ {result.phase} ({result.duration_seconds:.1f}s)")
        else:
            print(f"  ✗ {result.phase}: {result.error}")

        if self.store is not None:
            status = constants.PHASE_COMPLETED if result.success else constants.PHASE_FAILED
            self.store.update_phase_status(issue_number, result.phase, status, error=result.error)
        if self.writer is not None:
            self.writer.log_phase(PhaseLog(
                phase=result.phase,
                issue_number=issue_number,
                start_time=result.started_at,
                end_time=result.ended_at,
                duration_seconds=result.duration_seconds,
                status=PHASE_LOG_STATUS[result.outcome],
                error=result.error,
                exit_code=result.exit_code,
            ))

    def on_issue_result(self, result: IssueResult) -> None:
        if self.store is not None and result.success:
            self.store.update_issue_status(result.issue_number, constants.ISSUE_READY_FOR_MERGE)
        if self.writer is not None:
            self.writer.complete_issue(result.success)

    def mark_interrupted(self) -> None:
        """Shutdown cleanup: record the running phase as failed in state and cancelled in the run log."""
        if self.active is None:
            return
        issue_number, phase = self.active
        self.active = None
        if self.store is not None:
            self.store.update_phase_status(issue_number, phase, constants.PHASE_FAILED, error="Interrupted")
        if self.writer is not None and not self.writer.finalized:
            started_at, started = self._active_since
            self.writer.log_phase(PhaseLog(
                phase=phase,
                issue_number=issue_number,
                start_time=started_at,
                end_time=now_iso(),
                duration_seconds=time.monotonic() - started,
                status=LOG_CANCELLED,
                error="Interrupted",
            ))


def build_execution_config(args, project_dir: Path) -> tuple[ExecutionConfig, Settings]:
    """
    Merge settings.yaml with command-line flags and validate the result.

    Raises:
        ConfigError: on invalid flags, settings or a missing agent binary
    """
    settings = load_settings(project_dir)

    phases = settings.phases
    if args.phases:
        phases = [p.strip() for p in args.phases.split(",") if p.strip()]
    validate_phases(phases)

    if args.timeout is not None and args.timeout <= 0:
        raise ConfigError(f"--timeout must be positive, got {args.timeout}")

    bad = [n for n in args.issues if n <= 0]
    if bad:
        raise ConfigError(f"Issue numbers must be positive: {', '.join(str(n) for n in bad)}")

    config = ExecutionConfig.from_settings(
        settings,
        phases=phases,
        mode=args.mode,
        dry_run=args.dry_run,
        verbose=args.verbose,
        phase_timeout=args.timeout,
        cwd=project_dir,
    )

    if not config.dry_run:
        binary = get_agent_binary(config.agent_command)
        if not check_binary_available(binary):
            raise ConfigError(
                f"Agent binary '{binary}' not found in PATH. "
                f"Install it or set agent_command in {constants.DATA_DIR_NAME}/{constants.SETTINGS_FILE_NAME}"
            )
    return config, settings


def print_summary(results: list[IssueResult], total_issues: int, dry_run: bool) -> None:
    passed = sum(1 for r in results if r.success)
    print()
    print("=" * 50)
    print(f"Results: {passed}/{total_issues} issue(s) passed" + (" (dry run)" if dry_run else ""))
    for result in results:
        mark = "✓" if result.success else "✗"
        phases = " → ".join(
            f"{r.phase}{'' if r.success else ' ✗'}" for r in result.phase_results
        ) or "(no phases run)"
        print(f"  {mark} #{result.issue_number}: {phases} ({result.duration_seconds:.1f}s)")
    skipped = total_issues - len(results)
    if skipped:
        print(f"  {skipped} issue(s) not started")


def cmd_run(args, project_dir: Path) -> int:
    """Run phases for the given issues. Returns the process exit code."""
    try:
        config, settings = build_execution_config(args, project_dir)
    except ConfigError as e:
        print(f"ERROR: {e}")
        return constants.EXIT_CONFIG_ERROR

    store = None
    if not config.dry_run:
        store = StateStore.for_project(project_dir)
        try:
            store.get_state()
        except StateFileError as e:
            print(f"ERROR: {e}")
            print("  Fix or remove the state file, or rebuild it with: issueflow state rebuild --force")
            return constants.EXIT_CONFIG_ERROR
        reconciled = reconcile_state_at_startup(store, project_dir, settings.base_branch)
        for number in reconciled.advanced:
            print(f"Issue #{number} has been merged")

    quality_loop = args.quality_loop or settings.quality_loop
    max_iterations = args.max_iterations or settings.max_iterations

    issue_info = {n: get_issue_info(n, project_dir) for n in args.issues}
    writer = None
    if not config.dry_run and not args.no_log:
        writer = RunLogWriter(get_logs_dir(project_dir), config.snapshot())

    recorder = RunRecorder(issue_info, store, writer, quality_loop, max_iterations, config.dry_run)
    engine = PhaseEngine(
        config,
        on_issue_start=recorder.on_issue_start,
        on_phase_start=recorder.on_phase_start,
        on_phase_result=recorder.on_phase_result,
        on_issue_result=recorder.on_issue_result,
    )

    coordinator = ShutdownCoordinator(force_exit_timeout=settings.shutdown_timeout)
    coordinator.set_cancel_token(engine.cancel_token)
    if writer is not None:
        coordinator.register_cleanup("run log", writer.finalize)
    coordinator.register_cleanup("state", recorder.mark_interrupted)

    print(f"Phases: {' → '.join(config.phases)}  Mode: {config.mode}"
          + ("  (dry run)" if config.dry_run else ""))

    start = time.monotonic()
    results: list[IssueResult] = []
    try:
        results = engine.run(args.issues)
    finally:
        coordinator.dispose()
        if writer is not None and not writer.finalized:
            path = writer.finalize()
            print(f"\nRun log: {path}")

    print_summary(results, len(args.issues), config.dry_run)

    if not config.dry_run:
        stats = get_diff_stats(project_dir, settings.base_branch)
        passed = sum(1 for r in results if r.success)
        flags = []
        if quality_loop:
            flags.append("quality-loop")
        if config.mode == constants.MODE_FAN_OUT:
            flags.append("fan-out")
        try:
            MetricsWriter(default_metrics_path(project_dir)).record_run(RunMetrics(
                issues=list(args.issues),
                phases=list(config.phases),
                outcome=determine_outcome(passed, len(args.issues)),
                duration_seconds=time.monotonic() - start,
                flags=flags,
                files_changed=len(stats.files_modified),
                lines_added=stats.total_additions,
                lines_deleted=stats.total_deletions,
            ))
        except OSError as e:
            logger.warning(f"Failed to record metrics: {e}")

    if config.dry_run:
        return constants.EXIT_OK
    if len(results) == len(args.issues) and all(r.success for r in results):
        return constants.EXIT_OK
    return constants.EXIT_FAILED
