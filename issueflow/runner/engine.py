"""
Phase execution engine.

Runs each issue's phases in order as agent subprocesses. A phase failure
(nonzero exit, timeout, spawn error, cancellation) stops that issue's
remaining phases. In sequential mode the first failed issue also stops the
queue; in fan-out mode every issue gets its turn.

The engine persists nothing itself. Callers observe progress through the
listener hooks and write it to the state store and run log.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from issueflow.lib import constants
from issueflow.lib.config import DEFAULT_AGENT_COMMAND, Settings, build_agent_command
from issueflow.runner.cancel import CancelToken
from issueflow.runner.process import ProcessOutcome, run_agent
from issueflow.workflow.state_schema import now_iso

logger = logging.getLogger(__name__)


class PhaseOutcome(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass
class PhaseResult:
    phase: str
    success: bool
    duration_seconds: float
    error: str | None = None
    exit_code: int | None = None
    timed_out: bool = False
    cancelled: bool = False
    started_at: str = field(default_factory=now_iso)
    ended_at: str = field(default_factory=now_iso)

    @property
    def outcome(self) -> PhaseOutcome:
        if self.success:
            return PhaseOutcome.SUCCESS
        if self.cancelled:
            return PhaseOutcome.CANCELLED
        if self.timed_out:
            return PhaseOutcome.TIMEOUT
        return PhaseOutcome.FAILURE


@dataclass
class IssueResult:
    issue_number: int
    success: bool
    phase_results: list[PhaseResult] = field(default_factory=list)
    duration_seconds: float = 0.0
    cancelled: bool = False


@dataclass
class ExecutionConfig:
    """Everything one run needs to know about how to execute phases."""
    phases: list[str] = field(default_factory=lambda: list(constants.DEFAULT_PHASES))
    mode: str = constants.MODE_SEQUENTIAL
    dry_run: bool = False
    verbose: bool = False
    phase_timeout: float = 1800
    kill_grace_seconds: float = 5
    agent_command: str = DEFAULT_AGENT_COMMAND
    cwd: Path | None = None

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "ExecutionConfig":
        values = {
            "phases": list(settings.phases),
            "mode": settings.mode,
            "phase_timeout": settings.phase_timeout,
            "kill_grace_seconds": settings.kill_grace_seconds,
            "agent_command": settings.agent_command,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def snapshot(self) -> dict:
        """Subset recorded in run logs."""
        return {
            "phases": list(self.phases),
            "mode": self.mode,
            "dry_run": self.dry_run,
            "verbose": self.verbose,
            "phase_timeout": self.phase_timeout,
        }


# Hook signatures
PhaseStartHook = Callable[[int, str], None]
PhaseResultHook = Callable[[int, PhaseResult], None]
IssueStartHook = Callable[[int], None]
IssueResultHook = Callable[[IssueResult], None]
AgentRunner = Callable[..., ProcessOutcome]


class PhaseEngine:
    """Drives phase chains for a list of issues."""

    def __init__(
        self,
        config: ExecutionConfig,
        cancel_token: CancelToken | None = None,
        on_issue_start: IssueStartHook | None = None,
        on_phase_start: PhaseStartHook | None = None,
        on_phase_result: PhaseResultHook | None = None,
        on_issue_result: IssueResultHook | None = None,
        runner: AgentRunner = run_agent,
    ):
        if config.mode not in constants.EXECUTION_MODES:
            raise ValueError(f"Unknown execution mode: {config.mode}")
        self.config = config
        self.cancel_token = cancel_token or CancelToken()
        self.on_issue_start = on_issue_start
        self.on_phase_start = on_phase_start
        self.on_phase_result = on_phase_result
        self.on_issue_result = on_issue_result
        self.runner = runner

    def _agent_env(self) -> dict[str, str]:
        env = dict(os.environ)
        env[constants.ORCHESTRATOR_ENV] = "1"
        return env

    def run_phase(self, issue_number: int, phase: str) -> PhaseResult:
        """Execute one phase. Never raises for process-level failures."""
        started_at = now_iso()

        if self.config.dry_run:
            logger.info(f"[ENGINE] dry run: would execute /{phase} {issue_number}")
            return PhaseResult(phase=phase, success=True, duration_seconds=0.0, started_at=started_at)

        cmd = build_agent_command(self.config.agent_command, phase, issue_number)
        outcome = self.runner(
            cmd,
            timeout=self.config.phase_timeout,
            cancel_token=self.cancel_token,
            verbose=self.config.verbose,
            kill_grace_seconds=self.config.kill_grace_seconds,
            cwd=self.config.cwd,
            env=self._agent_env(),
        )
        return self._to_phase_result(phase, outcome, started_at)

    def _to_phase_result(self, phase: str, outcome: ProcessOutcome, started_at: str) -> PhaseResult:
        result = PhaseResult(
            phase=phase,
            success=outcome.success,
            duration_seconds=outcome.duration_seconds,
            exit_code=outcome.exit_code,
            timed_out=outcome.timed_out,
            cancelled=outcome.cancelled,
            started_at=started_at,
        )
        if outcome.cancelled:
            result.error = "Cancelled"
        elif outcome.timed_out:
            result.error = f"Timeout after {self.config.phase_timeout:g}s"
        elif outcome.spawn_error:
            result.error = outcome.spawn_error
        elif outcome.exit_code != 0:
            result.error = f"Exit code {outcome.exit_code}"
        return result

    def execute(self, issue_number: int, phases: list[str] | None = None) -> IssueResult:
        """Run an issue's phases in order, stopping at the first failure."""
        phases = list(phases) if phases is not None else list(self.config.phases)
        start = time.monotonic()
        results: list[PhaseResult] = []
        success = True

        if self.on_issue_start:
            self.on_issue_start(issue_number)

        for phase in phases:
            if self.cancel_token.cancelled:
                success = False
                break

            if self.on_phase_start:
                self.on_phase_start(issue_number, phase)

            result = self.run_phase(issue_number, phase)
            results.append(result)
            if self.on_phase_result:
                self.on_phase_result(issue_number, result)

            if result.success:
                logger.info(f"[ENGINE] #{issue_number} {phase} passed ({result.duration_seconds:.1f}s)")
                continue

            logger.warning(f"[ENGINE] #{issue_number} {phase} failed: {result.error}")
            success = False
            break

        issue_result = IssueResult(
            issue_number=issue_number,
            success=success,
            phase_results=results,
            duration_seconds=time.monotonic() - start,
            cancelled=self.cancel_token.cancelled and not success,
        )
        if self.on_issue_result:
            self.on_issue_result(issue_result)
        return issue_result

    def run(self, issue_numbers: list[int]) -> list[IssueResult]:
        """Execute issues in the configured mode."""
        results = []
        for issue_number in issue_numbers:
            if self.cancel_token.cancelled:
                logger.info("[ENGINE] cancelled, not starting remaining issues")
                break

            result = self.execute(issue_number)
            results.append(result)

            if result.success:
                continue
            if result.cancelled:
                break
            if self.config.mode == constants.MODE_SEQUENTIAL:
                remaining = len(issue_numbers) - len(results)
                if remaining:
                    logger.info(f"[ENGINE] #{issue_number} failed, skipping {remaining} remaining issue(s)")
                break
        return results
