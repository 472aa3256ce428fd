"""
Agent subprocess lifecycle.

One phase is one process. Waiting is a poll loop over Popen.wait so that the
wall-clock deadline and the cancellation token are both honoured; whichever
of exit, deadline or cancellation comes first decides the outcome.
"""

import logging
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from issueflow.runner.cancel import CancelToken

logger = logging.getLogger(__name__)

DEFAULT_KILL_GRACE_SECONDS = 5.0
POLL_INTERVAL_SECONDS = 0.1


@dataclass
class ProcessOutcome:
    """How an agent process ended."""
    exit_code: int | None
    duration_seconds: float
    timed_out: bool = False
    cancelled: bool = False
    spawn_error: str | None = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not (self.timed_out or self.cancelled or self.spawn_error)


def terminate_process(proc: subprocess.Popen, grace_seconds: float) -> None:
    """SIGTERM, then SIGKILL if the process outlives the grace period."""
    if proc.poll() is not None:
        return
    try:
        proc.terminate()
    except OSError:
        return
    try:
        proc.wait(timeout=grace_seconds)
        return
    except subprocess.TimeoutExpired:
        logger.warning(f"[ENGINE] pid {proc.pid} ignored SIGTERM for {grace_seconds}s, killing")
    try:
        proc.kill()
    except OSError:
        return
    try:
        proc.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        # Reaped later by the outer wait loop
        logger.warning(f"[ENGINE] pid {proc.pid} not reaped after SIGKILL")


def run_agent(
    cmd: list[str],
    timeout: float,
    cancel_token: CancelToken | None = None,
    verbose: bool = False,
    kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
    poll_interval: float = POLL_INTERVAL_SECONDS,
) -> ProcessOutcome:
    """
    Run one agent process to completion, timeout or cancellation.

    Never raises for process problems: a binary that cannot be spawned is
    reported through spawn_error.
    """
    start = time.monotonic()

    if cancel_token is not None and cancel_token.cancelled:
        return ProcessOutcome(exit_code=None, duration_seconds=0.0, cancelled=True)

    output = None if verbose else subprocess.DEVNULL
    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=output,
            stderr=output,
            cwd=str(cwd) if cwd else None,
            env=env,
        )
    except OSError as e:
        return ProcessOutcome(
            exit_code=None,
            duration_seconds=time.monotonic() - start,
            spawn_error=e.strerror or str(e),
        )

    logger.debug(f"[ENGINE] started pid {proc.pid}: {' '.join(cmd)}")

    cancelled = threading.Event()

    def on_cancel() -> None:
        cancelled.set()
        terminate_process(proc, kill_grace_seconds)

    remove_callback = cancel_token.add_callback(on_cancel) if cancel_token else None
    deadline = start + timeout
    timed_out = False
    try:
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                timed_out = True
                logger.warning(f"[ENGINE] pid {proc.pid} exceeded {timeout}s, terminating")
                terminate_process(proc, kill_grace_seconds)
                break
            try:
                proc.wait(timeout=min(poll_interval, remaining))
                break
            except subprocess.TimeoutExpired:
                continue
    finally:
        if remove_callback is not None:
            remove_callback()

    duration = time.monotonic() - start
    if cancelled.is_set():
        return ProcessOutcome(exit_code=proc.returncode, duration_seconds=duration, cancelled=True)
    if timed_out:
        return ProcessOutcome(exit_code=proc.returncode, duration_seconds=duration, timed_out=True)
    return ProcessOutcome(exit_code=proc.returncode, duration_seconds=duration)
