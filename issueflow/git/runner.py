"""Subprocess wrapper for read-only git queries."""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30

# Shell convention for "command not found"
MISSING_BINARY_RETURNCODE = 127


@dataclass
class GitResult:
    """Outcome of one git invocation."""
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def lines(self) -> list[str]:
        """Non-empty stdout lines, stripped."""
        return [line.strip() for line in self.stdout.splitlines() if line.strip()]


def run_git(
    args: list[str],
    cwd: Path | None = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> GitResult:
    """
    Run git with a timeout, never raising.

    Args:
        args: Arguments after "git" (e.g., ["diff", "--name-only"])
        cwd: Repository or worktree path; the process cwd when None
        timeout: Seconds before the command is abandoned

    Returns:
        GitResult. A timeout sets timed_out, a missing git binary
        reports returncode 127.
    """
    cmd = ["git"]
    if cwd is not None:
        cmd += ["-C", str(cwd)]
    cmd += args
    try:
        completed = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        logger.debug(f"git {' '.join(args)} timed out after {timeout}s")
        return GitResult(
            returncode=-1,
            stdout="",
            stderr=f"Command timed out after {timeout}s",
            timed_out=True,
        )
    except OSError as e:
        logger.debug(f"git unavailable: {e}")
        return GitResult(returncode=MISSING_BINARY_RETURNCODE, stdout="", stderr=str(e))

    return GitResult(
        returncode=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr,
    )
