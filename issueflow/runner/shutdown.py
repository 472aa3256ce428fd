"""Graceful shutdown on SIGINT/SIGTERM.

The coordinator is a two-state machine (transitions library):

    idle --begin_shutdown--> shutting_down --reset--> idle

The first signal cancels the in-flight phase, runs the registered cleanups
last-registered-first, and exits. A second signal during shutdown, or a
cleanup phase that outlives the watchdog, force-exits immediately.

Usage:
    coordinator = ShutdownCoordinator(force_exit_timeout=10)
    coordinator.set_cancel_token(engine.cancel_token)
    coordinator.register_cleanup("run-log", writer.finalize)
    try:
        engine.run(issues)
    finally:
        coordinator.dispose()
"""

import logging
import os
import signal
import sys
import threading
from typing import Callable, TextIO

from transitions import Machine

from issueflow.lib.constants import EXIT_INTERRUPTED
from issueflow.runner.cancel import CancelToken

logger = logging.getLogger(__name__)

DEFAULT_FORCE_EXIT_TIMEOUT = 10.0

STATES = ["idle", "shutting_down"]

TRANSITIONS = [
    {"trigger": "begin_shutdown", "source": "idle", "dest": "shutting_down"},
    {"trigger": "reset", "source": "shutting_down", "dest": "idle"},
]

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownCoordinator:
    """Owns signal handlers, cleanup callbacks and the cancellation handle for one run."""

    def __init__(
        self,
        force_exit_timeout: float = DEFAULT_FORCE_EXIT_TIMEOUT,
        output: TextIO | None = None,
        exit_fn: Callable[[int], None] | None = None,
        force_exit_fn: Callable[[int], None] | None = None,
        install_handlers: bool = True,
    ):
        """
        Args:
            force_exit_timeout: Seconds the cleanups may take before the watchdog fires
            output: Stream for progress lines (stderr by default)
            exit_fn: Called with the exit code after an orderly shutdown (sys.exit)
            force_exit_fn: Called for forced exits; must not return (os._exit)
            install_handlers: Install SIGINT/SIGTERM handlers now
        """
        self.force_exit_timeout = force_exit_timeout
        self.output = output
        self.exit_fn = exit_fn or sys.exit
        self.force_exit_fn = force_exit_fn or os._exit
        self._cleanups: list[tuple[str, Callable[[], None]]] = []
        self._cancel_token: CancelToken | None = None
        self._previous_handlers: dict[int, object] = {}
        self._watchdog: threading.Timer | None = None

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial="idle",
            auto_transitions=False,
            after_state_change="on_state_change",
        )

        if install_handlers:
            self.install_signal_handlers()

    def on_state_change(self) -> None:
        logger.debug(f"[SHUTDOWN] state -> {self.state}")

    def _print(self, message: str) -> None:
        print(message, file=self.output or sys.stderr, flush=True)

    # -- signal handlers -----------------------------------------------------

    def install_signal_handlers(self) -> None:
        """Install handlers, remembering the previous ones for dispose()."""
        if self._previous_handlers:
            return
        for signum in HANDLED_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)

    def _restore_signal_handlers(self) -> None:
        for signum, previous in self._previous_handlers.items():
            signal.signal(signum, previous)
        self._previous_handlers.clear()

    def _handle_signal(self, signum, frame) -> None:
        self.graceful_shutdown(signal.Signals(signum).name)

    # -- registration --------------------------------------------------------

    def register_cleanup(self, name: str, fn: Callable[[], None]) -> None:
        """Add a cleanup; re-registering a name replaces the old entry."""
        self.unregister_cleanup(name)
        self._cleanups.append((name, fn))

    def unregister_cleanup(self, name: str) -> None:
        self._cleanups = [(n, fn) for n, fn in self._cleanups if n != name]

    @property
    def cleanup_count(self) -> int:
        return len(self._cleanups)

    def set_cancel_token(self, token: CancelToken) -> None:
        self._cancel_token = token

    def clear_cancel_token(self) -> None:
        self._cancel_token = None

    # -- shutdown ------------------------------------------------------------

    def _on_watchdog(self) -> None:
        self._print("Cleanup timeout, force exiting")
        self.force_exit_fn(1)

    def _run_cleanups(self) -> None:
        for name, fn in reversed(list(self._cleanups)):
            try:
                fn()
                self._print(f"  ✓ {name}")
            except Exception as e:
                logger.warning(f"[SHUTDOWN] cleanup '{name}' failed: {e}")
                self._print(f"  ✗ {name}: {e}")

    def graceful_shutdown(self, signal_name: str = "SIGINT") -> None:
        """Cancel in-flight work, run cleanups LIFO, then exit."""
        if self.is_shutting_down():
            self._print("\nForce exiting...")
            self.force_exit_fn(1)
            return

        self.begin_shutdown()
        self._print(f"\nReceived {signal_name}, shutting down gracefully...")

        if self._cancel_token is not None and not self._cancel_token.cancelled:
            self._cancel_token.cancel()
            self._print("  Aborted active phase")

        watchdog = threading.Timer(self.force_exit_timeout, self._on_watchdog)
        watchdog.daemon = True
        self._watchdog = watchdog
        watchdog.start()
        try:
            self._run_cleanups()
        finally:
            watchdog.cancel()
            self._watchdog = None

        self._print("Interrupted. Cleanup complete.")
        self.exit_fn(EXIT_INTERRUPTED)

    def dispose(self) -> None:
        """Restore handlers and forget all state so the instance can be reused."""
        self._restore_signal_handlers()
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
        self._cleanups.clear()
        self._cancel_token = None
        if self.is_shutting_down():
            self.reset()
