"""Cancellation handle shared by the engine and the shutdown coordinator."""

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class CancelToken:
    """
    One-shot cancellation signal.

    cancel() runs the registered callbacks synchronously in the cancelling
    thread. That is what lets a signal handler kill the active subprocess
    before it goes on to run cleanups. A callback added after cancellation
    runs immediately.
    """

    def __init__(self):
        self._event = threading.Event()
        self._callbacks: list[Callable[[], None]] = []
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for callback in callbacks:
            self._run(callback)

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register callback; returns a function that unregisters it."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def remove() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return remove
        self._run(callback)
        return lambda: None

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    @staticmethod
    def _run(callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception as e:
            logger.warning(f"Cancel callback failed: {e}")
