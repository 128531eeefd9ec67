from __future__ import annotations

import functools
import logging
import os
import signal
import sys
import threading
from typing import Any, Callable

from .log import null_logger

CleanupFn = Callable[[], Any]

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def exit_status(signum: int) -> int:
    # Shell convention; a normal test failure exits with 1.
    return 128 + signum


def once(cb: CleanupFn) -> CleanupFn:
    """Make ``cb`` safe to call from both the test and the registry."""
    lock = threading.Lock()
    done = False

    @functools.wraps(cb)
    def wrapper() -> Any:
        nonlocal done
        with lock:
            if done:
                return None
            done = True
        return cb()

    return wrapper


class InterruptRegistry:
    """Cleanup callbacks that must run when the process is interrupted.

    Call :meth:`init` from the main thread before the run and :meth:`shutdown`
    after it. Callbacks run in registration order; a failing callback is
    logged and the rest still run.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or null_logger()
        # Re-entrant: the signal handler may fire while the main thread holds it.
        self._lock = threading.RLock()
        self._callbacks: list[CleanupFn] = []
        self._previous: dict[int, Any] = {}

    @property
    def installed(self) -> bool:
        return bool(self._previous)

    def init(self) -> None:
        with self._lock:
            if self.installed:
                return
            for signum in HANDLED_SIGNALS:
                self._previous[signum] = signal.signal(signum, self._handle)

    def shutdown(self) -> None:
        with self._lock:
            for signum, previous in self._previous.items():
                signal.signal(signum, previous)
            self._previous.clear()
            self._callbacks.clear()

    def register(self, cb: CleanupFn) -> None:
        with self._lock:
            self._callbacks.append(cb)

    def __len__(self) -> int:
        with self._lock:
            return len(self._callbacks)

    def drain(self) -> None:
        with self._lock:
            snapshot = list(self._callbacks)
            self._callbacks.clear()

        for i, cb in enumerate(snapshot, start=1):
            try:
                cb()
            except BaseException:
                # KeyboardInterrupt and SystemExit from one cleanup still leave the rest to run.
                self.logger.exception(
                    "cleanup %d/%d (%s) failed", i, len(snapshot), getattr(cb, "__name__", cb)
                )

    def _handle(self, signum: int, frame: Any) -> None:
        self.logger.warning(
            "received %s, running %d cleanup(s)", signal.Signals(signum).name, len(self)
        )
        self.drain()
        _flush(self.logger)
        # Terminate without unwinding the interrupted frame.
        os._exit(exit_status(signum))


def _flush(logger: logging.Logger) -> None:
    for handler in logger.handlers + logging.getLogger().handlers:
        try:
            handler.flush()
        except (OSError, ValueError):
            pass
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.flush()
        except (OSError, ValueError):
            pass
