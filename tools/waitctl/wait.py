from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from .log import null_logger
from .metrics import MetricRecorder, metric_name

# True: done. False: keep polling. Raising: stop with that error.
ConditionFn = Callable[[], bool]


@dataclass(frozen=True)
class PollPolicy:
    interval: float = 1.0
    timeout: float = 300.0
    immediate: bool = True

    def __post_init__(self) -> None:
        if self.interval <= 0:
            raise ValueError(f"poll interval must be positive, got {self.interval}")
        if self.timeout < self.interval:
            raise ValueError(
                f"poll timeout ({self.timeout}s) must not be shorter than the interval ({self.interval}s)"
            )


class PollError(Exception):
    def __init__(self, label: str, elapsed: float, message: str) -> None:
        self.label = label
        self.elapsed = elapsed
        super().__init__(f"{label}: {message} (after {elapsed:.3f}s)")


class PollTimeout(PollError):
    def __init__(self, label: str, elapsed: float, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(label, elapsed, f"timed out after {attempts} attempt(s)")


class ConditionFailure(PollError):
    def __init__(self, label: str, elapsed: float, error: BaseException) -> None:
        self.error = error
        super().__init__(label, elapsed, f"condition failed: {error}")


class TransportExhausted(PollError):
    def __init__(self, label: str, elapsed: float, attempts: int, error: BaseException) -> None:
        self.attempts = attempts
        self.error = error
        super().__init__(
            label, elapsed, f"giving up after {attempts} consecutive transport error(s): {error}"
        )


class PollCancelled(PollError):
    def __init__(self, label: str, elapsed: float) -> None:
        super().__init__(label, elapsed, "cancelled")


class Poller:
    def __init__(
        self,
        recorder: MetricRecorder | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.recorder = recorder or MetricRecorder(enabled=False)
        self.logger = logger or null_logger()

    def poll(
        self,
        label: str,
        policy: PollPolicy,
        cond: ConditionFn,
        *,
        caller: str = "poll",
        resource: str = "",
        cancel: threading.Event | None = None,
    ) -> None:
        name = metric_name(caller, resource, label)
        started = time.monotonic()
        start_ns = time.time_ns()
        attempts = 0

        if not policy.immediate:
            self._sleep(policy.interval, cancel, name, started)

        while True:
            self._raise_if_cancelled(cancel, name, started)

            attempts += 1
            try:
                done = cond()
            except PollError:
                self.recorder.record(name, start_ns, time.time_ns())
                raise
            except Exception as e:
                self.recorder.record(name, start_ns, time.time_ns())
                raise ConditionFailure(name, time.monotonic() - started, e) from e

            # A result that arrives after cancellation is discarded.
            self._raise_if_cancelled(cancel, name, started)

            if done:
                self.recorder.record(name, start_ns, time.time_ns())
                self.logger.debug("%s: done after %d attempt(s)", name, attempts)
                return

            self.logger.debug("%s: attempt %d not done yet", name, attempts)
            self._sleep(policy.interval, cancel, name, started)

            elapsed = time.monotonic() - started
            if elapsed >= policy.timeout:
                self.recorder.record(name, start_ns, time.time_ns())
                raise PollTimeout(name, elapsed, attempts)

    def check(
        self,
        label: str,
        cond: ConditionFn,
        *,
        caller: str = "check",
        resource: str = "",
        cancel: threading.Event | None = None,
    ) -> None:
        name = metric_name(caller, resource, label)
        started = time.monotonic()
        start_ns = time.time_ns()

        self._raise_if_cancelled(cancel, name, started)
        try:
            done = cond()
        except PollError:
            self.recorder.record(name, start_ns, time.time_ns())
            raise
        except Exception as e:
            self.recorder.record(name, start_ns, time.time_ns())
            raise ConditionFailure(name, time.monotonic() - started, e) from e

        self.recorder.record(name, start_ns, time.time_ns())
        if not done:
            raise PollTimeout(name, time.monotonic() - started, 1)

    def _sleep(
        self,
        seconds: float,
        cancel: threading.Event | None,
        name: str,
        started: float,
    ) -> None:
        if cancel is None:
            time.sleep(seconds)
            return
        if cancel.wait(seconds):
            raise PollCancelled(name, time.monotonic() - started)

    @staticmethod
    def _raise_if_cancelled(cancel: threading.Event | None, name: str, started: float) -> None:
        if cancel is not None and cancel.is_set():
            raise PollCancelled(name, time.monotonic() - started)
