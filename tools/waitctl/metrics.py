from __future__ import annotations

import logging
import sys
import threading
from typing import TextIO

from .log import null_logger


def metric_name(caller: str, resource: str = "", label: str = "") -> str:
    return "/".join(part for part in (caller, resource, label) if part)


def format_metric(name: str, start_ns: int, end_ns: int) -> str:
    duration_ms = (end_ns - start_ns) / 1e6
    return f"metric {name} {start_ns} {end_ns} {duration_ms:f}ms"


class MetricRecorder:
    """Writes one ``metric`` line per completed wait.

    The recorder is shared by every concurrent poll in the process. Each line
    goes out under a lock so lines never split, and a broken stream is logged
    and ignored rather than failing the wait that produced the metric.
    """

    def __init__(
        self,
        stream: TextIO | None = None,
        enabled: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        self._stream = stream
        self.enabled = enabled
        self._logger = logger or null_logger()
        self._lock = threading.Lock()

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stdout

    def record(self, name: str, start_ns: int, end_ns: int) -> None:
        if not self.enabled:
            return

        line = format_metric(name, start_ns, end_ns) + "\n"
        with self._lock:
            try:
                self.stream.write(line)
                self.stream.flush()
            except (OSError, ValueError) as e:
                self._logger.debug("dropping metric %s: %s", name, e)
