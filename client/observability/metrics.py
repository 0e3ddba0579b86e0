"""
Latency measurement for the voice client.

- Durations use the monotonic clock
- One measurement = one METRIC_TIMER log event
- Prefer the `timed()` context manager; LatencyMeter covers measurements
  whose start and end happen in different call stacks
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event


def _emit(
    name: str,
    duration_ms: int,
    *,
    session_id: str | None,
    details: dict[str, Any] | None,
) -> None:
    log_event({
        "event_type": "METRIC_TIMER",
        "metric": name,
        "value_ms": duration_ms,
        "session_id": session_id,
        "details": details or {},
    })


@contextmanager
def timed(
    name: str,
    *,
    session_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[None]:
    """
    Measure the enclosed block.

    The metric is emitted exactly once, also when the block raises.

        with timed("capture_finalize", session_id=...):
            audio = await controller.stop_capture(handle)
    """
    start_ns = time.monotonic_ns()
    try:
        yield
    finally:
        _emit(
            name,
            (time.monotonic_ns() - start_ns) // 1_000_000,
            session_id=session_id,
            details=details,
        )


class LatencyMeter:
    """
    Start/stop timer for one named metric.

    start() re-arms; stop() emits at most once per start().
    """

    def __init__(self, name: str, *, session_id: str | None = None) -> None:
        self._name = name
        self._session_id = session_id
        self._start_ns: int | None = None

    @property
    def armed(self) -> bool:
        """True between start() and the next stop()/reset()."""
        return self._start_ns is not None

    def start(self) -> None:
        self._start_ns = time.monotonic_ns()

    def reset(self) -> None:
        self._start_ns = None

    def stop(self, details: dict[str, Any] | None = None) -> int | None:
        """Emit the metric; returns duration_ms, or None if not armed."""
        if self._start_ns is None:
            return None
        duration_ms = (time.monotonic_ns() - self._start_ns) // 1_000_000
        self._start_ns = None
        _emit(
            self._name,
            duration_ms,
            session_id=self._session_id,
            details=details,
        )
        return duration_ms
