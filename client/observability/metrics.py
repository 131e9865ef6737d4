"""
Metrics helpers for observability.

- Durations use monotonic time; ts_ms stays wall-clock for readability
- One metric = one log event, no aggregation
- Prefer the `timed()` context manager so a timer can never leak
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator, Mapping

from observability.logger import log_event


@contextmanager
def timed(
    name: str,
    *,
    session_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[dict[str, Any]]:
    """
    Measure the duration of a block and emit one METRIC_TIMER event.

    Yields a mutable details dict; the block may record its outcome there
    before the metric is emitted:

        with timed("connect_handshake", session_id=sid) as m:
            ok = await wait_for_ack()
            m["confirmed"] = ok

    The metric is emitted even when the block raises.
    """
    extra: dict[str, Any] = dict(details or {})
    start_ns = time.monotonic_ns()
    try:
        yield extra
    finally:
        log_event({
            "event_type": "METRIC_TIMER",
            "metric": name,
            "value_ms": (time.monotonic_ns() - start_ns) // 1_000_000,
            "session_id": session_id,
            "details": extra,
        })


def emit_counters(
    name: str,
    counters: Mapping[str, int],
    *,
    session_id: str | None = None,
) -> None:
    """Emit a snapshot of integer counters as a single METRIC_COUNTERS event."""
    log_event({
        "event_type": "METRIC_COUNTERS",
        "metric": name,
        "session_id": session_id,
        "counters": dict(counters),
    })
