"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- No side effects beyond logging
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Callable, Mapping


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

_json_lines: bool = True


def configure(*, json_lines: bool) -> None:
    """
    Select the output form.

    json_lines=True  -> one JSON object per line (default)
    json_lines=False -> "EVENT_TYPE key=value ..." for terminal use
    """
    global _json_lines  # pylint: disable=global-statement
    _json_lines = json_lines


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _format_human(event: Mapping[str, Any]) -> str:
    head = str(event.get("event_type", "EVENT"))
    fields = " ".join(
        f"{k}={v}"
        for k, v in event.items()
        if k not in ("event_type", "ts_ms") and v is not None
    )
    return f"{head} {fields}".rstrip()


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single event line.

    The caller supplies event_type and any context (session_id, ...).
    ts_ms is filled in when absent.

    This function:
    - Serializes to JSON (or the human form, see configure())
    - Writes exactly one line
    - Flushes immediately
    - Never raises
    """
    if "ts_ms" not in event:
        event = {"ts_ms": _now_ms(), **event}

    if not _json_lines:
        _print(_format_human(event))
        return

    try:
        line = json.dumps(event, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        # Logging must never crash the client
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)
