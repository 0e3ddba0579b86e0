"""
JSONL event logger.

- One JSON object per line
- Output to stdout
- No buffering, no batching
- Level threshold applied before serialization
- Never raises
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Callable, Mapping


_LEVELS: dict[str, int] = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
}


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

_threshold: int = _LEVELS["INFO"]
_enabled: bool = True


def configure_logging(*, level: str = "INFO", enabled: bool = True) -> None:
    """
    Set the minimum level and the on/off switch.

    Unknown level names fall back to INFO.
    """
    global _threshold, _enabled  # pylint: disable=global-statement
    _threshold = _LEVELS.get(level.upper(), _LEVELS["INFO"])
    _enabled = enabled


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single JSONL event to stdout.

    The caller supplies the event dict (event_type, session_id, ...).
    ts_ms is filled in when missing. An optional "level" key
    (DEBUG/INFO/WARNING/ERROR) defaults to INFO.
    """
    if not _enabled:
        return

    level = str(event.get("level", "INFO")).upper()
    if _LEVELS.get(level, _LEVELS["INFO"]) < _threshold:
        return

    record: dict[str, Any] = dict(event)
    record.setdefault("ts_ms", time.time_ns() // 1_000_000)

    try:
        line = json.dumps(record, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        # logging must never crash the client
        fallback: dict[str, Any] = {
            "ts_ms": record.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)
