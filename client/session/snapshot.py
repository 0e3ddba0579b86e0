"""
Authoritative session snapshot.

Rules:
- Pure data model; everything the reducer may read lives here.
- Replaced wholesale on every event (dataclasses.replace), never mutated.
"""
from __future__ import annotations

from dataclasses import dataclass

from constants import DEFAULT_TURN_TIMEOUT_MS
from session.state import SessionState


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable snapshot of all session-owned state."""

    state: SessionState = SessionState.IDLE

    # Mirrors ConnectionState.CONNECTED; the manager owns the real value.
    connected: bool = False

    # Incremented each time a recording starts. Used for timer gating.
    turn_id: int = 0

    last_error: str | None = None

    # None disables the per-turn timeout.
    turn_timeout_ms: int | None = DEFAULT_TURN_TIMEOUT_MS
