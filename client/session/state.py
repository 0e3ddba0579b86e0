"""
Authoritative session state enumeration.

Rules:
- This enum defines ONLY the turn states.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively in the reducer.
"""

from __future__ import annotations

from enum import Enum


class SessionState(str, Enum):
    """
    Turn-level control states for one voice interaction.

    These states represent what the session is doing, NOT the channel
    status (see connection.connection_status).
    """

    IDLE = "IDLE"
    AWAITING_CONNECTION = "AWAITING_CONNECTION"
    RECORDING = "RECORDING"
    AWAITING_RESPONSE = "AWAITING_RESPONSE"
    PLAYING = "PLAYING"
