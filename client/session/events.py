"""
Event definitions for the session reducer.

Rules:
- Events describe facts that have occurred (or commands the UI issued).
- Events carry data only (no behavior).
- All reducer decisions are based on these events.
- No clocks, no timers, no async, no side effects.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from errors import ErrorKind
from protocol.messages import ControlMessage


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types understood by the reducer.

    Every (state, event_type) pair must be explicitly handled
    or explicitly ignored by the reducer.
    """

    # ------------------------------------------------------------------
    # Collaborator commands
    # ------------------------------------------------------------------
    CONNECT_REQUESTED = "CONNECT_REQUESTED"
    DISCONNECT_REQUESTED = "DISCONNECT_REQUESTED"
    CAPTURE_START_REQUESTED = "CAPTURE_START_REQUESTED"
    CAPTURE_STOP_REQUESTED = "CAPTURE_STOP_REQUESTED"

    # ------------------------------------------------------------------
    # Channel lifecycle
    # ------------------------------------------------------------------
    WS_CONNECTED = "WS_CONNECTED"
    WS_DISCONNECTED = "WS_DISCONNECTED"
    SEND_FAILED = "SEND_FAILED"

    # ------------------------------------------------------------------
    # Inbound control frames
    # ------------------------------------------------------------------
    CONTROL_RECEIVED = "CONTROL_RECEIVED"

    # ------------------------------------------------------------------
    # Capture / playback outcomes
    # ------------------------------------------------------------------
    CAPTURE_FAILED = "CAPTURE_FAILED"
    PLAYBACK_COMPLETE = "PLAYBACK_COMPLETE"
    PLAYBACK_FAILED = "PLAYBACK_FAILED"

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    TURN_TIMEOUT = "TURN_TIMEOUT"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    event_type: EventType
    ts_ms: int


# =============================================================================
# Collaborator Commands
# =============================================================================

@dataclass(frozen=True)
class ConnectRequested(Event):
    """UI asked the client to connect."""


@dataclass(frozen=True)
class DisconnectRequested(Event):
    """UI asked for an explicit shutdown of the channel."""


@dataclass(frozen=True)
class CaptureStartRequested(Event):
    """UI pressed talk."""


@dataclass(frozen=True)
class CaptureStopRequested(Event):
    """UI released talk."""


# =============================================================================
# Channel Lifecycle
# =============================================================================

@dataclass(frozen=True)
class WSConnected(Event):
    """Channel opened."""


@dataclass(frozen=True)
class WSDisconnected(Event):
    """
    Channel closed.

    explicit is True only when the close followed disconnect().
    """
    reason: str | None = None
    explicit: bool = False


@dataclass(frozen=True)
class SendFailed(Event):
    """An outbound frame could not be transmitted."""
    kind: ErrorKind
    reason: str


# =============================================================================
# Inbound Control
# =============================================================================

@dataclass(frozen=True)
class ControlReceived(Event):
    """A decoded inbound text frame."""
    message: ControlMessage


# =============================================================================
# Capture / Playback
# =============================================================================

@dataclass(frozen=True)
class CaptureFailed(Event):
    """
    Recording could not be started or finalized.

    kind distinguishes NOT_CONNECTED / PERMISSION_DENIED / CAPTURE_BUSY /
    CAPTURE_FAILED.
    """
    kind: ErrorKind
    reason: str


@dataclass(frozen=True)
class PlaybackComplete(Event):
    """Decoded reply audio finished playing."""
    byte_length: int


@dataclass(frozen=True)
class PlaybackFailed(Event):
    """Decoding or output of reply audio failed."""
    reason: str


# =============================================================================
# Timers
# =============================================================================

@dataclass(frozen=True)
class TurnTimeout(Event):
    """No reply finished the turn within the configured timeout."""
    turn_id: int
