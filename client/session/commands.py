"""
What the session should do next: open or close the channel, drive the
microphone and speaker, notify the UI, arm timers, log.

VoiceSession executes them in the order the reducer returns them. They
are plain frozen records; nothing here touches a socket or a device.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from session.events import EventType
from session.notifications import Notification

# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """
    Canonical command types emitted by the reducer.
    """

    # Channel
    OPEN_CONNECTION = "OPEN_CONNECTION"
    CLOSE_CONNECTION = "CLOSE_CONNECTION"

    # Capture
    BEGIN_CAPTURE = "BEGIN_CAPTURE"
    FINISH_CAPTURE = "FINISH_CAPTURE"
    ABANDON_CAPTURE = "ABANDON_CAPTURE"

    # Playback
    BEGIN_PLAYBACK = "BEGIN_PLAYBACK"
    COMPLETE_PLAYBACK = "COMPLETE_PLAYBACK"
    ABANDON_PLAYBACK = "ABANDON_PLAYBACK"

    # Collaborator
    NOTIFY = "NOTIFY"

    # Timers
    START_TIMER = "START_TIMER"
    CANCEL_TIMER = "CANCEL_TIMER"

    # Observability
    LOG_EVENT = "LOG_EVENT"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Channel Commands
# =============================================================================

@dataclass(frozen=True)
class OpenConnection(Command):
    """Open the duplex channel (idempotent in the connection manager)."""
    command_type: CommandType = CommandType.OPEN_CONNECTION


@dataclass(frozen=True)
class CloseConnection(Command):
    """Explicit shutdown; suppresses reconnection."""
    command_type: CommandType = CommandType.CLOSE_CONNECTION


# =============================================================================
# Capture Commands
# =============================================================================

@dataclass(frozen=True)
class BeginCapture(Command):
    """Request permission and start recording."""
    turn_id: int
    command_type: CommandType = CommandType.BEGIN_CAPTURE


@dataclass(frozen=True)
class FinishCapture(Command):
    """
    Finalize the recording, send it as one binary frame, then send
    end_stream.
    """
    turn_id: int
    command_type: CommandType = CommandType.FINISH_CAPTURE


@dataclass(frozen=True)
class AbandonCapture(Command):
    """Stop and discard the recording; nothing is transmitted."""
    reason: str
    command_type: CommandType = CommandType.ABANDON_CAPTURE


# =============================================================================
# Playback Commands
# =============================================================================

@dataclass(frozen=True)
class BeginPlayback(Command):
    """Open a new inbound utterance window (discarding unplayed chunks)."""
    command_type: CommandType = CommandType.BEGIN_PLAYBACK


@dataclass(frozen=True)
class CompletePlayback(Command):
    """Reassemble the utterance and hand it to the audio output."""
    command_type: CommandType = CommandType.COMPLETE_PLAYBACK


@dataclass(frozen=True)
class AbandonPlayback(Command):
    """Drop buffered chunks and stop any active output."""
    reason: str
    command_type: CommandType = CommandType.ABANDON_PLAYBACK


# =============================================================================
# Collaborator Commands
# =============================================================================

@dataclass(frozen=True)
class Notify(Command):
    """Publish a collaborator-facing event."""
    notification: Notification
    command_type: CommandType = CommandType.NOTIFY


# =============================================================================
# Timer Commands
# =============================================================================

@dataclass(frozen=True)
class StartTimer(Command):
    """
    Start (or replace) a named timer.

    On expiration, the runtime injects the event named by
    timeout_event_type.
    """
    timer_id: str
    duration_ms: int
    timeout_event_type: EventType
    command_type: CommandType = CommandType.START_TIMER


@dataclass(frozen=True)
class CancelTimer(Command):
    """Cancel a previously scheduled timer (idempotent)."""
    timer_id: str
    command_type: CommandType = CommandType.CANCEL_TIMER


# =============================================================================
# Observability Commands
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Request to emit a structured observability event."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT
