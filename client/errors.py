"""
Client error taxonomy.

Every failure the core can observe maps to exactly one ErrorKind. Exceptions
are raised inside components; the session converts them into error events
for the collaborator. Nothing here is fatal to the process.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """
    Discriminant carried on collaborator-facing error events.
    """

    NOT_CONNECTED = "not_connected"
    PERMISSION_DENIED = "permission_denied"
    TRANSPORT_ERROR = "transport_error"
    MALFORMED_MESSAGE = "malformed_message"
    PLAYBACK_FAILURE = "playback_failure"

    CAPTURE_BUSY = "capture_busy"
    CAPTURE_FAILED = "capture_failed"
    SERVER_ERROR = "server_error"
    TURN_TIMEOUT = "turn_timeout"


# -------------------------
# Exceptions
# -------------------------

class VoiceClientError(Exception):
    """Base class for all client-core errors."""

    kind: ErrorKind = ErrorKind.TRANSPORT_ERROR


class NotConnected(VoiceClientError):
    """
    Raised when a command needs the channel but the channel is down.

    Surfaced as an error event; never crashes the caller.
    """

    kind = ErrorKind.NOT_CONNECTED


class PermissionDenied(VoiceClientError):
    """Raised when microphone access is refused."""

    kind = ErrorKind.PERMISSION_DENIED


class TransportError(VoiceClientError):
    """
    Channel-level failure (connect refused, socket dropped, send failed).

    Recovered by the fixed-delay reconnection loop.
    """

    kind = ErrorKind.TRANSPORT_ERROR


class MalformedMessage(VoiceClientError):
    """
    Raised internally by the frame codec when an inbound text frame cannot
    be decoded. The codec converts it into an Error control message.
    """

    kind = ErrorKind.MALFORMED_MESSAGE


class PlaybackFailure(VoiceClientError):
    """Decoding or audio output failed for a reassembled reply."""

    kind = ErrorKind.PLAYBACK_FAILURE


class CaptureBusy(VoiceClientError):
    """A recording is already outstanding."""

    kind = ErrorKind.CAPTURE_BUSY


class CaptureFailed(VoiceClientError):
    """The platform failed to start, finalize or encode a recording."""

    kind = ErrorKind.CAPTURE_FAILED


USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.NOT_CONNECTED: "Not connected to voice server",
    ErrorKind.PERMISSION_DENIED: "Microphone permission denied",
    ErrorKind.TRANSPORT_ERROR: "Connection error",
    ErrorKind.MALFORMED_MESSAGE: "Received an invalid message",
    ErrorKind.PLAYBACK_FAILURE: "Audio playback failed",
    ErrorKind.CAPTURE_BUSY: "A recording is already in progress",
    ErrorKind.CAPTURE_FAILED: "Failed to process recording",
    ErrorKind.SERVER_ERROR: "Voice server error",
    ErrorKind.TURN_TIMEOUT: "Voice server did not respond",
}


def user_message(kind: ErrorKind, detail: str | None = None) -> str:
    """Human-readable message for an error event."""
    if detail:
        return detail
    return USER_MESSAGES.get(kind, kind.value)
