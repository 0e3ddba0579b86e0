"""
Control message definitions (text frames on the voice channel).

Rules:
- Messages are immutable value objects.
- message_type is an explicit discriminant, never inferred from the class.
- No behavior, no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from constants import (
    DEFAULT_CONFIDENCE,
    DEFAULT_LANGUAGE,
    MSG_AUDIO_END,
    MSG_AUDIO_START,
    MSG_END_STREAM,
    MSG_ERROR,
    MSG_RESPONSE,
    MSG_TRANSCRIPT,
)


class MessageType(str, Enum):
    """Wire `type` tags. Values are the exact strings on the wire."""

    TRANSCRIPT = MSG_TRANSCRIPT
    RESPONSE = MSG_RESPONSE
    AUDIO_START = MSG_AUDIO_START
    AUDIO_END = MSG_AUDIO_END
    ERROR = MSG_ERROR
    END_STREAM = MSG_END_STREAM


class ControlMessage:
    """
    Base control message.

    Not a dataclass itself so that every variant can declare its own
    message_type default after its payload fields.
    """

    message_type: MessageType


# =============================================================================
# Inbound (server -> client)
# =============================================================================

@dataclass(frozen=True)
class Transcript(ControlMessage):
    """Server recognized the user's utterance."""
    text: str
    language: str = DEFAULT_LANGUAGE
    confidence: float = DEFAULT_CONFIDENCE
    message_type: MessageType = MessageType.TRANSCRIPT


@dataclass(frozen=True)
class Response(ControlMessage):
    """Assistant reply text."""
    text: str
    language: str = DEFAULT_LANGUAGE
    message_type: MessageType = MessageType.RESPONSE


@dataclass(frozen=True)
class AudioStart(ControlMessage):
    """Binary reply chunks follow until AudioEnd."""
    message_type: MessageType = MessageType.AUDIO_START


@dataclass(frozen=True)
class AudioEnd(ControlMessage):
    """Reply audio is complete."""
    message_type: MessageType = MessageType.AUDIO_END


@dataclass(frozen=True)
class ErrorMessage(ControlMessage):
    """
    Server-reported error, or a locally decoded malformed frame.

    malformed is True only when the codec produced this message because
    the inbound payload could not be decoded.
    """
    message: str
    malformed: bool = False
    message_type: MessageType = MessageType.ERROR


# =============================================================================
# Outbound (client -> server)
# =============================================================================

@dataclass(frozen=True)
class EndStream(ControlMessage):
    """Marks the end of the utterance; sent right after the audio frame."""
    message_type: MessageType = MessageType.END_STREAM


END_STREAM = EndStream()
