"""
Text frame codec for the voice channel.

Inbound text frames are JSON objects tagged by "type":

    {"type": "transcript", "text": "hello", "language": "en", "confidence": 0.9}
    {"type": "response", "text": "hi there", "language": "en"}
    {"type": "audio_start"}
    {"type": "audio_end"}
    {"type": "error", "message": "..."}

Outbound, the protocol needs exactly one control frame per utterance:

    {"type": "end_stream"}

Binary frames never pass through this module; the transport routes them
to the playback assembler before any decoding happens.

decode() never raises: anything it cannot understand becomes an
ErrorMessage(malformed=True).
"""

from __future__ import annotations

import json
from typing import Any

from constants import (
    DEFAULT_CONFIDENCE,
    DEFAULT_LANGUAGE,
    DEFAULT_SERVER_ERROR_MESSAGE,
)
from errors import MalformedMessage
from protocol.messages import (
    AudioEnd,
    AudioStart,
    ControlMessage,
    EndStream,
    ErrorMessage,
    MessageType,
    Response,
    Transcript,
)


# -------------------------
# Field helpers
# -------------------------

def _str_field(data: dict[str, Any], key: str, default: str | None = None) -> str:
    value = data.get(key, default)
    if value is None:
        raise MalformedMessage(f"missing field '{key}'")
    if not isinstance(value, str):
        raise MalformedMessage(f"field '{key}' must be a string")
    return value


def _float_field(data: dict[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedMessage(f"field '{key}' must be a number")
    return float(value)


def _parse(text: str) -> ControlMessage:
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise MalformedMessage(f"invalid JSON: {e}") from e
    except RecursionError as e:
        raise MalformedMessage("invalid JSON: nesting too deep") from e

    if not isinstance(data, dict):
        raise MalformedMessage("payload is not a JSON object")

    raw_type = data.get("type")
    try:
        msg_type = MessageType(raw_type)
    except ValueError as e:
        raise MalformedMessage(f"unknown message type: {raw_type!r}") from e

    if msg_type is MessageType.TRANSCRIPT:
        return Transcript(
            text=_str_field(data, "text"),
            language=_str_field(data, "language", DEFAULT_LANGUAGE),
            confidence=_float_field(data, "confidence", DEFAULT_CONFIDENCE),
        )

    if msg_type is MessageType.RESPONSE:
        return Response(
            text=_str_field(data, "text"),
            language=_str_field(data, "language", DEFAULT_LANGUAGE),
        )

    if msg_type is MessageType.AUDIO_START:
        return AudioStart()

    if msg_type is MessageType.AUDIO_END:
        return AudioEnd()

    if msg_type is MessageType.ERROR:
        return ErrorMessage(
            message=_str_field(data, "message", DEFAULT_SERVER_ERROR_MESSAGE),
        )

    # end_stream is client -> server only
    raise MalformedMessage(f"unexpected inbound message type: {msg_type.value}")


# -------------------------
# Public API
# -------------------------

def decode(text: str) -> ControlMessage:
    """
    Decode one inbound text frame.

    Pure function; never raises.
    """
    try:
        return _parse(text)
    except MalformedMessage as e:
        return ErrorMessage(message=f"malformed message: {e}", malformed=True)


def encode(message: ControlMessage) -> str:
    """
    Encode a control message to its wire text.

    Raises:
        ValueError for a message type with no wire form.
    """
    payload: dict[str, Any] = {"type": message.message_type.value}

    if isinstance(message, Transcript):
        payload.update(
            text=message.text,
            language=message.language,
            confidence=message.confidence,
        )
    elif isinstance(message, Response):
        payload.update(text=message.text, language=message.language)
    elif isinstance(message, ErrorMessage):
        payload["message"] = message.message
    elif not isinstance(message, (AudioStart, AudioEnd, EndStream)):
        raise ValueError(f"cannot encode {type(message).__name__}")

    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
