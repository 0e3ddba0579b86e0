"""
Collaborator-facing events and the hub that delivers them.

The UI registers listeners with EventHub.subscribe() and receives typed
Notification objects. Listeners may be plain functions or coroutine
functions. A failing listener is logged and skipped; it never affects the
session or the other listeners.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Union

from errors import ErrorKind
from observability.logger import log_event
from session.state import SessionState


class NotificationType(str, Enum):
    """Discriminant for collaborator events."""

    CONNECTION_CHANGED = "connection_changed"
    STATE_CHANGED = "state_changed"
    TRANSCRIPT = "transcript"
    RESPONSE = "response"
    PLAYBACK_STARTED = "playback_started"
    PLAYBACK_ENDED = "playback_ended"
    PLAYBACK_COMPLETE = "playback_complete"
    ERROR = "error"


class Notification:
    """Base collaborator event."""

    notification_type: NotificationType


@dataclass(frozen=True)
class ConnectionChanged(Notification):
    connected: bool
    notification_type: NotificationType = NotificationType.CONNECTION_CHANGED


@dataclass(frozen=True)
class StateChanged(Notification):
    previous: SessionState
    current: SessionState
    notification_type: NotificationType = NotificationType.STATE_CHANGED


@dataclass(frozen=True)
class TranscriptReceived(Notification):
    text: str
    language: str
    confidence: float
    notification_type: NotificationType = NotificationType.TRANSCRIPT


@dataclass(frozen=True)
class ResponseReceived(Notification):
    text: str
    language: str
    notification_type: NotificationType = NotificationType.RESPONSE


@dataclass(frozen=True)
class PlaybackStarted(Notification):
    notification_type: NotificationType = NotificationType.PLAYBACK_STARTED


@dataclass(frozen=True)
class PlaybackEnded(Notification):
    """Reply audio fully received and handed to the output."""
    notification_type: NotificationType = NotificationType.PLAYBACK_ENDED


@dataclass(frozen=True)
class PlaybackFinished(Notification):
    """The output finished playing the decoded reply."""
    byte_length: int
    notification_type: NotificationType = NotificationType.PLAYBACK_COMPLETE


@dataclass(frozen=True)
class ErrorRaised(Notification):
    kind: ErrorKind
    message: str
    notification_type: NotificationType = NotificationType.ERROR


Listener = Callable[[Notification], Union[Awaitable[None], None]]


class EventHub:
    """
    Observer registry for one session.

    Delivery order is subscription order. close() drops every listener;
    later publishes are no-ops.
    """

    def __init__(self, *, session_id: str | None = None) -> None:
        self._listeners: list[Listener] = []
        self._session_id = session_id
        self._closed = False

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener. Returns a function that unsubscribes it.
        """
        if self._closed:
            raise RuntimeError("EventHub is closed")
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def __len__(self) -> int:
        return len(self._listeners)

    def close(self) -> None:
        self._listeners.clear()
        self._closed = True

    async def publish(self, notification: Notification) -> None:
        # Copy so listeners may unsubscribe during delivery
        for listener in tuple(self._listeners):
            try:
                result: Any = listener(notification)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "level": "WARNING",
                    "event_type": "LISTENER_FAILED",
                    "session_id": self._session_id,
                    "notification_type": notification.notification_type.value,
                    "exception": type(exc).__name__,
                    "message": str(exc),
                })
