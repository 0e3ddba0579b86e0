"""
Pure session reducer.

(snapshot, event) -> (new_snapshot, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (state, event) pair is handled or explicitly ignored (logged).
"""

# Reducer owns timer semantics; runtime must not cancel timers implicitly.

from __future__ import annotations

from dataclasses import replace
from typing import Any

from errors import ErrorKind, user_message
from protocol.messages import (
    AudioEnd,
    AudioStart,
    ErrorMessage,
    Response,
    Transcript,
)
from session.commands import (
    AbandonCapture,
    AbandonPlayback,
    BeginCapture,
    BeginPlayback,
    CancelTimer,
    CloseConnection,
    Command,
    CompletePlayback,
    FinishCapture,
    LogEvent,
    Notify,
    OpenConnection,
    StartTimer,
)
from session.events import (
    CaptureFailed,
    CaptureStartRequested,
    CaptureStopRequested,
    ConnectRequested,
    ControlReceived,
    DisconnectRequested,
    Event,
    EventType,
    PlaybackComplete,
    PlaybackFailed,
    SendFailed,
    TurnTimeout,
    WSConnected,
    WSDisconnected,
)
from session.notifications import (
    ConnectionChanged,
    ErrorRaised,
    PlaybackEnded,
    PlaybackFinished,
    PlaybackStarted,
    ResponseReceived,
    StateChanged,
    TranscriptReceived,
)
from session.snapshot import SessionSnapshot
from session.state import SessionState


# =============================================================================
# Timer IDs
# =============================================================================

TIMER_TURN = "turn_timeout"

# States in which a turn is waiting on the server
_TURN_IN_FLIGHT = (SessionState.AWAITING_RESPONSE, SessionState.PLAYING)


# =============================================================================
# Small helpers
# =============================================================================

Result = tuple[SessionSnapshot, tuple[Command, ...]]


def _log(
    snapshot: SessionSnapshot,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
) -> LogEvent:
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "state": snapshot.state.value,
            "connected": snapshot.connected,
            "turn_id": snapshot.turn_id,
            "event_type": event.event_type.value,
            "decision": decision,
            "details": details or {},
        }
    )


def _logs_last(commands: tuple[Command, ...]) -> tuple[Command, ...]:
    non_logs: list[Command] = []
    logs: list[Command] = []
    state_change_logs: list[Command] = []

    for command in commands:
        if isinstance(command, LogEvent):
            if command.event.get("decision") == "state_changed":
                state_change_logs.append(command)
            else:
                logs.append(command)
        else:
            non_logs.append(command)

    return tuple(non_logs + logs + state_change_logs)


def _ignore(snapshot: SessionSnapshot, event: Event, reason: str) -> Result:
    return snapshot, (_log(snapshot, event, "ignore", {"reason": reason}),)


def _error(kind: ErrorKind, detail: str | None = None) -> Notify:
    return Notify(notification=ErrorRaised(kind=kind, message=user_message(kind, detail)))


def _transition(
    old: SessionSnapshot,
    new: SessionSnapshot,
    event: Event,
    source: str,
    commands: tuple[Command, ...] = (),
) -> Result:
    """
    Finish a decision.

    When the state changed, a StateChanged notification precedes the
    decision's own commands (some of them re-enter the session) and a
    state_changed log closes the batch.
    """
    if new.state is old.state:
        return new, _logs_last(commands)

    return new, _logs_last(
        (Notify(notification=StateChanged(previous=old.state, current=new.state)),)
        + commands
        + (
            _log(
                new,
                event,
                "state_changed",
                {
                    "from_state": old.state.value,
                    "to_state": new.state.value,
                    "source": source,
                },
            ),
        )
    )


def _abandon_turn(reason: str) -> tuple[Command, ...]:
    return (
        AbandonCapture(reason=reason),
        AbandonPlayback(reason=reason),
        CancelTimer(timer_id=TIMER_TURN),
    )


# =============================================================================
# Reducer
# =============================================================================

def reduce(snapshot: SessionSnapshot, event: Event) -> Result:
    """
    Apply one event to the session snapshot.

    Returns the new snapshot and the side-effect commands to run, in order.
    """
    if isinstance(event, ConnectRequested):
        return _on_connect_requested(snapshot, event)

    if isinstance(event, DisconnectRequested):
        return _on_disconnect_requested(snapshot, event)

    if isinstance(event, WSConnected):
        return _on_ws_connected(snapshot, event)

    if isinstance(event, WSDisconnected):
        return _on_ws_disconnected(snapshot, event)

    if isinstance(event, CaptureStartRequested):
        return _on_capture_start(snapshot, event)

    if isinstance(event, CaptureStopRequested):
        return _on_capture_stop(snapshot, event)

    if isinstance(event, CaptureFailed):
        return _on_capture_failed(snapshot, event)

    if isinstance(event, SendFailed):
        return _on_send_failed(snapshot, event)

    if isinstance(event, ControlReceived):
        return _on_control(snapshot, event)

    if isinstance(event, PlaybackComplete):
        return snapshot, (
            Notify(notification=PlaybackFinished(byte_length=event.byte_length)),
            _log(snapshot, event, "playback_complete", {"bytes": event.byte_length}),
        )

    if isinstance(event, PlaybackFailed):
        # Output runs after audio_end ended its turn; never changes state
        new = replace(snapshot, last_error=event.reason)
        return new, (
            _error(ErrorKind.PLAYBACK_FAILURE, event.reason),
            _log(new, event, "playback_failed", {"reason": event.reason}),
        )

    if isinstance(event, TurnTimeout):
        return _on_turn_timeout(snapshot, event)

    return _ignore(snapshot, event, "unhandled_event")


# -----------------------------------------------------------------------------
# Collaborator commands
# -----------------------------------------------------------------------------

def _on_connect_requested(snapshot: SessionSnapshot, event: Event) -> Result:
    if snapshot.connected:
        return _ignore(snapshot, event, "already_connected")

    if snapshot.state is SessionState.AWAITING_CONNECTION:
        return _ignore(snapshot, event, "connect_in_progress")

    if snapshot.state is not SessionState.IDLE:
        return _ignore(snapshot, event, "turn_in_progress")

    new = replace(snapshot, state=SessionState.AWAITING_CONNECTION)
    return _transition(snapshot, new, event, "connect_requested", (
        OpenConnection(),
    ))


def _on_disconnect_requested(snapshot: SessionSnapshot, event: Event) -> Result:
    new = replace(snapshot, state=SessionState.IDLE)
    return _transition(snapshot, new, event, "disconnect_requested", (
        *_abandon_turn("client_disconnect"),
        CloseConnection(),
    ))


def _on_capture_start(snapshot: SessionSnapshot, event: Event) -> Result:
    # AWAITING_CONNECTION is never connected, so it reports NOT_CONNECTED
    if not snapshot.connected:
        new = replace(snapshot, last_error=ErrorKind.NOT_CONNECTED.value)
        return new, (
            _error(ErrorKind.NOT_CONNECTED),
            _log(new, event, "capture_rejected", {"reason": "not_connected"}),
        )

    if snapshot.state is not SessionState.IDLE:
        return snapshot, (
            _error(ErrorKind.CAPTURE_BUSY),
            _log(snapshot, event, "capture_rejected", {"reason": "busy"}),
        )

    turn_id = snapshot.turn_id + 1
    new = replace(
        snapshot,
        state=SessionState.RECORDING,
        turn_id=turn_id,
        last_error=None,
    )
    return _transition(snapshot, new, event, "capture_start", (
        BeginCapture(turn_id=turn_id),
    ))


def _on_capture_stop(snapshot: SessionSnapshot, event: Event) -> Result:
    if snapshot.state is not SessionState.RECORDING:
        return _ignore(snapshot, event, "not_recording")

    new = replace(snapshot, state=SessionState.AWAITING_RESPONSE)
    commands: tuple[Command, ...] = ()
    # Armed before the send so a fast reply can still cancel it
    if snapshot.turn_timeout_ms is not None:
        commands += (
            StartTimer(
                timer_id=TIMER_TURN,
                duration_ms=snapshot.turn_timeout_ms,
                timeout_event_type=EventType.TURN_TIMEOUT,
            ),
        )
    commands += (FinishCapture(turn_id=snapshot.turn_id),)
    return _transition(snapshot, new, event, "capture_stop", commands)


def _on_capture_failed(snapshot: SessionSnapshot, event: CaptureFailed) -> Result:
    details = {"kind": event.kind.value, "reason": event.reason}

    # Start failures land in RECORDING, finalize failures in AWAITING_RESPONSE
    if snapshot.state not in (SessionState.RECORDING, SessionState.AWAITING_RESPONSE):
        return snapshot, (
            _error(event.kind, event.reason),
            _log(snapshot, event, "capture_failed_late", details),
        )

    new = replace(snapshot, state=SessionState.IDLE, last_error=event.reason)
    return _transition(snapshot, new, event, "capture_failed", (
        CancelTimer(timer_id=TIMER_TURN),
        _error(event.kind, event.reason),
        _log(new, event, "capture_failed", details),
    ))


# -----------------------------------------------------------------------------
# Channel lifecycle
# -----------------------------------------------------------------------------

def _on_ws_connected(snapshot: SessionSnapshot, event: Event) -> Result:
    if snapshot.connected:
        return _ignore(snapshot, event, "already_connected")

    new = replace(snapshot, connected=True)
    if snapshot.state is SessionState.AWAITING_CONNECTION:
        new = replace(new, state=SessionState.IDLE)

    return _transition(snapshot, new, event, "ws_connected", (
        Notify(notification=ConnectionChanged(connected=True)),
    ))


def _on_ws_disconnected(snapshot: SessionSnapshot, event: WSDisconnected) -> Result:
    if not snapshot.connected:
        return _ignore(snapshot, event, "already_disconnected")

    target = SessionState.IDLE if event.explicit else SessionState.AWAITING_CONNECTION
    new = replace(snapshot, state=target, connected=False)
    if not event.explicit:
        new = replace(new, last_error=event.reason)

    return _transition(snapshot, new, event, "ws_disconnected", (
        Notify(notification=ConnectionChanged(connected=False)),
        *_abandon_turn("channel_closed"),
        _log(new, event, "ws_disconnected", {
            "explicit": event.explicit,
            "reason": event.reason,
        }),
    ))


def _on_send_failed(snapshot: SessionSnapshot, event: SendFailed) -> Result:
    details = {"kind": event.kind.value, "reason": event.reason}

    if snapshot.state is not SessionState.AWAITING_RESPONSE:
        return snapshot, (
            _error(event.kind, event.reason),
            _log(snapshot, event, "send_failed", details),
        )

    new = replace(snapshot, state=SessionState.IDLE, last_error=event.reason)
    return _transition(snapshot, new, event, "send_failed", (
        CancelTimer(timer_id=TIMER_TURN),
        _error(event.kind, event.reason),
        _log(new, event, "send_failed", details),
    ))


# -----------------------------------------------------------------------------
# Inbound control
# -----------------------------------------------------------------------------

def _on_control(snapshot: SessionSnapshot, event: ControlReceived) -> Result:
    message = event.message

    if isinstance(message, Transcript):
        return snapshot, (
            Notify(notification=TranscriptReceived(
                text=message.text,
                language=message.language,
                confidence=message.confidence,
            )),
            _log(snapshot, event, "transcript_forwarded", {"chars": len(message.text)}),
        )

    if isinstance(message, Response):
        commands: tuple[Command, ...] = (
            Notify(notification=ResponseReceived(
                text=message.text,
                language=message.language,
            )),
            _log(snapshot, event, "response_forwarded", {"chars": len(message.text)}),
        )
        if snapshot.state is not SessionState.AWAITING_RESPONSE:
            return snapshot, commands

        new = replace(snapshot, state=SessionState.IDLE)
        return _transition(snapshot, new, event, "response", (
            CancelTimer(timer_id=TIMER_TURN),
            *commands,
        ))

    if isinstance(message, AudioStart):
        commands = (BeginPlayback(), Notify(notification=PlaybackStarted()))
        if snapshot.state is SessionState.RECORDING:
            commands = (AbandonCapture(reason="preempted_by_audio_start"),) + commands

        new = replace(snapshot, state=SessionState.PLAYING)
        return _transition(snapshot, new, event, "audio_start", commands)

    if isinstance(message, AudioEnd):
        if snapshot.state is not SessionState.PLAYING:
            return _ignore(snapshot, event, "audio_end_outside_playback")

        new = replace(snapshot, state=SessionState.IDLE)
        return _transition(snapshot, new, event, "audio_end", (
            CancelTimer(timer_id=TIMER_TURN),
            CompletePlayback(),
            Notify(notification=PlaybackEnded()),
        ))

    if isinstance(message, ErrorMessage):
        if message.malformed:
            return snapshot, (
                _log(snapshot, event, "malformed_message", {"error": message.message}),
            )

        new = replace(snapshot, state=SessionState.IDLE, last_error=message.message)
        return _transition(snapshot, new, event, "server_error", (
            *_abandon_turn("server_error"),
            _error(ErrorKind.SERVER_ERROR, message.message),
            _log(new, event, "server_error", {"message": message.message}),
        ))

    return _ignore(snapshot, event, f"unexpected_{message.message_type.value}")


# -----------------------------------------------------------------------------
# Timers
# -----------------------------------------------------------------------------

def _on_turn_timeout(snapshot: SessionSnapshot, event: TurnTimeout) -> Result:
    if event.turn_id != snapshot.turn_id:
        return _ignore(snapshot, event, "stale_turn")

    if snapshot.state not in _TURN_IN_FLIGHT:
        return _ignore(snapshot, event, "turn_not_in_flight")

    new = replace(
        snapshot,
        state=SessionState.IDLE,
        last_error=ErrorKind.TURN_TIMEOUT.value,
    )
    return _transition(snapshot, new, event, "turn_timeout", (
        AbandonPlayback(reason="turn_timeout"),
        _error(ErrorKind.TURN_TIMEOUT),
        _log(new, event, "turn_timeout", {"timeout_ms": snapshot.turn_timeout_ms}),
    ))
