"""
Runtime execution shell for one voice client session.

Responsibilities:
- Own the authoritative session snapshot
- Call the pure reducer under a single lock
- Execute commands with side effects (channel, capture, playback, timers)
- Publish collaborator notifications
- Convert timer expiry into events

Non-responsibilities:
- No transition decisions (reducer only)
- No wire encoding (frame codec)
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable
from uuid import uuid4

from audio.base import AudioOutput, Microphone, PermissionGate
from audio.capture import AudioCaptureController
from audio.playback import PlaybackAssembler
from config import ClientConfig
from connection.connection_status import ConnectionState
from connection.manager import ConnectionManager, ConnectFn, SleepFn
from constants import CaptureFormat, ms_to_seconds
from errors import ErrorKind, VoiceClientError
from observability.logger import log_event
from observability.metrics import LatencyMeter, timed
from protocol.messages import END_STREAM, AudioStart, Response, Transcript
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
    TurnTimeout,
)
from session.notifications import EventHub, Listener
from session.reducer import reduce
from session.snapshot import SessionSnapshot
from session.state import SessionState


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _new_session_id() -> str:
    return f"sess_{uuid4().hex[:12]}"


# Inbound messages that count as the first sign of a reply
_REPLY_MESSAGES = (Transcript, Response, AudioStart)


class VoiceSession:
    """
    Runtime boundary for one voice interaction.

    Guarantees:
    - Reducer is called exactly once per incoming event
    - The snapshot is swapped under one lock (single mutation point)
    - All side effects run after the swap, in reducer-emitted order
    - Timers re-enter handle_event() (single event entry point)

    The channel, capture and playback components are attached after
    construction because each of them emits events back into
    handle_event(). Use create_session() to get a wired instance.
    """

    def __init__(
        self,
        *,
        initial_snapshot: SessionSnapshot | None = None,
        session_id: str | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.session_id = session_id or _new_session_id()
        self._snapshot = initial_snapshot or SessionSnapshot()
        self._lock = asyncio.Lock()
        self._hub = EventHub(session_id=self.session_id)
        self._sleep = sleep
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._first_reply = LatencyMeter(
            "end_stream_to_first_reply_ms",
            session_id=self.session_id,
        )

        self._connection: ConnectionManager | None = None
        self._capture: AudioCaptureController | None = None
        self._playback: PlaybackAssembler | None = None

        # Set once the latest BeginCapture has settled (started or failed)
        self._capture_started = asyncio.Event()
        self._capture_started.set()

    def attach(
        self,
        *,
        connection: ConnectionManager,
        capture: AudioCaptureController,
        playback: PlaybackAssembler,
    ) -> None:
        self._connection = connection
        self._capture = capture
        self._playback = playback

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> SessionSnapshot:
        """Current immutable snapshot. Read-only for callers."""
        return self._snapshot

    @property
    def state(self) -> SessionState:
        return self._snapshot.state

    @property
    def last_error(self) -> str | None:
        """Reason of the most recent failure; cleared when a turn starts."""
        return self._snapshot.last_error

    @property
    def connection_state(self) -> ConnectionState:
        if self._connection is None:
            return ConnectionState.DISCONNECTED
        return self._connection.state

    # ------------------------------------------------------------------
    # Collaborator commands
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        """
        Open the channel. Suspends until open or failure; on failure the
        connection manager keeps retrying in the background.
        """
        await self.handle_event(
            ConnectRequested(event_type=EventType.CONNECT_REQUESTED, ts_ms=_now_ms())
        )
        return self._snapshot.connected

    async def disconnect(self) -> None:
        await self.handle_event(
            DisconnectRequested(event_type=EventType.DISCONNECT_REQUESTED, ts_ms=_now_ms())
        )

    async def start_capture(self) -> bool:
        """
        Press to talk. Returns True if recording is running.

        Rejections and failures are reported through an error
        notification, never raised.
        """
        await self.handle_event(
            CaptureStartRequested(
                event_type=EventType.CAPTURE_START_REQUESTED,
                ts_ms=_now_ms(),
            )
        )
        return self._snapshot.state is SessionState.RECORDING

    async def stop_capture(self) -> None:
        """Release to talk. Suspends until the recording is finalized and sent."""
        await self.handle_event(
            CaptureStopRequested(
                event_type=EventType.CAPTURE_STOP_REQUESTED,
                ts_ms=_now_ms(),
            )
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a collaborator listener. Returns its unsubscribe function."""
        return self._hub.subscribe(listener)

    async def close(self) -> None:
        """
        Tear the session down: disconnect, stop timers, drop listeners.
        """
        await self.disconnect()

        for timer_id in list(self._timers.keys()):
            self._cancel_timer(timer_id)

        if self._playback is not None:
            await self._playback.wait_idle()

        self._hub.close()
        self._log("SESSION_CLOSED", last_error=self.last_error)

    # ------------------------------------------------------------------
    # Event entry point
    # ------------------------------------------------------------------

    async def handle_event(self, event: Event) -> None:
        """
        Process a single event through the reducer.

        All event sources converge here: collaborator commands, the
        connection manager, the playback assembler and timers.
        """
        if (
            isinstance(event, ControlReceived)
            and isinstance(event.message, _REPLY_MESSAGES)
            and self._first_reply.armed
        ):
            self._first_reply.stop({"first": event.message.message_type.value})

        async with self._lock:
            new_snapshot, commands = reduce(self._snapshot, event)
            self._snapshot = new_snapshot

        for cmd in commands:
            await self._execute_command(cmd)

    # ------------------------------------------------------------------
    # Command execution (side effects)
    # ------------------------------------------------------------------

    async def _execute_command(self, cmd: Command) -> None:
        """Execute a single command with side effects."""

        if isinstance(cmd, LogEvent):
            log_event({
                **cmd.event,
                "session_id": self.session_id,
                "connection_state": self.connection_state.value,
            })

        elif isinstance(cmd, Notify):
            await self._hub.publish(cmd.notification)

        elif isinstance(cmd, OpenConnection):
            assert self._connection is not None, "connection manager missing"
            await self._connection.connect()

        elif isinstance(cmd, CloseConnection):
            assert self._connection is not None, "connection manager missing"
            self._first_reply.reset()
            await self._connection.disconnect()

        elif isinstance(cmd, BeginCapture):
            await self._begin_capture(cmd.turn_id)

        elif isinstance(cmd, FinishCapture):
            await self._finish_capture(cmd.turn_id)

        elif isinstance(cmd, AbandonCapture):
            assert self._capture is not None, "capture controller missing"
            await self._capture.abandon(cmd.reason)

        elif isinstance(cmd, BeginPlayback):
            assert self._playback is not None, "playback assembler missing"
            self._playback.on_audio_start()

        elif isinstance(cmd, CompletePlayback):
            assert self._playback is not None, "playback assembler missing"
            self._playback.on_audio_end()

        elif isinstance(cmd, AbandonPlayback):
            assert self._playback is not None, "playback assembler missing"
            self._playback.abandon(cmd.reason)

        elif isinstance(cmd, StartTimer):
            self._start_timer(
                timer_id=cmd.timer_id,
                duration_ms=cmd.duration_ms,
                timeout_event_type=cmd.timeout_event_type,
            )

        elif isinstance(cmd, CancelTimer):
            if self._cancel_timer(cmd.timer_id):
                self._log("TIMER_CANCELLED", timer_id=cmd.timer_id)

        else:
            self._log(
                "COMMAND_UNSUPPORTED",
                level="ERROR",
                command_type=type(cmd).__name__,
            )

    async def _begin_capture(self, turn_id: int) -> None:
        assert self._capture is not None, "capture controller missing"

        started = asyncio.Event()
        self._capture_started = started
        try:
            try:
                await self._capture.start_capture()
            except VoiceClientError as e:
                await self._capture_failed(e.kind, str(e))
                return

            # The turn may have ended while permission was being requested.
            # AWAITING_RESPONSE means stop_capture() is waiting for this start.
            snap = self._snapshot
            if snap.turn_id != turn_id or snap.state not in (
                SessionState.RECORDING,
                SessionState.AWAITING_RESPONSE,
            ):
                await self._capture.abandon("turn_ended_during_start")
        finally:
            started.set()

    async def _finish_capture(self, turn_id: int) -> None:
        assert self._capture is not None, "capture controller missing"
        assert self._connection is not None, "connection manager missing"

        if not self._capture_started.is_set():
            self._log("FINISH_WAITING_FOR_START", level="DEBUG", turn_id=turn_id)
            await self._capture_started.wait()

        snap = self._snapshot
        if snap.state is not SessionState.AWAITING_RESPONSE or snap.turn_id != turn_id:
            # the start failed or the turn was abandoned; already reported
            return

        handle = self._capture.handle
        if handle is None:
            self._log("FINISH_WITHOUT_RECORDING", level="WARNING", turn_id=turn_id)
            await self._capture_failed(
                ErrorKind.CAPTURE_FAILED,
                "Recording stopped before it started",
            )
            return

        try:
            with timed(
                "capture_finalize",
                session_id=self.session_id,
                details={"turn_id": turn_id},
            ):
                data = await self._capture.stop_capture(handle)
        except VoiceClientError as e:
            await self._capture_failed(e.kind, str(e))
            return

        snap = self._snapshot
        if snap.state is not SessionState.AWAITING_RESPONSE or snap.turn_id != turn_id:
            self._log(
                "RECORDING_DISCARDED",
                turn_id=turn_id,
                state=snap.state.value,
                bytes=len(data),
            )
            return

        if not await self._connection.send_audio(data):
            return
        if not await self._connection.send_control(END_STREAM):
            return

        self._first_reply.start()
        self._log("UTTERANCE_SENT", turn_id=turn_id, bytes=len(data))

    # ------------------------------------------------------------------
    # Timer management
    # ------------------------------------------------------------------

    def _start_timer(
        self,
        *,
        timer_id: str,
        duration_ms: int,
        timeout_event_type: EventType,
    ) -> None:
        """
        Start or replace a timer that emits a timeout event.

        The turn id is captured when the timer starts so that expiry
        from an earlier turn is recognized as stale.
        """
        self._cancel_timer(timer_id)
        turn_id = self._snapshot.turn_id

        async def _timer_task() -> None:
            try:
                await self._sleep(ms_to_seconds(duration_ms))
            except asyncio.CancelledError:
                return

            self._timers.pop(timer_id, None)
            await self.handle_event(
                self._construct_timeout_event(
                    timeout_event_type=timeout_event_type,
                    turn_id=turn_id,
                )
            )

        self._timers[timer_id] = asyncio.create_task(_timer_task())
        self._log("TIMER_STARTED", timer_id=timer_id, duration_ms=duration_ms)

    def _cancel_timer(self, timer_id: str) -> bool:
        """
        Cancel an in-flight timer if it exists. Idempotent.

        Returns True if a running timer was cancelled.
        """
        task = self._timers.pop(timer_id, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            return True
        return False

    @staticmethod
    def _construct_timeout_event(
        *,
        timeout_event_type: EventType,
        turn_id: int,
    ) -> Event:
        if timeout_event_type is EventType.TURN_TIMEOUT:
            return TurnTimeout(
                event_type=EventType.TURN_TIMEOUT,
                ts_ms=_now_ms(),
                turn_id=turn_id,
            )

        # Unreachable unless the reducer emits a new timer kind
        raise ValueError(f"Unknown timeout event type: {timeout_event_type}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _capture_failed(self, kind: ErrorKind, reason: str) -> None:
        await self.handle_event(
            CaptureFailed(
                event_type=EventType.CAPTURE_FAILED,
                ts_ms=_now_ms(),
                kind=kind,
                reason=reason,
            )
        )

    def _log(self, event_type: str, **fields: Any) -> None:
        log_event({
            "ts_ms": _now_ms(),
            "event_type": event_type,
            "session_id": self.session_id,
            "state": self._snapshot.state.value,
            **fields,
        })


# ---------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------

def create_session(
    config: ClientConfig,
    *,
    microphone: Microphone,
    permissions: PermissionGate,
    output: AudioOutput,
    connect_fn: ConnectFn | None = None,
    sleep: SleepFn = asyncio.sleep,
    session_id: str | None = None,
) -> VoiceSession:
    """
    Build one VoiceSession with its own channel, capture and playback.

    Nothing is shared between sessions. connect_fn and sleep are passed
    through for tests.
    """
    session = VoiceSession(
        initial_snapshot=SessionSnapshot(turn_timeout_ms=config.turn_timeout_ms),
        session_id=session_id,
        sleep=sleep,
    )

    playback = PlaybackAssembler(
        output=output,
        emit_event=session.handle_event,
        session_id=session.session_id,
    )
    connection = ConnectionManager(
        url=config.ws_url,
        emit_event=session.handle_event,
        on_audio_chunk=playback.on_chunk,
        reconnect_delay_ms=config.reconnect_delay_ms,
        connect_fn=connect_fn,
        sleep=sleep,
        session_id=session.session_id,
    )
    capture = AudioCaptureController(
        microphone=microphone,
        permissions=permissions,
        is_connected=lambda: connection.is_connected,
        capture_format=CaptureFormat(sample_rate_hz=config.sample_rate_hz),
        session_id=session.session_id,
    )

    session.attach(connection=connection, capture=capture, playback=playback)
    return session
