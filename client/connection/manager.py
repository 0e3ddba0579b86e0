"""
Duplex channel manager for the voice service.

Core model:
- One persistent WebSocket per client, reopened transparently after any
  closure that was not requested via disconnect().
- Reconnection is a fixed RECONNECT_DELAY_MS wait followed by connect(),
  repeated forever. No backoff, no jitter, no attempt cap.
- Inbound frames are classified at the transport boundary:
    str   -> frame_codec.decode -> ControlReceived event -> session
    bytes -> on_audio_chunk (playback assembler), never decoded here
- Sends never raise. While not connected they report NOT_CONNECTED through
  a SendFailed event and return False.

Design constraints:
- Manager must not call the reducer directly; it only emits events.
- Manager must not know about capture, playback policy or turn state.
- connection-state events fire only when the connected flag actually
  changes; failed attempts are logged as TRANSPORT_ERROR.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed

from connection.connection_status import ConnectionState
from constants import (
    LOG_PAYLOAD_PREVIEW_CHARS,
    RECONNECT_DELAY_MS,
    WS_MAX_MESSAGE_BYTES,
    ms_to_seconds,
)
from errors import ErrorKind
from observability.logger import log_event
from protocol import frame_codec
from protocol.messages import ControlMessage, ErrorMessage
from session.events import (
    ControlReceived,
    Event,
    EventType,
    SendFailed,
    WSConnected,
    WSDisconnected,
)


# ---------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------

EventSink = Callable[[Event], Awaitable[None]]
ChunkSink = Callable[[bytes], None]
ConnectFn = Callable[[str], Awaitable[Any]]
SleepFn = Callable[[float], Awaitable[None]]


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


async def _default_connect(url: str) -> Any:
    return await ws_connect(url, max_size=WS_MAX_MESSAGE_BYTES)


# ---------------------------------------------------------------------
# ConnectionManager
# ---------------------------------------------------------------------

class ConnectionManager:
    """
    Owns the channel: connect, send, receive-dispatch, close, reconnect.

    connect_fn and sleep are injectable so tests can drive the
    handshake and the reconnect delay without a network or a clock.
    """

    def __init__(
        self,
        *,
        url: str,
        emit_event: EventSink,
        on_audio_chunk: ChunkSink,
        reconnect_delay_ms: int = RECONNECT_DELAY_MS,
        connect_fn: ConnectFn | None = None,
        sleep: SleepFn = asyncio.sleep,
        session_id: str | None = None,
    ) -> None:
        self._url = url
        self._emit_event = emit_event
        self._on_audio_chunk = on_audio_chunk
        self._reconnect_delay_ms = reconnect_delay_ms
        self._connect_fn = connect_fn or _default_connect
        self._sleep = sleep
        self._session_id = session_id

        self._state = ConnectionState.DISCONNECTED
        self._ws: Any = None
        self._recv_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None

        # Set by disconnect(); cleared by the next explicit connect().
        self._shutdown = False

        self.connect_attempts = 0
        self.reconnect_attempts = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def reconnect_pending(self) -> bool:
        task = self._reconnect_task
        return task is not None and not task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        """
        Open the channel. Suspends until open or failure.

        Idempotent while CONNECTED or CONNECTING. Returns True once the
        channel is open.
        """
        if self._state is not ConnectionState.DISCONNECTED:
            self._log("CONNECT_IGNORED", state=self._state.value)
            return self._state is ConnectionState.CONNECTED

        self._shutdown = False
        self._cancel_reconnect()

        self._state = ConnectionState.CONNECTING
        self.connect_attempts += 1
        self._log("WS_CONNECTING", attempt=self.connect_attempts, url=self._url)

        try:
            ws = await self._connect_fn(self._url)
        except asyncio.CancelledError:
            self._state = ConnectionState.DISCONNECTED
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._state = ConnectionState.DISCONNECTED
            self._log(
                "WS_CONNECT_FAILED",
                level="WARNING",
                error_kind=ErrorKind.TRANSPORT_ERROR.value,
                error=repr(e),
                attempt=self.connect_attempts,
            )
            if not self._shutdown:
                self._schedule_reconnect()
            return False

        if self._shutdown:
            # disconnect() arrived while the handshake was in flight
            self._state = ConnectionState.DISCONNECTED
            await self._close_quietly(ws)
            self._log("WS_CONNECT_DISCARDED", reason="shutdown_during_connect")
            return False

        self._ws = ws
        self._state = ConnectionState.CONNECTED
        self._log("WS_CONNECTED", attempt=self.connect_attempts)

        await self._emit_event(
            WSConnected(event_type=EventType.WS_CONNECTED, ts_ms=_now_ms())
        )

        # The session may have disconnected us from inside the event above.
        if self._ws is ws:
            self._recv_task = asyncio.create_task(self._recv_loop(ws))
        return True

    async def disconnect(self) -> None:
        """
        Explicit shutdown. Closes the channel and suppresses reconnection
        until the next connect().
        """
        self._shutdown = True
        self._cancel_reconnect()

        ws = self._ws
        self._ws = None
        recv_task = self._recv_task
        self._recv_task = None

        was_connected = self._state is ConnectionState.CONNECTED
        self._state = ConnectionState.DISCONNECTED

        if recv_task is not None and recv_task is not asyncio.current_task():
            recv_task.cancel()
            await asyncio.gather(recv_task, return_exceptions=True)

        if ws is not None:
            await self._close_quietly(ws)

        self._log("WS_DISCONNECTED", explicit=True, was_connected=was_connected)

        if was_connected:
            await self._emit_event(
                WSDisconnected(
                    event_type=EventType.WS_DISCONNECTED,
                    ts_ms=_now_ms(),
                    reason="client_disconnect",
                    explicit=True,
                )
            )

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send_audio(self, data: bytes) -> bool:
        """Send one binary frame. Fire-and-forget; never raises."""
        return await self._send(data, label="audio", size=len(data))

    async def send_control(self, message: ControlMessage) -> bool:
        """Encode and send one text frame. Fire-and-forget; never raises."""
        return await self._send(
            frame_codec.encode(message),
            label=message.message_type.value,
            size=None,
        )

    async def _send(self, payload: str | bytes, *, label: str, size: int | None) -> bool:
        ws = self._ws
        if self._state is not ConnectionState.CONNECTED or ws is None:
            self._log(
                "SEND_WITHOUT_CONNECTION",
                level="WARNING",
                frame=label,
                state=self._state.value,
            )
            await self._emit_event(
                SendFailed(
                    event_type=EventType.SEND_FAILED,
                    ts_ms=_now_ms(),
                    kind=ErrorKind.NOT_CONNECTED,
                    reason=f"cannot send {label}: channel is {self._state.value}",
                )
            )
            return False

        try:
            await ws.send(payload)
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._log(
                "WS_SEND_FAILED",
                level="WARNING",
                frame=label,
                error_kind=ErrorKind.TRANSPORT_ERROR.value,
                error=repr(e),
            )
            await self._emit_event(
                SendFailed(
                    event_type=EventType.SEND_FAILED,
                    ts_ms=_now_ms(),
                    kind=ErrorKind.TRANSPORT_ERROR,
                    reason=f"send {label} failed: {e!r}",
                )
            )
            await self._abort(ws, reason=f"send_failed: {e!r}")
            return False

        self._log("WS_SENT", level="DEBUG", frame=label, bytes=size)
        return True

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def _recv_loop(self, ws: Any) -> None:
        """
        Dispatch inbound frames in arrival order until the socket closes.

        Each dispatch is awaited before the next frame is read.
        """
        reason = "closed_by_server"
        try:
            async for raw in ws:
                if isinstance(raw, str):
                    await self._dispatch_text(raw)
                else:
                    self._on_audio_chunk(bytes(raw))
        except asyncio.CancelledError:
            return
        except ConnectionClosed as e:
            reason = f"connection_closed: {e}"
        except Exception as e:  # pylint: disable=broad-exception-caught
            reason = f"recv_failed: {e!r}"
            # recv failed on a socket that may still be open
            await self._close_quietly(ws)

        await self._handle_closed(ws, reason)

    async def _dispatch_text(self, raw: str) -> None:
        message = frame_codec.decode(raw)
        if isinstance(message, ErrorMessage) and message.malformed:
            self._log(
                "MALFORMED_MESSAGE",
                level="WARNING",
                error_kind=ErrorKind.MALFORMED_MESSAGE.value,
                error=message.message,
                payload_preview=raw[:LOG_PAYLOAD_PREVIEW_CHARS],
            )

        await self._emit_event(
            ControlReceived(
                event_type=EventType.CONTROL_RECEIVED,
                ts_ms=_now_ms(),
                message=message,
            )
        )

    # ------------------------------------------------------------------
    # Closure / reconnection
    # ------------------------------------------------------------------

    async def _handle_closed(self, ws: Any, reason: str) -> None:
        """
        Unexpected or server-side closure.

        The connection-state event is emitted before the reconnect timer
        is armed.
        """
        if ws is not self._ws:
            # stale socket (already replaced or explicitly closed)
            return

        self._ws = None
        self._recv_task = None
        was_connected = self._state is ConnectionState.CONNECTED
        self._state = ConnectionState.DISCONNECTED
        explicit = self._shutdown

        self._log(
            "WS_DISCONNECTED",
            explicit=explicit,
            was_connected=was_connected,
            reason=reason,
        )

        if was_connected:
            await self._emit_event(
                WSDisconnected(
                    event_type=EventType.WS_DISCONNECTED,
                    ts_ms=_now_ms(),
                    reason=reason,
                    explicit=explicit,
                )
            )

        if not explicit and not self._shutdown:
            self._schedule_reconnect()

    async def _abort(self, ws: Any, *, reason: str) -> None:
        """Tear down a broken socket so the reconnect policy applies."""
        recv_task = self._recv_task
        if recv_task is not None and recv_task is not asyncio.current_task():
            recv_task.cancel()
            await asyncio.gather(recv_task, return_exceptions=True)
        await self._close_quietly(ws)
        await self._handle_closed(ws, reason)

    def _schedule_reconnect(self) -> None:
        if self.reconnect_pending:
            return

        delay_ms = self._reconnect_delay_ms
        self._log("RECONNECT_SCHEDULED", delay_ms=delay_ms)

        async def _reconnect_task() -> None:
            try:
                await self._sleep(ms_to_seconds(delay_ms))
            except asyncio.CancelledError:
                return

            # connect() cancels any pending reconnect; that must not be us
            self._reconnect_task = None
            if self._shutdown:
                return

            self.reconnect_attempts += 1
            await self.connect()

        self._reconnect_task = asyncio.create_task(_reconnect_task())

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            self._log("RECONNECT_CANCELLED")

    async def _close_quietly(self, ws: Any) -> None:
        try:
            await ws.close()
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._log("WS_CLOSE_FAILED", level="DEBUG", error=repr(e))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _log(self, event_type: str, **fields: Any) -> None:
        log_event({
            "ts_ms": _now_ms(),
            "event_type": event_type,
            "session_id": self._session_id,
            "connection_state": self._state.value,
            **fields,
        })
