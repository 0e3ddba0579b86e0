"""
Inbound reply reassembly.

Core model:
- audio_start opens a window; binary chunks append in arrival order
- audio_end freezes the window into one PlaybackBuffer and hands it to the
  audio output as a background task
- a new audio_start discards anything not yet handed off
- chunks outside a window are dropped and logged, never an error
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from audio.base import AudioOutput
from errors import PlaybackFailure
from observability.logger import log_event
from session.events import (
    Event,
    EventType,
    PlaybackComplete,
    PlaybackFailed,
)


EventSink = Callable[[Event], Awaitable[None]]


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass(frozen=True)
class PlaybackBuffer:
    """All chunks of one reply, concatenated in arrival order."""
    data: bytes
    chunk_count: int

    def __len__(self) -> int:
        return len(self.data)


class PlaybackAssembler:
    """
    Owns the accumulation buffer for the single in-flight reply.
    """

    def __init__(
        self,
        *,
        output: AudioOutput,
        emit_event: EventSink,
        session_id: str | None = None,
    ) -> None:
        self._output = output
        self._emit_event = emit_event
        self._session_id = session_id

        self._chunks: list[bytes] = []
        self._open = False
        self._play_task: asyncio.Task[None] | None = None

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def buffered_bytes(self) -> int:
        return sum(len(c) for c in self._chunks)

    def on_audio_start(self) -> None:
        discarded = len(self._chunks)
        self._chunks = []
        self._open = True
        self._log("PLAYBACK_WINDOW_OPENED", discarded_chunks=discarded)

    def on_chunk(self, chunk: bytes) -> bool:
        """
        Append one chunk. Returns False when the chunk was dropped.
        """
        if not self._open:
            self._log(
                "AUDIO_CHUNK_DROPPED",
                level="DEBUG",
                bytes=len(chunk),
                reason="no_open_window",
            )
            return False
        self._chunks.append(chunk)
        return True

    def on_audio_end(self) -> PlaybackBuffer | None:
        """
        Close the window and start playing the reassembled reply.

        Returns the buffer handed to the output, or None if no window was
        open.
        """
        if not self._open:
            self._log("AUDIO_END_WITHOUT_START", level="WARNING")
            return None

        buffer = PlaybackBuffer(
            data=b"".join(self._chunks),
            chunk_count=len(self._chunks),
        )
        self._chunks = []
        self._open = False

        self._log(
            "PLAYBACK_BUFFER_READY",
            bytes=len(buffer),
            chunks=buffer.chunk_count,
        )

        self._cancel_play_task()
        if len(buffer) == 0:
            self._log("PLAYBACK_SKIPPED", reason="empty_buffer")
            return buffer

        self._play_task = asyncio.create_task(self._play(buffer))
        return buffer

    def abandon(self, reason: str) -> None:
        """Drop the window and stop any active output. Never raises."""
        discarded = len(self._chunks)
        was_open = self._open
        self._chunks = []
        self._open = False

        playing = self._play_task is not None and not self._play_task.done()
        self._cancel_play_task()
        if playing:
            try:
                self._output.stop()
            except Exception as e:  # pylint: disable=broad-exception-caught
                self._log("AUDIO_OUTPUT_STOP_FAILED", level="WARNING", error=repr(e))

        if was_open or playing:
            self._log(
                "PLAYBACK_ABANDONED",
                reason=reason,
                discarded_chunks=discarded,
                was_playing=playing,
            )

    async def wait_idle(self) -> None:
        """Suspend until the current output task (if any) has finished."""
        task = self._play_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _play(self, buffer: PlaybackBuffer) -> None:
        try:
            await self._output.play(buffer)
        except asyncio.CancelledError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            reason = str(e) if isinstance(e, PlaybackFailure) else repr(e)
            self._log("PLAYBACK_FAILED", level="ERROR", error=reason)
            await self._emit_event(
                PlaybackFailed(
                    event_type=EventType.PLAYBACK_FAILED,
                    ts_ms=_now_ms(),
                    reason=reason,
                )
            )
            return

        self._log("PLAYBACK_FINISHED", bytes=len(buffer))
        await self._emit_event(
            PlaybackComplete(
                event_type=EventType.PLAYBACK_COMPLETE,
                ts_ms=_now_ms(),
                byte_length=len(buffer),
            )
        )

    def _cancel_play_task(self) -> None:
        task = self._play_task
        self._play_task = None
        if task is not None and not task.done():
            task.cancel()

    def _log(self, event_type: str, **fields: Any) -> None:
        log_event({
            "ts_ms": _now_ms(),
            "event_type": event_type,
            "session_id": self._session_id,
            **fields,
        })
