"""
Push-to-talk capture controller.

Responsibilities:
- Check the channel is up before recording
- Request microphone permission on demand
- Own the single outstanding RecordingHandle
- Produce exactly one encoded buffer per recording
- Always return the audio subsystem to neutral (non-recording) mode

Non-responsibilities:
- No transmission (the session sends the buffer)
- No chunked upload while recording
- No turn/state decisions
"""

from __future__ import annotations

import asyncio
import itertools
import time
from dataclasses import dataclass
from typing import Any, Callable

from audio.base import Microphone, PermissionGate
from audio.pcm import encode_recording
from constants import CAPTURE_FORMAT_V1, CaptureFormat
from errors import (
    CaptureBusy,
    CaptureFailed,
    NotConnected,
    PermissionDenied,
    VoiceClientError,
)
from observability.logger import log_event


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass(frozen=True)
class RecordingHandle:
    """
    One outstanding microphone capture.

    Valid between a successful start_capture() and the matching
    stop_capture()/abandon().
    """
    recording_id: int
    started_ts_ms: int


class AudioCaptureController:
    """
    Owns microphone permission, recording start/stop and the
    RecordingHandle. At most one recording exists at a time.
    """

    def __init__(
        self,
        *,
        microphone: Microphone,
        permissions: PermissionGate,
        is_connected: Callable[[], bool],
        capture_format: CaptureFormat = CAPTURE_FORMAT_V1,
        session_id: str | None = None,
    ) -> None:
        self._mic = microphone
        self._permissions = permissions
        self._is_connected = is_connected
        self._format = capture_format
        self._session_id = session_id

        self._handle: RecordingHandle | None = None
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def handle(self) -> RecordingHandle | None:
        return self._handle

    @property
    def recording_mode(self) -> bool:
        return self._mic.recording_mode

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start_capture(self) -> RecordingHandle:
        """
        Begin recording.

        Raises:
            CaptureBusy if a recording is already outstanding.
            NotConnected if the channel is down.
            PermissionDenied if microphone access is refused.
            CaptureFailed if the platform cannot start recording.
        """
        if self._handle is not None:
            raise CaptureBusy(
                f"recording {self._handle.recording_id} is still open"
            )

        if not self._is_connected():
            raise NotConnected("Not connected to voice server")

        if not await self._permissions.is_granted():
            self._log("MIC_PERMISSION_REQUESTED")
            if not await self._permissions.request():
                self._log("MIC_PERMISSION_DENIED", level="WARNING")
                raise PermissionDenied("Microphone permission denied")

        try:
            self._mic.set_recording_mode(True)
            await asyncio.to_thread(self._mic.start)
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._restore_neutral(reason="start_failed")
            raise CaptureFailed(f"Recording failed: {e}") from e

        handle = RecordingHandle(
            recording_id=next(self._ids),
            started_ts_ms=_now_ms(),
        )
        self._handle = handle
        self._log("RECORDING_STARTED", recording_id=handle.recording_id)
        return handle

    async def stop_capture(self, handle: RecordingHandle) -> bytes:
        """
        Finalize the recording and return it as one encoded buffer.

        Resources are released and the audio subsystem is back in
        neutral mode when this returns or raises.

        Raises:
            CaptureFailed if the handle is stale, or finalization or
            encoding fails.
        """
        if handle != self._handle:
            raise CaptureFailed(f"unknown recording {handle.recording_id}")

        try:
            samples = await asyncio.to_thread(self._mic.stop)
            data = encode_recording(samples, self._format)
        except VoiceClientError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            raise CaptureFailed(f"Failed to process recording: {e}") from e
        finally:
            self._handle = None
            self._release(reason="stopped")

        self._log(
            "RECORDING_FINALIZED",
            recording_id=handle.recording_id,
            bytes=len(data),
            duration_ms=_now_ms() - handle.started_ts_ms,
        )
        return data

    async def abandon(self, reason: str) -> None:
        """
        Stop and discard the outstanding recording, if any.

        Nothing is encoded or returned. Never raises.
        """
        handle = self._handle
        if handle is None:
            return
        self._handle = None

        try:
            await asyncio.to_thread(self._mic.stop)
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._log("RECORDING_STOP_FAILED", level="WARNING", error=repr(e))
        finally:
            self._release(reason=reason)

        self._log(
            "RECORDING_ABANDONED",
            recording_id=handle.recording_id,
            reason=reason,
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _release(self, *, reason: str) -> None:
        try:
            self._mic.release()
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._log("MIC_RELEASE_FAILED", level="WARNING", error=repr(e))
        finally:
            self._restore_neutral(reason=reason)

    def _restore_neutral(self, *, reason: str) -> None:
        try:
            self._mic.set_recording_mode(False)
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._log("AUDIO_MODE_RESET_FAILED", level="ERROR", error=repr(e))
            return
        self._log("AUDIO_MODE_NEUTRAL", level="DEBUG", reason=reason)

    def _log(self, event_type: str, **fields: Any) -> None:
        log_event({
            "ts_ms": _now_ms(),
            "event_type": event_type,
            "session_id": self._session_id,
            **fields,
        })
