"""
sounddevice-backed audio platform.

SoundDeviceMicrophone buffers int16 blocks from an InputStream callback
until stop(). SoundDeviceSpeaker decodes a reply with soundfile and plays
it on the default (or configured) output device.

All blocking calls here are made from worker threads by the controllers.
"""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Any

import numpy as np
import sounddevice as sd

from audio.base import AudioOutput, Microphone, PermissionGate
from audio.pcm import decode_reply
from audio.playback import PlaybackBuffer
from constants import CAPTURE_FORMAT_V1, CaptureFormat
from errors import PlaybackFailure
from observability.logger import log_event


Device = int | str | None


def _log(event_type: str, **fields: Any) -> None:
    log_event({
        "ts_ms": time.time_ns() // 1_000_000,
        "event_type": event_type,
        **fields,
    })


def list_input_devices() -> list[dict[str, Any]]:
    devices: list[dict[str, Any]] = []
    for i, dev in enumerate(sd.query_devices()):
        if dev["max_input_channels"] > 0:
            devices.append({"index": i, "name": dev["name"], "channels": dev["max_input_channels"]})
    return devices


def list_output_devices() -> list[dict[str, Any]]:
    devices: list[dict[str, Any]] = []
    for i, dev in enumerate(sd.query_devices()):
        if dev["max_output_channels"] > 0:
            devices.append({"index": i, "name": dev["name"], "channels": dev["max_output_channels"]})
    return devices


class SoundDeviceMicrophone(Microphone):
    """
    Push-to-talk microphone.

    The callback runs on the PortAudio thread; blocks are copied under a
    lock because sounddevice reuses the indata buffer.
    """

    def __init__(
        self,
        *,
        capture_format: CaptureFormat = CAPTURE_FORMAT_V1,
        device: Device = None,
    ) -> None:
        self._format = capture_format
        self._device = device
        self._stream: sd.InputStream | None = None
        self._blocks: list[np.ndarray] = []
        self._lock = threading.Lock()
        self._recording_mode = False

    @property
    def recording_mode(self) -> bool:
        return self._recording_mode

    def set_recording_mode(self, enabled: bool) -> None:
        # PortAudio has no session category; the flag gates start()
        self._recording_mode = enabled

    def start(self) -> None:
        if not self._recording_mode:
            raise RuntimeError("audio subsystem is not in recording mode")

        with self._lock:
            self._blocks = []

        def _callback(indata, _frames, _time_info, status):
            if status:
                _log("SOUNDDEVICE_STATUS", level="DEBUG", status=str(status))
            with self._lock:
                self._blocks.append(indata.copy())

        stream = sd.InputStream(
            samplerate=self._format.sample_rate_hz,
            channels=self._format.channels,
            dtype=self._format.dtype,
            blocksize=self._format.block_size,
            device=self._device,
            callback=_callback,
        )
        stream.start()
        self._stream = stream

    def stop(self) -> np.ndarray:
        stream = self._stream
        if stream is not None:
            stream.stop()

        with self._lock:
            blocks = self._blocks
            self._blocks = []

        if not blocks:
            return np.zeros((0, self._format.channels), dtype=self._format.dtype)
        return np.concatenate(blocks, axis=0)

    def release(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is not None:
            stream.close()


class SoundDevicePermission(PermissionGate):
    """
    Desktop stand-in for a microphone permission prompt.

    Access counts as granted once an input device accepts the capture
    settings. The result is cached after the first grant.
    """

    def __init__(
        self,
        *,
        capture_format: CaptureFormat = CAPTURE_FORMAT_V1,
        device: Device = None,
    ) -> None:
        self._format = capture_format
        self._device = device
        self._granted = False

    async def is_granted(self) -> bool:
        return self._granted

    async def request(self) -> bool:
        try:
            await asyncio.to_thread(
                sd.check_input_settings,
                device=self._device,
                channels=self._format.channels,
                dtype=self._format.dtype,
                samplerate=self._format.sample_rate_hz,
            )
        except (sd.PortAudioError, ValueError) as e:
            _log("MIC_UNAVAILABLE", level="WARNING", error=repr(e))
            return False
        self._granted = True
        return True


class SoundDeviceSpeaker(AudioOutput):
    """Plays one decoded reply at a time."""

    def __init__(self, *, device: Device = None) -> None:
        self._device = device

    async def play(self, buffer: PlaybackBuffer) -> None:
        samples, sample_rate = decode_reply(buffer.data)
        try:
            await asyncio.to_thread(self._play_blocking, samples, sample_rate)
        except sd.PortAudioError as e:
            raise PlaybackFailure(f"audio output failed: {e}") from e

    def _play_blocking(self, samples: np.ndarray, sample_rate: int) -> None:
        sd.play(samples, samplerate=sample_rate, device=self._device)
        sd.wait()

    def stop(self) -> None:
        sd.stop()
