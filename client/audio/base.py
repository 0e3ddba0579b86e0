"""
Audio platform contracts.

This module defines the *interface only*: no session logic, no buffering
policy, no encoding. Concrete sounddevice implementations live in
audio/devices.py; tests provide in-memory fakes.

Key invariants:
- Only AudioCaptureController drives a Microphone.
- Only PlaybackAssembler drives an AudioOutput.
- Blocking methods are called from a worker thread, never the event loop.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from audio.playback import PlaybackBuffer


class Microphone(ABC):
    """
    Platform microphone.

    Lifecycle per utterance:
        set_recording_mode(True) -> start() -> stop() -> release()
        -> set_recording_mode(False)
    """

    @property
    @abstractmethod
    def recording_mode(self) -> bool:
        """True while the audio subsystem is reserved for recording."""
        raise NotImplementedError

    @abstractmethod
    def set_recording_mode(self, enabled: bool) -> None:
        """Switch the audio subsystem into or out of recording mode."""
        raise NotImplementedError

    @abstractmethod
    def start(self) -> None:
        """Begin recording. Blocking."""
        raise NotImplementedError

    @abstractmethod
    def stop(self) -> np.ndarray:
        """
        Finalize the recording and return all captured samples.

        Returns int16 samples shaped (frames,) or (frames, channels).
        Blocking.
        """
        raise NotImplementedError

    @abstractmethod
    def release(self) -> None:
        """
        Free platform recording resources.

        Must be idempotent and safe after a failed start() or stop().
        """
        raise NotImplementedError


class PermissionGate(ABC):
    """Microphone permission check/request."""

    @abstractmethod
    async def is_granted(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def request(self) -> bool:
        """Ask for access. Returns True if granted."""
        raise NotImplementedError


class AudioOutput(ABC):
    """External audio-output collaborator."""

    @abstractmethod
    async def play(self, buffer: PlaybackBuffer) -> None:
        """
        Decode and play one reassembled reply.

        Returns when playback has finished. Raises PlaybackFailure on
        decode or device errors.
        """
        raise NotImplementedError

    @abstractmethod
    def stop(self) -> None:
        """Stop any active playback immediately. Idempotent."""
        raise NotImplementedError
