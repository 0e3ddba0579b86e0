"""PCM / container conversion utilities."""
from __future__ import annotations

import io

import numpy as np
import soundfile as sf

from constants import CAPTURE_FORMAT_V1, CaptureFormat
from errors import CaptureFailed, PlaybackFailure


def encode_recording(
    samples: np.ndarray,
    fmt: CaptureFormat = CAPTURE_FORMAT_V1,
) -> bytes:
    """
    Encode captured int16 samples into one transmittable buffer.

    Raises:
        CaptureFailed if the recording is empty or cannot be encoded.
    """
    if samples.size == 0:
        raise CaptureFailed("recording contains no audio")

    buf = io.BytesIO()
    try:
        sf.write(
            buf,
            samples,
            fmt.sample_rate_hz,
            format=fmt.container,
            subtype=fmt.subtype,
        )
    except (RuntimeError, ValueError, TypeError) as e:
        raise CaptureFailed(f"encode failed: {e}") from e
    return buf.getvalue()


def decode_reply(data: bytes) -> tuple[np.ndarray, int]:
    """
    Decode a reassembled reply (any container libsndfile understands).

    Returns (float32 samples, sample_rate).

    Raises:
        PlaybackFailure if the bytes are not decodable audio.
    """
    if not data:
        raise PlaybackFailure("reply audio is empty")

    try:
        samples, sample_rate = sf.read(io.BytesIO(data), dtype="float32")
    except (RuntimeError, ValueError, TypeError) as e:
        # soundfile.LibsndfileError subclasses RuntimeError
        raise PlaybackFailure(f"decode failed: {e}") from e
    return samples, int(sample_rate)
