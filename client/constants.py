"""
PROTOCOL & BEHAVIOR CONSTANTS
-----------------------------
Single source of truth for every value that changes runtime behavior.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Deployment-specific values (URLs, devices) live in config.py instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

# =============================================================================
# Endpoint
# =============================================================================

DEFAULT_API_URL: Final[str] = "http://localhost:8000"
VOICE_WS_PATH: Final[str] = "/api/v1/voice/ws"

# Inbound frames larger than this are rejected by the transport (4 MiB).
WS_MAX_MESSAGE_BYTES: Final[int] = 2**22

# =============================================================================
# Reconnection
# =============================================================================
# Fixed delay, unbounded attempts, no jitter, no backoff.

RECONNECT_DELAY_MS: Final[int] = 3_000

# =============================================================================
# Capture format (push-to-talk, one WAV per utterance)
# =============================================================================

CAPTURE_SAMPLE_RATE_HZ: Final[int] = 16_000
CAPTURE_CHANNELS: Final[int] = 1
CAPTURE_DTYPE: Final[str] = "int16"
CAPTURE_BLOCK_MS: Final[int] = 20
CAPTURE_CONTAINER: Final[str] = "WAV"
CAPTURE_SUBTYPE: Final[str] = "PCM_16"

# =============================================================================
# Wire message types
# =============================================================================

MSG_TRANSCRIPT: Final[str] = "transcript"
MSG_RESPONSE: Final[str] = "response"
MSG_AUDIO_START: Final[str] = "audio_start"
MSG_AUDIO_END: Final[str] = "audio_end"
MSG_ERROR: Final[str] = "error"
MSG_END_STREAM: Final[str] = "end_stream"

# Defaults applied when optional inbound fields are missing
DEFAULT_LANGUAGE: Final[str] = ""
DEFAULT_CONFIDENCE: Final[float] = 0.0
DEFAULT_SERVER_ERROR_MESSAGE: Final[str] = "Unknown error"

# =============================================================================
# Turn timeout
# =============================================================================
# None disables the timer. The reference client waits forever for a reply.

DEFAULT_TURN_TIMEOUT_MS: Final[int | None] = None

# =============================================================================
# Observability
# =============================================================================

LOG_PAYLOAD_PREVIEW_CHARS: Final[int] = 100

# =============================================================================
# Helper Functions
# =============================================================================

def block_size_for(sample_rate_hz: int) -> int:
    """Samples per capture callback block at the given rate."""
    if sample_rate_hz <= 0:
        return 0
    return (sample_rate_hz * CAPTURE_BLOCK_MS) // 1000


def ms_to_seconds(duration_ms: int) -> float:
    """Convert milliseconds to the float seconds asyncio.sleep expects."""
    return duration_ms / 1000.0


# =============================================================================
# Convenience Bundles
# =============================================================================

@dataclass(frozen=True)
class CaptureFormat:
    """
    Immutable bundle describing how a recording is captured and encoded.

    This is a convenience wrapper, NOT a second source of truth.
    """
    sample_rate_hz: int = CAPTURE_SAMPLE_RATE_HZ
    channels: int = CAPTURE_CHANNELS
    dtype: str = CAPTURE_DTYPE
    container: str = CAPTURE_CONTAINER
    subtype: str = CAPTURE_SUBTYPE

    @property
    def block_size(self) -> int:
        """Return samples per capture block."""
        return block_size_for(self.sample_rate_hz)


CAPTURE_FORMAT_V1: Final[CaptureFormat] = CaptureFormat()
