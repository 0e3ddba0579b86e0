"""
Client configuration.

Responsibilities:
- Read environment variables
- Resolve the voice WebSocket endpoint once
- Provide a typed, immutable config object

Non-responsibilities:
- No session logic
- No protocol constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    CAPTURE_SAMPLE_RATE_HZ,
    DEFAULT_API_URL,
    DEFAULT_TURN_TIMEOUT_MS,
    RECONNECT_DELAY_MS,
    VOICE_WS_PATH,
)


def ws_url_from_api_url(api_url: str) -> str:
    """
    Derive the voice WebSocket URL from the HTTP API base URL.

    http://host -> ws://host/api/v1/voice/ws
    https://host -> wss://host/api/v1/voice/ws
    """
    base = api_url.rstrip("/")
    if base.startswith("http"):
        base = "ws" + base[len("http"):]
    return base + VOICE_WS_PATH


def _optional_int(name: str) -> int | None:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    return int(raw)


def _device(name: str) -> int | str | None:
    """sounddevice accepts either a numeric index or a name substring."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    return int(raw) if raw.strip().isdigit() else raw


@dataclass(frozen=True)
class ClientConfig:
    """
    Immutable client configuration.

    Constructed once at startup and passed downward to the session
    builder. The endpoint is never re-resolved mid-session.
    """

    # ------------------------------------------------------------------
    # Endpoint
    # ------------------------------------------------------------------

    ws_url: str

    # ------------------------------------------------------------------
    # Connection / turn policy
    # ------------------------------------------------------------------

    reconnect_delay_ms: int = RECONNECT_DELAY_MS
    turn_timeout_ms: int | None = DEFAULT_TURN_TIMEOUT_MS

    # ------------------------------------------------------------------
    # Audio devices
    # ------------------------------------------------------------------

    sample_rate_hz: int = CAPTURE_SAMPLE_RATE_HZ
    input_device: int | str | None = None
    output_device: int | str | None = None

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    log_level: str = "INFO"
    enable_json_logs: bool = True

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> ClientConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable cannot be parsed.
        """
        ws_url = os.environ.get("VOICE_WS_URL") or ws_url_from_api_url(
            os.environ.get("VOICE_API_URL", DEFAULT_API_URL)
        )

        reconnect_delay_ms = _optional_int("VOICE_RECONNECT_DELAY_MS")
        sample_rate_hz = _optional_int("VOICE_SAMPLE_RATE_HZ")

        return ClientConfig(
            ws_url=ws_url,
            reconnect_delay_ms=(
                reconnect_delay_ms if reconnect_delay_ms is not None
                else RECONNECT_DELAY_MS
            ),
            turn_timeout_ms=_optional_int("VOICE_TURN_TIMEOUT_MS"),
            sample_rate_hz=(
                sample_rate_hz if sample_rate_hz is not None
                else CAPTURE_SAMPLE_RATE_HZ
            ),
            input_device=_device("VOICE_INPUT_DEVICE"),
            output_device=_device("VOICE_OUTPUT_DEVICE"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",
        )
