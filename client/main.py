"""
Console push-to-talk driver.

Press Enter to start talking, Enter again to send. Type q to quit.

Configuration comes from the environment (see config.py); command-line
flags override it.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import replace

from dotenv import load_dotenv

from audio.devices import (
    SoundDeviceMicrophone,
    SoundDevicePermission,
    SoundDeviceSpeaker,
    list_input_devices,
    list_output_devices,
)
from config import ClientConfig
from constants import CaptureFormat
from observability.logger import configure_logging, log_event
from session.notifications import (
    ConnectionChanged,
    ErrorRaised,
    Notification,
    ResponseReceived,
    StateChanged,
    TranscriptReceived,
)
from session.runtime import VoiceSession, create_session
from session.state import SessionState


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Push-to-talk voice client")
    parser.add_argument("--url", help="voice WebSocket URL (overrides VOICE_WS_URL)")
    parser.add_argument("--turn-timeout-ms", type=int, default=None)
    parser.add_argument("--log-level", default=None)
    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="print audio devices and exit",
    )
    return parser.parse_args(argv)


def _print_notification(n: Notification) -> None:
    if isinstance(n, ConnectionChanged):
        print("[connected]" if n.connected else "[disconnected, retrying]")
    elif isinstance(n, TranscriptReceived):
        print(f"you: {n.text}")
    elif isinstance(n, ResponseReceived):
        print(f"assistant: {n.text}")
    elif isinstance(n, ErrorRaised):
        print(f"error ({n.kind.value}): {n.message}")
    elif isinstance(n, StateChanged) and n.current is SessionState.RECORDING:
        print("recording... press Enter to send")


async def _repl(session: VoiceSession) -> None:
    while True:
        line = await asyncio.to_thread(sys.stdin.readline)
        if not line or line.strip().lower() == "q":
            return

        if session.state is SessionState.RECORDING:
            await session.stop_capture()
        else:
            await session.start_capture()


async def run(config: ClientConfig) -> None:
    fmt = CaptureFormat(sample_rate_hz=config.sample_rate_hz)
    session = create_session(
        config,
        microphone=SoundDeviceMicrophone(capture_format=fmt, device=config.input_device),
        permissions=SoundDevicePermission(capture_format=fmt, device=config.input_device),
        output=SoundDeviceSpeaker(device=config.output_device),
    )
    session.subscribe(_print_notification)

    log_event({
        "event_type": "CLIENT_STARTED",
        "session_id": session.session_id,
        "ws_url": config.ws_url,
    })

    try:
        if not await session.connect():
            print(f"could not reach {config.ws_url}, retrying in the background")
        print("press Enter to talk, q to quit")
        await _repl(session)
    finally:
        await session.close()


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)

    if args.list_devices:
        for dev in list_input_devices():
            print(f"in  {dev['index']}: {dev['name']} ({dev['channels']} ch)")
        for dev in list_output_devices():
            print(f"out {dev['index']}: {dev['name']} ({dev['channels']} ch)")
        return

    load_dotenv()
    config = ClientConfig.load_from_env()
    if args.url:
        config = replace(config, ws_url=args.url)
    if args.turn_timeout_ms is not None:
        config = replace(config, turn_timeout_ms=args.turn_timeout_ms)
    if args.log_level:
        config = replace(config, log_level=args.log_level)

    configure_logging(level=config.log_level, enabled=config.enable_json_logs)

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
