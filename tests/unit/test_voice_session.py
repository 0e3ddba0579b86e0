# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json
from typing import Any

import pytest

import session.runtime as runtime_mod
from config import ClientConfig
from errors import ErrorKind
from session.notifications import (
    ConnectionChanged,
    ErrorRaised,
    Notification,
    NotificationType,
    PlaybackFinished,
    ResponseReceived,
    TranscriptReceived,
)
from session.runtime import VoiceSession, create_session
from session.state import SessionState

from fakes import (
    URL,
    BlockingSleep,
    FakeConnector,
    FakeMicrophone,
    FakePermission,
    FakeSpeaker,
    FakeWebSocket,
    RecordingSleep,
    settle,
    wait_for,
)


class Rig:
    """One wired session with fakes on every edge."""

    def __init__(
        self,
        *,
        connector: FakeConnector | None = None,
        microphone: FakeMicrophone | None = None,
        permissions: FakePermission | None = None,
        speaker: FakeSpeaker | None = None,
        sleep: Any = None,
        turn_timeout_ms: int | None = None,
    ) -> None:
        self.connector = connector or FakeConnector()
        self.microphone = microphone or FakeMicrophone()
        self.permissions = permissions or FakePermission()
        self.speaker = speaker or FakeSpeaker()
        self.sleep = sleep or RecordingSleep()
        self.seen: list[Notification] = []

        self.session: VoiceSession = create_session(
            ClientConfig(ws_url=URL, turn_timeout_ms=turn_timeout_ms),
            microphone=self.microphone,
            permissions=self.permissions,
            output=self.speaker,
            connect_fn=self.connector,
            sleep=self.sleep,
        )
        self.session.subscribe(self.seen.append)

    @property
    def ws(self) -> FakeWebSocket:
        return self.connector.sockets[-1]

    def kinds(self) -> list[NotificationType]:
        return [
            n.notification_type
            for n in self.seen
            if n.notification_type is not NotificationType.STATE_CHANGED
        ]

    def errors(self) -> list[ErrorRaised]:
        return [n for n in self.seen if isinstance(n, ErrorRaised)]


def test_full_turn_scenario() -> None:
    async def scenario() -> Rig:
        rig = Rig()
        assert await rig.session.connect() is True
        assert await rig.session.start_capture() is True
        await rig.session.stop_capture()
        assert rig.session.state is SessionState.AWAITING_RESPONSE

        ws = rig.ws
        ws.feed_json({"type": "transcript", "text": "hello", "language": "en", "confidence": 0.97})
        ws.feed_json({"type": "response", "text": "hi there", "language": "en"})
        ws.feed_json({"type": "audio_start"})
        for i in range(3):
            ws.feed(bytes([i]) * 100)
        ws.feed_json({"type": "audio_end"})

        await wait_for(lambda: any(isinstance(n, PlaybackFinished) for n in rig.seen))
        return rig

    rig = asyncio.run(scenario())

    assert rig.kinds() == [
        NotificationType.CONNECTION_CHANGED,
        NotificationType.TRANSCRIPT,
        NotificationType.RESPONSE,
        NotificationType.PLAYBACK_STARTED,
        NotificationType.PLAYBACK_ENDED,
        NotificationType.PLAYBACK_COMPLETE,
    ]
    assert ConnectionChanged(connected=True) in rig.seen
    transcript = next(n for n in rig.seen if isinstance(n, TranscriptReceived))
    assert transcript.text == "hello"
    response = next(n for n in rig.seen if isinstance(n, ResponseReceived))
    assert response.text == "hi there"

    assert len(rig.speaker.played) == 1
    assert len(rig.speaker.played[0]) == 300
    assert rig.speaker.played[0].data == b"\x00" * 100 + b"\x01" * 100 + b"\x02" * 100
    assert rig.session.state is SessionState.IDLE


def test_utterance_is_one_binary_frame_then_end_stream() -> None:
    async def scenario() -> Rig:
        rig = Rig()
        await rig.session.connect()
        await rig.session.start_capture()
        await rig.session.stop_capture()
        return rig

    rig = asyncio.run(scenario())

    sent = rig.ws.sent
    assert len(sent) == 2
    assert isinstance(sent[0], bytes) and sent[0][:4] == b"RIFF"
    assert sent[1] == '{"type":"end_stream"}'
    assert rig.microphone.recording_mode is False


def test_start_capture_while_not_connected_reports_error_and_stays_idle() -> None:
    async def scenario() -> tuple[Rig, bool]:
        rig = Rig()
        started = await rig.session.start_capture()
        return rig, started

    rig, started = asyncio.run(scenario())

    assert started is False
    assert rig.session.state is SessionState.IDLE
    assert [e.kind for e in rig.errors()] == [ErrorKind.NOT_CONNECTED]
    assert rig.microphone.started == 0


def test_permission_denied_returns_to_idle_with_one_error() -> None:
    async def scenario() -> tuple[Rig, bool]:
        rig = Rig(permissions=FakePermission(granted=False, grant_on_request=False))
        await rig.session.connect()
        started = await rig.session.start_capture()
        return rig, started

    rig, started = asyncio.run(scenario())

    assert started is False
    assert rig.session.state is SessionState.IDLE
    assert [e.kind for e in rig.errors()] == [ErrorKind.PERMISSION_DENIED]


def test_finalize_failure_sends_nothing() -> None:
    async def scenario() -> Rig:
        rig = Rig(microphone=FakeMicrophone(fail_stop=OSError("device gone")))
        await rig.session.connect()
        await rig.session.start_capture()
        await rig.session.stop_capture()
        return rig

    rig = asyncio.run(scenario())

    assert rig.ws.sent == []
    assert rig.session.state is SessionState.IDLE
    assert [e.kind for e in rig.errors()] == [ErrorKind.CAPTURE_FAILED]
    assert rig.microphone.recording_mode is False


def test_server_error_mid_recording_abandons_capture() -> None:
    async def scenario() -> Rig:
        rig = Rig()
        await rig.session.connect()
        await rig.session.start_capture()

        rig.ws.feed(json.dumps({"type": "error", "message": "quota exceeded"}))
        await wait_for(lambda: bool(rig.errors()))
        return rig

    rig = asyncio.run(scenario())

    assert rig.session.state is SessionState.IDLE
    assert rig.errors() == [ErrorRaised(kind=ErrorKind.SERVER_ERROR, message="quota exceeded")]
    assert rig.microphone.released == 1
    assert rig.microphone.recording_mode is False


def test_unexpected_closure_notifies_and_reconnects() -> None:
    async def scenario() -> tuple[Rig, list[SessionState]]:
        rig = Rig()
        await rig.session.connect()
        first = rig.ws

        first.close_from_server()
        await wait_for(lambda: len(rig.connector.sockets) == 2)
        await settle()
        states = [rig.session.state]
        return rig, states

    rig, states = asyncio.run(scenario())

    connection_events = [n for n in rig.seen if isinstance(n, ConnectionChanged)]
    assert [n.connected for n in connection_events] == [True, False, True]
    assert rig.sleep.delays == [3.0]
    assert states == [SessionState.IDLE]


def test_failed_connect_keeps_awaiting_connection() -> None:
    async def scenario() -> tuple[Rig, bool]:
        rig = Rig(
            connector=FakeConnector([OSError("refused")]),
            sleep=BlockingSleep(),
        )
        ok = await rig.session.connect()
        return rig, ok

    rig, ok = asyncio.run(scenario())

    assert ok is False
    assert rig.session.state is SessionState.AWAITING_CONNECTION
    # no connection-state change happened
    assert not [n for n in rig.seen if isinstance(n, ConnectionChanged)]


def test_start_capture_after_failed_connect_is_not_connected() -> None:
    async def scenario() -> tuple[Rig, bool]:
        rig = Rig(
            connector=FakeConnector([OSError("refused")]),
            sleep=BlockingSleep(),
        )
        await rig.session.connect()
        started = await rig.session.start_capture()
        return rig, started

    rig, started = asyncio.run(scenario())

    assert started is False
    assert rig.session.state is SessionState.AWAITING_CONNECTION
    assert [e.kind for e in rig.errors()] == [ErrorKind.NOT_CONNECTED]
    assert rig.session.last_error == "not_connected"
    assert rig.microphone.started == 0


def test_disconnect_stops_reconnecting() -> None:
    async def scenario() -> Rig:
        rig = Rig()
        await rig.session.connect()
        await rig.session.disconnect()
        await settle()
        return rig

    rig = asyncio.run(scenario())

    assert rig.session.state is SessionState.IDLE
    assert rig.sleep.delays == []
    assert len(rig.connector.urls) == 1
    connection_events = [n for n in rig.seen if isinstance(n, ConnectionChanged)]
    assert [n.connected for n in connection_events] == [True, False]


def test_turn_timeout_returns_to_idle() -> None:
    async def scenario() -> Rig:
        rig = Rig(turn_timeout_ms=5000)
        await rig.session.connect()
        await rig.session.start_capture()
        await rig.session.stop_capture()
        await wait_for(lambda: bool(rig.errors()))
        return rig

    rig = asyncio.run(scenario())

    assert rig.session.state is SessionState.IDLE
    assert [e.kind for e in rig.errors()] == [ErrorKind.TURN_TIMEOUT]
    assert 5.0 in rig.sleep.delays


def test_first_reply_latency_is_measured(monkeypatch: pytest.MonkeyPatch) -> None:
    emitted: list[dict[str, Any]] = []

    def fake_log_event(payload: dict[str, Any]) -> None:
        emitted.append(dict(payload))

    monkeypatch.setattr(runtime_mod, "log_event", fake_log_event)
    monkeypatch.setattr("observability.metrics.log_event", fake_log_event)

    async def scenario() -> None:
        rig = Rig()
        await rig.session.connect()
        await rig.session.start_capture()
        await rig.session.stop_capture()
        rig.ws.feed_json({"type": "transcript", "text": "hello"})
        rig.ws.feed_json({"type": "response", "text": "hi"})
        await wait_for(lambda: len(rig.kinds()) >= 3)

    asyncio.run(scenario())

    metrics = [e for e in emitted if e.get("event_type") == "METRIC_TIMER"]
    names = [m["metric"] for m in metrics]
    assert names.count("capture_finalize") == 1
    assert names.count("end_stream_to_first_reply_ms") == 1
    first = next(m for m in metrics if m["metric"] == "end_stream_to_first_reply_ms")
    assert first["details"] == {"first": "transcript"}


def test_failing_listener_does_not_break_session() -> None:
    async def scenario() -> Rig:
        rig = Rig()

        def broken(_: Notification) -> None:
            raise RuntimeError("ui crashed")

        rig.session.subscribe(broken)
        await rig.session.connect()
        return rig

    rig = asyncio.run(scenario())

    assert rig.session.state is SessionState.IDLE
    assert ConnectionChanged(connected=True) in rig.seen


def test_close_drops_listeners() -> None:
    async def scenario() -> Rig:
        rig = Rig()
        await rig.session.connect()
        await rig.session.close()
        return rig

    rig = asyncio.run(scenario())

    with pytest.raises(RuntimeError):
        rig.session.subscribe(lambda _: None)
    assert rig.seen[-1] == ConnectionChanged(connected=False)


def test_stop_while_permission_prompt_is_open_sends_once_granted() -> None:
    async def scenario() -> Rig:
        gate = asyncio.Event()
        rig = Rig(permissions=FakePermission(granted=False, gate=gate))
        await rig.session.connect()

        starting = asyncio.create_task(rig.session.start_capture())
        await settle()
        stopping = asyncio.create_task(rig.session.stop_capture())
        await settle()
        assert rig.ws.sent == []

        gate.set()
        await asyncio.gather(starting, stopping)
        return rig

    rig = asyncio.run(scenario())

    assert rig.errors() == []
    assert rig.session.state is SessionState.AWAITING_RESPONSE
    sent = rig.ws.sent
    assert len(sent) == 2
    assert isinstance(sent[0], bytes) and sent[0][:4] == b"RIFF"
    assert sent[1] == '{"type":"end_stream"}'
    assert rig.microphone.recording_mode is False


def test_stop_while_permission_prompt_is_open_then_denied() -> None:
    async def scenario() -> Rig:
        gate = asyncio.Event()
        rig = Rig(
            permissions=FakePermission(granted=False, grant_on_request=False, gate=gate)
        )
        await rig.session.connect()

        starting = asyncio.create_task(rig.session.start_capture())
        await settle()
        stopping = asyncio.create_task(rig.session.stop_capture())
        await settle()

        gate.set()
        await asyncio.gather(starting, stopping)
        return rig

    rig = asyncio.run(scenario())

    assert [e.kind for e in rig.errors()] == [ErrorKind.PERMISSION_DENIED]
    assert rig.session.state is SessionState.IDLE
    assert rig.session.last_error == "Microphone permission denied"
    assert rig.ws.sent == []
    assert rig.microphone.started == 0


def test_reply_failing_to_play_does_not_disturb_next_recording() -> None:
    async def scenario() -> tuple[Rig, SessionState]:
        speaker = FakeSpeaker(fail=True, hold=True)
        rig = Rig(speaker=speaker)
        await rig.session.connect()
        await rig.session.start_capture()
        await rig.session.stop_capture()

        ws = rig.ws
        ws.feed_json({"type": "audio_start"})
        ws.feed(b"\x00" * 64)
        ws.feed_json({"type": "audio_end"})
        await wait_for(lambda: len(speaker.played) == 1)
        assert rig.session.state is SessionState.IDLE

        # next turn starts while the previous reply is still in the output
        assert await rig.session.start_capture() is True
        speaker.finish()
        await wait_for(lambda: bool(rig.errors()))
        during = rig.session.state

        await rig.session.stop_capture()
        return rig, during

    rig, during = asyncio.run(scenario())

    assert during is SessionState.RECORDING
    assert [e.kind for e in rig.errors()] == [ErrorKind.PLAYBACK_FAILURE]
    assert rig.session.state is SessionState.AWAITING_RESPONSE
    # two utterances, each one audio frame plus end_stream
    assert len(rig.ws.sent) == 4
    assert rig.ws.sent[3] == '{"type":"end_stream"}'
    assert rig.microphone.stopped == 2
    assert rig.microphone.recording_mode is False


def test_close_reports_last_error(monkeypatch: pytest.MonkeyPatch) -> None:
    emitted: list[dict[str, Any]] = []
    monkeypatch.setattr(runtime_mod, "log_event", lambda payload: emitted.append(dict(payload)))

    async def scenario() -> Rig:
        rig = Rig(permissions=FakePermission(granted=False, grant_on_request=False))
        await rig.session.connect()
        await rig.session.start_capture()
        await rig.session.close()
        return rig

    rig = asyncio.run(scenario())

    assert rig.session.last_error == "Microphone permission denied"
    closed = [e for e in emitted if e.get("event_type") == "SESSION_CLOSED"]
    assert len(closed) == 1
    assert closed[0]["last_error"] == "Microphone permission denied"
