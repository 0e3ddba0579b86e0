# pylint: disable=missing-module-docstring,missing-function-docstring

from typing import Any

import pytest

from observability import metrics


def _capture(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    emitted: list[dict[str, Any]] = []
    monkeypatch.setattr(metrics, "log_event", lambda e: emitted.append(dict(e)))
    return emitted


def test_timed_emits_one_metric(monkeypatch: pytest.MonkeyPatch) -> None:
    emitted = _capture(monkeypatch)

    with metrics.timed("capture_finalize", session_id="sess_1", details={"turn_id": 2}):
        pass

    assert len(emitted) == 1
    event = emitted[0]
    assert event["event_type"] == "METRIC_TIMER"
    assert event["metric"] == "capture_finalize"
    assert event["session_id"] == "sess_1"
    assert event["details"] == {"turn_id": 2}
    assert event["value_ms"] >= 0


def test_timed_emits_even_when_block_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    emitted = _capture(monkeypatch)

    with pytest.raises(ValueError):
        with metrics.timed("capture_finalize"):
            raise ValueError("boom")

    assert len(emitted) == 1


def test_latency_meter_emits_once_per_start(monkeypatch: pytest.MonkeyPatch) -> None:
    emitted = _capture(monkeypatch)
    meter = metrics.LatencyMeter("end_stream_to_first_reply_ms", session_id="s")

    assert meter.stop() is None
    meter.start()
    assert meter.armed
    assert meter.stop({"first": "transcript"}) is not None
    assert meter.stop() is None
    assert not meter.armed

    assert [e["metric"] for e in emitted] == ["end_stream_to_first_reply_ms"]
    assert emitted[0]["details"] == {"first": "transcript"}


def test_latency_meter_reset_discards_measurement(monkeypatch: pytest.MonkeyPatch) -> None:
    emitted = _capture(monkeypatch)
    meter = metrics.LatencyMeter("end_stream_to_first_reply_ms")

    meter.start()
    meter.reset()

    assert meter.stop() is None
    assert not emitted
