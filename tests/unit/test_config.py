# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from config import ClientConfig, ws_url_from_api_url

_VARS = (
    "VOICE_API_URL",
    "VOICE_WS_URL",
    "VOICE_RECONNECT_DELAY_MS",
    "VOICE_TURN_TIMEOUT_MS",
    "VOICE_SAMPLE_RATE_HZ",
    "VOICE_INPUT_DEVICE",
    "VOICE_OUTPUT_DEVICE",
    "LOG_LEVEL",
    "ENABLE_JSON_LOGS",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.mark.parametrize(
    ("api_url", "expected"),
    [
        ("http://localhost:8000", "ws://localhost:8000/api/v1/voice/ws"),
        ("https://voice.example.com/", "wss://voice.example.com/api/v1/voice/ws"),
    ],
)
def test_ws_url_is_derived_from_api_url(api_url: str, expected: str) -> None:
    assert ws_url_from_api_url(api_url) == expected


def test_defaults() -> None:
    cfg = ClientConfig.load_from_env()

    assert cfg.ws_url == "ws://localhost:8000/api/v1/voice/ws"
    assert cfg.reconnect_delay_ms == 3000
    assert cfg.turn_timeout_ms is None
    assert cfg.sample_rate_hz == 16000
    assert cfg.input_device is None
    assert cfg.output_device is None
    assert cfg.log_level == "INFO"
    assert cfg.enable_json_logs is True


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VOICE_API_URL", "https://api.example.com")
    monkeypatch.setenv("VOICE_RECONNECT_DELAY_MS", "1500")
    monkeypatch.setenv("VOICE_TURN_TIMEOUT_MS", "20000")
    monkeypatch.setenv("VOICE_SAMPLE_RATE_HZ", "48000")
    monkeypatch.setenv("VOICE_INPUT_DEVICE", "2")
    monkeypatch.setenv("VOICE_OUTPUT_DEVICE", "USB Headset")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("ENABLE_JSON_LOGS", "0")

    cfg = ClientConfig.load_from_env()

    assert cfg.ws_url == "wss://api.example.com/api/v1/voice/ws"
    assert cfg.reconnect_delay_ms == 1500
    assert cfg.turn_timeout_ms == 20000
    assert cfg.sample_rate_hz == 48000
    assert cfg.input_device == 2
    assert cfg.output_device == "USB Headset"
    assert cfg.log_level == "DEBUG"
    assert cfg.enable_json_logs is False


def test_explicit_ws_url_wins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VOICE_API_URL", "https://ignored.example.com")
    monkeypatch.setenv("VOICE_WS_URL", "ws://10.0.0.5:9000/custom")

    assert ClientConfig.load_from_env().ws_url == "ws://10.0.0.5:9000/custom"


def test_bad_number_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VOICE_RECONNECT_DELAY_MS", "soon")

    with pytest.raises(ValueError):
        ClientConfig.load_from_env()
