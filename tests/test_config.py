import sys
import types

import pytest

from voice_streamer.config import BotConfig, load_config, load_stream_config
from voice_streamer.transport import VoiceTransport, load_transport

_STREAM_ENV = [
    "WIDTH",
    "HEIGHT",
    "FPS",
    "BITRATE_KBPS",
    "MAX_BITRATE_KBPS",
    "HARDWARE_ACCELERATION",
    "H26X_PRESET",
    "READ_AT_NATIVE_FPS",
    "MAX_FPS",
    "MINIMIZE_LATENCY",
    "FORCE_CHACHA20_ENCRYPTION",
    "RTCP_SENDER_REPORT_ENABLED",
    "PORT",
    "VOICE_TOKEN",
    "VOICE_TRANSPORT",
    "NOTIFY_WEBHOOK_URL",
    "PLAY_SETTLE_SECONDS",
    "PLAY_COOLDOWN_SECONDS",
    "CANCEL_GRACE_SECONDS",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _STREAM_ENV:
        monkeypatch.delenv(name, raising=False)


def test_unset_operator_values_stay_absent():
    stream = load_stream_config()
    assert all(value is None for value in vars(stream).values())


def test_operator_values_are_parsed(monkeypatch):
    monkeypatch.setenv("WIDTH", "1280")
    monkeypatch.setenv("HEIGHT", "720")
    monkeypatch.setenv("FPS", "30")
    monkeypatch.setenv("MAX_FPS", "0")
    monkeypatch.setenv("HARDWARE_ACCELERATION", "true")
    monkeypatch.setenv("READ_AT_NATIVE_FPS", "No")
    monkeypatch.setenv("H26X_PRESET", " veryfast ")
    monkeypatch.setenv("VIDEO_CODEC", "VP8")

    stream = load_stream_config()

    assert (stream.width, stream.height, stream.fps, stream.max_fps) == (1280, 720, 30, 0)
    assert stream.hardware_acceleration is True
    assert stream.read_at_native_fps is False
    assert stream.h26x_preset == "veryfast"
    assert not hasattr(stream, "video_codec")


@pytest.mark.parametrize("name,value", [("FPS", "thirty"), ("MINIMIZE_LATENCY", "maybe")])
def test_invalid_values_raise(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError, match=name):
        load_stream_config()


def test_load_config_defaults(monkeypatch):
    config = load_config()

    assert config.port == 3000
    assert config.play_settle_seconds == 2.0
    assert config.play_cooldown_seconds == 5.0
    assert config.cancel_grace_seconds == 1.0
    assert config.notifier.webhook_url is None
    assert config.transport_factory is None


def test_load_config_overrides(monkeypatch):
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("VOICE_TOKEN", "secret")
    monkeypatch.setenv("VOICE_TRANSPORT", "pkg.mod:build")
    monkeypatch.setenv("PLAY_SETTLE_SECONDS", "1.5")
    monkeypatch.setenv("NOTIFY_WEBHOOK_URL", "https://hooks.example.com/x")

    config = load_config()

    assert config.port == 8080
    assert config.token == "secret"
    assert config.transport_factory == "pkg.mod:build"
    assert config.play_settle_seconds == 1.5
    assert config.notifier.webhook_url == "https://hooks.example.com/x"


def test_load_transport_requires_factory():
    with pytest.raises(RuntimeError, match="VOICE_TRANSPORT"):
        load_transport(BotConfig())
    with pytest.raises(RuntimeError, match="package.module:factory"):
        load_transport(BotConfig(transport_factory="no_colon_here"))


def _install_factory_module(monkeypatch, factory):
    module = types.ModuleType("custom_transport")
    module.build = factory
    monkeypatch.setitem(sys.modules, "custom_transport", module)


def test_load_transport_calls_factory(monkeypatch, transport):
    seen = []

    def build(config):
        seen.append(config.token)
        return transport

    _install_factory_module(monkeypatch, build)

    loaded = load_transport(BotConfig(transport_factory="custom_transport:build", token="t"))

    assert loaded is transport
    assert isinstance(loaded, VoiceTransport)
    assert seen == ["t"]


def test_load_transport_rejects_non_transport(monkeypatch):
    _install_factory_module(monkeypatch, lambda config: object())

    with pytest.raises(TypeError):
        load_transport(BotConfig(transport_factory="custom_transport:build"))
