"""Configuration helpers for the voice streamer."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _env_str(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_int(name: str) -> Optional[int]:
    value = _env_str(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def _env_float(name: str, default: float) -> float:
    value = _env_str(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


def _env_bool(name: str) -> Optional[bool]:
    value = _env_str(name)
    if value is None:
        return None
    lowered = value.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


@dataclass
class OperatorStreamConfig:
    """Deployment-level stream settings. ``None`` means the operator left it unset."""

    width: Optional[int] = None
    height: Optional[int] = None
    fps: Optional[int] = None
    bitrate_kbps: Optional[int] = None
    max_bitrate_kbps: Optional[int] = None
    hardware_acceleration: Optional[bool] = None
    h26x_preset: Optional[str] = None
    read_at_native_fps: Optional[bool] = None
    max_fps: Optional[int] = None
    minimize_latency: Optional[bool] = None
    force_chacha20_encryption: Optional[bool] = None
    rtcp_sender_report_enabled: Optional[bool] = None


@dataclass
class NotifierConfig:
    webhook_url: Optional[str] = None


@dataclass
class EngineConfig:
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    probe_timeout_seconds: float = 15.0


@dataclass
class BotConfig:
    project_name: str = "Voice Streamer"
    token: Optional[str] = None
    transport_factory: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"
    play_settle_seconds: float = 2.0
    play_cooldown_seconds: float = 5.0
    cancel_grace_seconds: float = 1.0
    orphan_sweep_seconds: float = 30.0
    stream: OperatorStreamConfig = field(default_factory=OperatorStreamConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    notifier: Optional[NotifierConfig] = None


def load_stream_config() -> OperatorStreamConfig:
    """Read the operator precedence tier; unset variables stay ``None``."""
    return OperatorStreamConfig(
        width=_env_int("WIDTH"),
        height=_env_int("HEIGHT"),
        fps=_env_int("FPS"),
        bitrate_kbps=_env_int("BITRATE_KBPS"),
        max_bitrate_kbps=_env_int("MAX_BITRATE_KBPS"),
        hardware_acceleration=_env_bool("HARDWARE_ACCELERATION"),
        h26x_preset=_env_str("H26X_PRESET"),
        read_at_native_fps=_env_bool("READ_AT_NATIVE_FPS"),
        max_fps=_env_int("MAX_FPS"),
        minimize_latency=_env_bool("MINIMIZE_LATENCY"),
        force_chacha20_encryption=_env_bool("FORCE_CHACHA20_ENCRYPTION"),
        rtcp_sender_report_enabled=_env_bool("RTCP_SENDER_REPORT_ENABLED"),
    )


def load_config() -> BotConfig:
    """Load configuration from environment variables."""
    engine = EngineConfig(
        ffmpeg_path=_env_str("FFMPEG_PATH") or "ffmpeg",
        ffprobe_path=_env_str("FFPROBE_PATH") or "ffprobe",
        probe_timeout_seconds=_env_float("PROBE_TIMEOUT_SECONDS", 15.0),
    )

    return BotConfig(
        project_name=os.getenv("PROJECT_NAME", "Voice Streamer"),
        token=_env_str("VOICE_TOKEN"),
        transport_factory=_env_str("VOICE_TRANSPORT"),
        host=os.getenv("HOST", "0.0.0.0"),
        port=_env_int("PORT") or 3000,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        play_settle_seconds=_env_float("PLAY_SETTLE_SECONDS", 2.0),
        play_cooldown_seconds=_env_float("PLAY_COOLDOWN_SECONDS", 5.0),
        cancel_grace_seconds=_env_float("CANCEL_GRACE_SECONDS", 1.0),
        orphan_sweep_seconds=_env_float("ORPHAN_SWEEP_SECONDS", 30.0),
        stream=load_stream_config(),
        engine=engine,
        notifier=NotifierConfig(webhook_url=_env_str("NOTIFY_WEBHOOK_URL")),
    )
