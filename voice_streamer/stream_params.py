"""Derive per-call encoding parameters from operator config, caller hints and the source."""

from __future__ import annotations

import math
from fractions import Fraction
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

from .config import OperatorStreamConfig
from .models import QualityHints, ResolvedStreamParams, StreamDescriptor, VideoCodec

T = TypeVar("T")
Provider = Callable[[], Optional[T]]

DEFAULT_WIDTH = 1280
DEFAULT_HEIGHT = 720
DEFAULT_FPS = 30

HIGH_FPS_THRESHOLD = 50
DERATE_FPS_THRESHOLD = 30
LOW_FPS_DERATE = 0.85

# (min height, (base, max) at >= 50 fps, (base, max) below 50 fps), in kbps.
_BITRATE_TIERS: Tuple[Tuple[int, Tuple[int, int], Tuple[int, int]], ...] = (
    (2160, (20000, 25000), (18000, 23000)),
    (1440, (14000, 16000), (12000, 14000)),
    (1080, (10000, 12000), (8000, 10000)),
    (720, (7000, 9000), (5000, 7000)),
)
_FALLBACK_BITRATE = (6000, 8000)

# Defaults used when neither the operator nor the caller sets the option.
OPTION_DEFAULTS = {
    "hardware_acceleration": False,
    "read_at_native_fps": True,
    "h26x_preset": "ultrafast",
    "minimize_latency": True,
    "force_chacha20_encryption": False,
    "rtcp_sender_report_enabled": True,
}

_VP8_SOURCES = {"vp8", "vp9"}


def bitrate_for(height: int, framerate: int) -> Tuple[int, int]:
    """Return ``(bitrate_kbps, max_bitrate_kbps)`` for an output height and frame rate."""
    base, maximum = _FALLBACK_BITRATE
    for min_height, high_fps, low_fps in _BITRATE_TIERS:
        if height >= min_height:
            base, maximum = high_fps if framerate >= HIGH_FPS_THRESHOLD else low_fps
            break

    if framerate < DERATE_FPS_THRESHOLD:
        base = round(base * LOW_FPS_DERATE)
        maximum = round(maximum * LOW_FPS_DERATE)
    return base, maximum


def parse_frame_rate(value: Optional[str]) -> int:
    """Floor a probed frame rate (``"30000/1001"`` or ``"29.97"``) to whole frames per second."""
    if not value:
        return DEFAULT_FPS
    try:
        fps = math.floor(Fraction(str(value).strip()))
    except (ValueError, ZeroDivisionError):
        return DEFAULT_FPS
    return fps if fps > 0 else DEFAULT_FPS


def clamp_fps(fps: int, ceiling: Optional[int]) -> int:
    # A ceiling of zero or below means no ceiling.
    if ceiling and ceiling > 0 and fps > ceiling:
        return ceiling
    return fps


def codec_for(codec_name: Optional[str]) -> VideoCodec:
    if codec_name and codec_name.lower() in _VP8_SOURCES:
        return VideoCodec.VP8
    return VideoCodec.H264


def first_available(providers: Sequence[Provider[T]]) -> Optional[T]:
    """Return the first value a provider supplies, in provider order."""
    for provider in providers:
        value = provider()
        if value is not None:
            return value
    return None


def precedence(operator_value: Optional[T], caller_value: Optional[T], derived: Provider[T]) -> List[Provider[T]]:
    """Operator value, then caller hint, then the derived value."""
    return [lambda: operator_value, lambda: caller_value, derived]


def resolve_stream_params(
    operator: OperatorStreamConfig,
    hints: QualityHints,
    video: StreamDescriptor,
) -> ResolvedStreamParams:
    """Resolve stream parameters for a source whose first video descriptor is ``video``."""
    width = first_available(precedence(operator.width, hints.width, lambda: video.width or DEFAULT_WIDTH))
    height = first_available(precedence(operator.height, hints.height, lambda: video.height or DEFAULT_HEIGHT))
    fps = first_available(precedence(operator.fps, hints.fps, lambda: parse_frame_rate(video.avg_frame_rate)))
    fps = clamp_fps(fps, operator.max_fps)

    derived_bitrate, derived_max_bitrate = bitrate_for(height, fps)
    bitrate_kbps = first_available(
        precedence(operator.bitrate_kbps, hints.bitrate_kbps, lambda: derived_bitrate)
    )
    max_bitrate_kbps = first_available(
        precedence(operator.max_bitrate_kbps, hints.max_bitrate_kbps, lambda: derived_max_bitrate)
    )

    options = {
        name: first_available(
            precedence(getattr(operator, name), getattr(hints, name), lambda default=default: default)
        )
        for name, default in OPTION_DEFAULTS.items()
    }

    return ResolvedStreamParams(
        width=width,
        height=height,
        fps=fps,
        bitrate_kbps=bitrate_kbps,
        max_bitrate_kbps=max_bitrate_kbps,
        video_codec=codec_for(video.codec_name),
        **options,
    )
