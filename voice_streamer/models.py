"""Domain models for voice channel streaming."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional


class VideoCodec(str, enum.Enum):
    H264 = "H264"
    VP8 = "VP8"


@dataclass(frozen=True)
class Destination:
    network_id: str
    channel_id: str
    is_stage: bool = False

    def same_channel(self, other: Optional["Destination"]) -> bool:
        return (
            other is not None
            and other.network_id == self.network_id
            and other.channel_id == self.channel_id
        )

    def __str__(self) -> str:
        return f"{self.network_id}/{self.channel_id}"


@dataclass(frozen=True)
class StreamDescriptor:
    """One entry of the probed stream list."""

    kind: str
    codec_name: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    avg_frame_rate: Optional[str] = None


@dataclass(frozen=True)
class MediaInfo:
    streams: List[StreamDescriptor] = field(default_factory=list)

    def first_video(self) -> Optional[StreamDescriptor]:
        return next((s for s in self.streams if s.kind == "video"), None)

    def has_audio(self) -> bool:
        return any(s.kind == "audio" for s in self.streams)


@dataclass(frozen=True)
class QualityHints:
    """Per-request quality values supplied by the HTTP caller."""

    width: Optional[int] = None
    height: Optional[int] = None
    fps: Optional[int] = None
    bitrate_kbps: Optional[int] = None
    max_bitrate_kbps: Optional[int] = None
    h26x_preset: Optional[str] = None
    hardware_acceleration: Optional[bool] = None
    read_at_native_fps: Optional[bool] = None
    minimize_latency: Optional[bool] = None
    force_chacha20_encryption: Optional[bool] = None
    rtcp_sender_report_enabled: Optional[bool] = None


@dataclass(frozen=True)
class ResolvedStreamParams:
    width: int
    height: int
    fps: int
    bitrate_kbps: int
    max_bitrate_kbps: int
    video_codec: VideoCodec
    hardware_acceleration: bool
    read_at_native_fps: bool
    h26x_preset: str
    minimize_latency: bool
    force_chacha20_encryption: bool
    rtcp_sender_report_enabled: bool


@dataclass(frozen=True)
class TransportState:
    """What the voice transport currently reports about itself."""

    channel: Optional[Destination] = None
    is_streaming: bool = False


@dataclass(frozen=True)
class StreamTarget:
    """Where the transcoder writes its output for the transport to send."""

    url: str
    container: str = "nut"
