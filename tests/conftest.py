import asyncio
import itertools
from typing import List, Optional

import pytest

from voice_streamer.config import BotConfig, NotifierConfig, OperatorStreamConfig
from voice_streamer.models import (
    Destination,
    MediaInfo,
    ResolvedStreamParams,
    StreamDescriptor,
    StreamTarget,
    TransportState,
)
from voice_streamer.session_store import SessionStore
from voice_streamer.stream_manager import StreamingManager
from voice_streamer.transcoder import ProbeError

_fake_ids = itertools.count(1)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeHandle:
    """Stands in for a running transcode; ``finish`` simulates ffmpeg exiting."""

    def __init__(self, source: str, exit_on_cancel: bool = True):
        self.id = next(_fake_ids)
        self.source = source
        self.exit_on_cancel = exit_on_cancel
        self.canceled = False
        self.killed = False
        self._error: Optional[BaseException] = None
        self._done = asyncio.Event()

    @property
    def running(self) -> bool:
        return not self._done.is_set()

    def finish(self, error: Optional[BaseException] = None) -> None:
        self._error = error
        self._done.set()

    async def wait(self) -> bool:
        await self._done.wait()
        if self._error is not None:
            raise self._error
        return not self.canceled

    def cancel(self) -> None:
        self.canceled = True
        if self.exit_on_cancel:
            self._done.set()

    async def stop(self, grace: float) -> bool:
        self.cancel()
        try:
            await asyncio.wait_for(self._done.wait(), timeout=grace)
        except asyncio.TimeoutError:
            return False
        return True

    def kill(self) -> None:
        self.killed = True
        self._done.set()


class FakeEngine:
    def __init__(self) -> None:
        self.info = MediaInfo(
            streams=[
                StreamDescriptor(kind="video", codec_name="h264", width=1920, height=1080, avg_frame_rate="30/1"),
                StreamDescriptor(kind="audio", codec_name="aac"),
            ]
        )
        self.probe_error: Optional[Exception] = None
        self.start_error: Optional[Exception] = None
        self.exit_on_cancel = True
        self.probed: List[str] = []
        self.handles: List[FakeHandle] = []
        self.started: List[tuple] = []
        self.alive_at_start: List[int] = []

    async def probe(self, url: str) -> MediaInfo:
        self.probed.append(url)
        if self.probe_error is not None:
            raise self.probe_error
        return self.info

    def has_audio(self, info: MediaInfo) -> bool:
        return info.has_audio()

    async def start(self, url, params: ResolvedStreamParams, target: StreamTarget, include_audio: bool):
        if self.start_error is not None:
            raise self.start_error
        self.alive_at_start.append(len(self.alive()))
        handle = FakeHandle(url, exit_on_cancel=self.exit_on_cancel)
        self.handles.append(handle)
        self.started.append((url, params, include_audio))
        return handle

    def alive(self) -> List[FakeHandle]:
        return [handle for handle in self.handles if handle.running]


class FakeTransport:
    def __init__(self) -> None:
        self.channels = {
            ("guild-1", "voice-1"): Destination("guild-1", "voice-1"),
            ("guild-1", "voice-2"): Destination("guild-1", "voice-2"),
            ("guild-2", "stage-1"): Destination("guild-2", "stage-1", is_stage=True),
        }
        self.channel: Optional[Destination] = None
        self.streaming = False
        self.speaking = False
        self.video = False
        self.joins: List[Destination] = []
        self.leaves = 0
        self.created: List[ResolvedStreamParams] = []
        self.stream_stops = 0
        self.join_error: Optional[Exception] = None
        self.leave_error: Optional[Exception] = None
        self.create_error: Optional[Exception] = None

    async def resolve_destination(self, network_id: str, channel_id: str) -> Optional[Destination]:
        return self.channels.get((network_id, channel_id))

    async def join_voice(self, destination: Destination) -> None:
        if self.join_error is not None:
            raise self.join_error
        self.joins.append(destination)
        self.channel = destination

    async def leave_voice(self) -> None:
        if self.leave_error is not None:
            raise self.leave_error
        self.leaves += 1
        self.channel = None
        self.streaming = False

    def current_state(self) -> TransportState:
        return TransportState(channel=self.channel, is_streaming=self.streaming)

    async def create_stream(self, params: ResolvedStreamParams) -> StreamTarget:
        if self.create_error is not None:
            raise self.create_error
        self.created.append(params)
        self.streaming = True
        return StreamTarget(url="udp://127.0.0.1:5004")

    async def stop_stream(self) -> None:
        if not self.streaming:
            raise RuntimeError("no stream connection")
        self.stream_stops += 1
        self.streaming = False

    def set_speaking(self, speaking: bool) -> None:
        self.speaking = speaking

    def set_video_status(self, enabled: bool) -> None:
        self.video = enabled


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bot_config():
    return BotConfig(
        play_settle_seconds=0,
        play_cooldown_seconds=5.0,
        cancel_grace_seconds=0.05,
        stream=OperatorStreamConfig(),
        notifier=NotifierConfig(),
    )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def store(clock):
    return SessionStore(cooldown_seconds=5.0, time_fn=clock)


@pytest.fixture
def manager(bot_config, transport, engine, store):
    return StreamingManager(bot_config, transport, engine=engine, store=store)


@pytest.fixture
def probe_error():
    return ProbeError("ffprobe exited with code 1")
