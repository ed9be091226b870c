"""Probe sources and run ffmpeg transcodes as cancelable background tasks."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import shlex
from typing import Any, Dict, List, Protocol

from .config import EngineConfig
from .models import MediaInfo, ResolvedStreamParams, StreamDescriptor, StreamTarget, VideoCodec

logger = logging.getLogger(__name__)

AUDIO_BITRATE = "128k"

_handle_ids = itertools.count(1)


class ProbeError(RuntimeError):
    pass


class TranscodeError(RuntimeError):
    pass


class TranscodeEngine(Protocol):
    async def probe(self, url: str) -> MediaInfo:
        ...

    def has_audio(self, info: MediaInfo) -> bool:
        ...

    async def start(
        self, url: str, params: ResolvedStreamParams, target: StreamTarget, include_audio: bool
    ) -> "TranscodeHandle":
        ...


def _terminate(process: Any) -> None:
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        pass


class TranscodeHandle:
    """A running ffmpeg process supervised by an asyncio task.

    ``cancel`` is cooperative: it signals ffmpeg to stop and cancels the task,
    but does not wait. ``stop`` adds a bounded wait for the process to exit.
    """

    def __init__(self, process: Any, source: str):
        self.id = next(_handle_ids)
        self.source = source
        self.process = process
        self._task = asyncio.create_task(self._run(), name=f"transcode-{self.id}")

    def __repr__(self) -> str:
        return f"<TranscodeHandle {self.id} pid={getattr(self.process, 'pid', None)}>"

    async def _run(self) -> int:
        try:
            _, stderr = await self.process.communicate()
        except asyncio.CancelledError:
            _terminate(self.process)
            raise
        returncode = self.process.returncode
        if returncode != 0:
            tail = (stderr or b"").decode(errors="replace").strip().splitlines()[-5:]
            raise TranscodeError(f"ffmpeg exited with code {returncode}: {' | '.join(tail)}")
        return returncode

    @property
    def running(self) -> bool:
        return self.process.returncode is None

    async def wait(self) -> bool:
        """Wait for the transcode to end; ``False`` if it was canceled.

        Raises :class:`TranscodeError` when ffmpeg fails.
        """
        await asyncio.wait({self._task})
        if self._task.cancelled():
            return False
        self._task.result()
        return True

    def cancel(self) -> None:
        _terminate(self.process)
        self._task.cancel()

    async def stop(self, grace: float) -> bool:
        """Cancel and wait up to ``grace`` seconds; ``True`` once the process has exited."""
        self.cancel()
        try:
            await asyncio.wait_for(self.process.wait(), timeout=grace)
        except asyncio.TimeoutError:
            return False
        return True

    def kill(self) -> None:
        if not self.running:
            return
        try:
            self.process.kill()
        except ProcessLookupError:
            pass


class OrphanReaper:
    """Holds transcodes that outlived their cancel grace period until they are dead."""

    def __init__(self) -> None:
        self._orphans: Dict[int, TranscodeHandle] = {}

    def __len__(self) -> int:
        return len(self._orphans)

    def adopt(self, handle: TranscodeHandle) -> None:
        logger.warning("Transcode %s did not exit in time; leaving it to the reaper.", handle.id)
        self._orphans[handle.id] = handle

    async def sweep(self) -> int:
        """Kill live orphans and forget exited ones. Returns how many were forgotten."""
        forgotten = 0
        for handle_id, handle in list(self._orphans.items()):
            if handle.running:
                try:
                    handle.kill()
                except OSError as exc:
                    logger.error("Failed to kill orphaned transcode %s: %s", handle_id, exc)
                else:
                    logger.info("Killed orphaned transcode %s", handle_id)
                continue
            self._orphans.pop(handle_id, None)
            forgotten += 1
        return forgotten


def parse_probe_output(data: Dict[str, Any]) -> MediaInfo:
    streams: List[StreamDescriptor] = []
    for stream in data.get("streams", []):
        frame_rate = stream.get("avg_frame_rate")
        if not frame_rate or frame_rate == "0/0":
            frame_rate = stream.get("r_frame_rate")
        streams.append(
            StreamDescriptor(
                kind=stream.get("codec_type", ""),
                codec_name=(stream.get("codec_name") or "").lower() or None,
                width=stream.get("width"),
                height=stream.get("height"),
                avg_frame_rate=frame_rate,
            )
        )
    return MediaInfo(streams=streams)


def build_ffmpeg_command(
    ffmpeg_path: str,
    source: str,
    params: ResolvedStreamParams,
    target: StreamTarget,
    include_audio: bool,
) -> List[str]:
    input_args: List[str] = []
    if params.hardware_acceleration:
        input_args.extend(["-hwaccel", "auto"])
    if params.read_at_native_fps:
        input_args.append("-re")
    input_args.extend(["-i", source])

    filters = [
        f"scale={params.width}:{params.height}:force_original_aspect_ratio=decrease",
        "pad=ceil(iw/2)*2:ceil(ih/2)*2",
        f"fps={params.fps}",
    ]

    if params.video_codec is VideoCodec.VP8:
        codec_args = ["-c:v", "libvpx", "-deadline", "realtime", "-cpu-used", "8"]
        if params.minimize_latency:
            codec_args.extend(["-lag-in-frames", "0"])
    else:
        codec_args = ["-c:v", "libx264", "-preset", params.h26x_preset, "-bf", "0"]
        if params.minimize_latency:
            codec_args.extend(["-tune", "zerolatency"])

    if include_audio:
        audio_args = ["-c:a", "libopus", "-ar", "48000", "-ac", "2", "-b:a", AUDIO_BITRATE]
    else:
        audio_args = ["-an"]

    return [
        ffmpeg_path,
        "-hide_banner",
        "-nostdin",
        "-loglevel",
        "error",
        *input_args,
        "-vf",
        ",".join(filters),
        *codec_args,
        "-g",
        str(params.fps),
        "-b:v",
        f"{params.bitrate_kbps}k",
        "-maxrate",
        f"{params.max_bitrate_kbps}k",
        "-bufsize",
        f"{params.max_bitrate_kbps}k",
        "-pix_fmt",
        "yuv420p",
        *audio_args,
        "-f",
        target.container,
        target.url,
    ]


class FFmpegEngine:
    """Runs ffprobe/ffmpeg as asyncio subprocesses."""

    def __init__(self, config: EngineConfig):
        self.config = config

    async def probe(self, url: str) -> MediaInfo:
        cmd = [
            self.config.ffprobe_path,
            "-v",
            "quiet",
            "-print_format",
            "json",
            "-show_streams",
            url,
        ]
        logger.info("Probing %s", url)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.DEVNULL
            )
        except OSError as exc:
            raise ProbeError(f"failed to launch ffprobe: {exc}") from exc

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.config.probe_timeout_seconds)
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise ProbeError(f"ffprobe timed out after {self.config.probe_timeout_seconds}s") from exc

        if process.returncode != 0:
            raise ProbeError(f"ffprobe exited with code {process.returncode}")
        try:
            data = json.loads(stdout)
        except ValueError as exc:
            raise ProbeError("ffprobe returned invalid JSON") from exc
        return parse_probe_output(data)

    def has_audio(self, info: MediaInfo) -> bool:
        return info.has_audio()

    async def start(
        self, url: str, params: ResolvedStreamParams, target: StreamTarget, include_audio: bool
    ) -> TranscodeHandle:
        cmd = build_ffmpeg_command(self.config.ffmpeg_path, url, params, target, include_audio)
        logger.info("Launching ffmpeg: %s", shlex.join(cmd))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise TranscodeError(f"failed to launch ffmpeg: {exc}") from exc
        return TranscodeHandle(process, url)
