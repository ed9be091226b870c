"""Manage the voice connection and the single outbound transcode."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from dateutil.tz import tzutc

from .config import BotConfig, NotifierConfig
from .errors import ErrorCode, StreamControlError
from .models import Destination, QualityHints, ResolvedStreamParams, StreamDescriptor
from .notifier import Notifier
from .session_store import SessionState, SessionStore
from .stream_params import resolve_stream_params
from .transcoder import FFmpegEngine, OrphanReaper, ProbeError, TranscodeEngine, TranscodeError
from .transport import VoiceTransport

logger = logging.getLogger(__name__)


class StreamingManager:
    """Coordinates the voice transport, ffmpeg, and the session record.

    ``play`` is admitted through the store's cooldown gate, so overlapping
    requests are rejected rather than queued. The join/switch/start steps and
    the disconnect teardown also run under ``_lifecycle_lock`` so a disconnect
    never interleaves with a half-finished switch.
    """

    def __init__(
        self,
        config: BotConfig,
        transport: VoiceTransport,
        engine: Optional[TranscodeEngine] = None,
        store: Optional[SessionStore] = None,
        notifier: Optional[Notifier] = None,
        reaper: Optional[OrphanReaper] = None,
    ):
        self.config = config
        self.transport = transport
        self.engine = engine or FFmpegEngine(config.engine)
        self.store = store or SessionStore(cooldown_seconds=config.play_cooldown_seconds)
        self.notifier = notifier or Notifier(config.notifier or NotifierConfig())
        self.reaper = reaper or OrphanReaper()
        self.scheduler = AsyncIOScheduler(timezone=tzutc())
        self._lifecycle_lock: Optional[asyncio.Lock] = None
        self._supervisors: Set[asyncio.Task] = set()

    def start(self) -> None:
        """Start the orphan sweep. Needs a running event loop."""
        self.scheduler.add_job(
            self.reaper.sweep,
            trigger="interval",
            seconds=self.config.orphan_sweep_seconds,
            id="orphan-sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()

    async def shutdown(self) -> None:
        try:
            await self.disconnect()
        except StreamControlError as exc:
            logger.error("Disconnect during shutdown failed: %s", exc)
        await self.reaper.sweep()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            # Newer APScheduler releases stop the scheduler on the next loop iteration.
            await asyncio.sleep(0)

    def _lock(self) -> asyncio.Lock:
        # Created on first use so it is bound to the serving event loop.
        if self._lifecycle_lock is None:
            self._lifecycle_lock = asyncio.Lock()
        return self._lifecycle_lock

    async def play(
        self,
        network_id: str,
        channel_id: str,
        stream_url: str,
        hints: Optional[QualityHints] = None,
    ) -> ResolvedStreamParams:
        """Join the destination and start (or switch to) ``stream_url``.

        Returns once the transcode has started and the settle delay has
        passed; the transcode itself keeps running in the background.
        """
        if not self.store.try_admit():
            logger.info("Rejected play for %s/%s: cooldown active", network_id, channel_id)
            raise StreamControlError(ErrorCode.BUSY)

        async with self._lock():
            destination = await self._resolve_destination(network_id, channel_id)
            await self._ensure_joined(destination)
            video, include_audio = await self._probe(stream_url)
            params = resolve_stream_params(self.config.stream, hints or QualityHints(), video)
            logger.info("Resolved stream parameters for %s: %s", stream_url, params)

            handle = self.store.active_transcode()
            if handle is not None or self.transport.current_state().is_streaming:
                logger.info("Already streaming, switching streams...")
                self.store.transition(SessionState.SWITCHING)
                await self._teardown_stream(handle)
            else:
                logger.info("No active stream, starting new stream...")
            await self._start_transcode(stream_url, params, include_audio)

        await asyncio.sleep(self.config.play_settle_seconds)
        return params

    async def disconnect(self) -> None:
        """Stop any transcode and leave the voice channel. A no-op when not joined."""
        async with self._lock():
            handle = self.store.active_transcode()
            joined = (
                self.store.current_destination() is not None
                or self.transport.current_state().channel is not None
            )
            if handle is None and not joined and self.store.state is SessionState.IDLE:
                logger.info("Disconnect requested with no active session")
                return

            self.store.transition(SessionState.DISCONNECTING)
            if handle is not None:
                logger.info("Stopping the current stream...")
            errors = await self._teardown_stream(handle)

            logger.info("Leaving the voice channel...")
            try:
                await self.transport.leave_voice()
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to leave voice channel: %s", exc)
                errors.append(exc)
            self.store.clear_destination()
            self.store.transition(SessionState.IDLE)

        self._notify("disconnected", "Left the voice channel.")
        if errors:
            raise StreamControlError(ErrorCode.TEARDOWN_FAILED)

    def status(self) -> Dict[str, Any]:
        snapshot = self.store.snapshot()
        transport_state = self.transport.current_state()
        channel = transport_state.channel
        snapshot["transport"] = {
            "channel": str(channel) if channel else None,
            "isStreaming": transport_state.is_streaming,
        }
        snapshot["orphans"] = len(self.reaper)
        return snapshot

    async def _resolve_destination(self, network_id: str, channel_id: str) -> Destination:
        destination = await self.transport.resolve_destination(network_id, channel_id)
        if destination is None:
            logger.info("Voice channel %s/%s not found", network_id, channel_id)
            raise StreamControlError(ErrorCode.NOT_FOUND)
        return destination

    async def _ensure_joined(self, destination: Destination) -> None:
        if destination.same_channel(self.store.current_destination()):
            logger.info("Already connected to voice channel %s", destination)
        else:
            logger.info("Joining voice channel %s", destination)
            try:
                await self.transport.join_voice(destination)
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to join voice channel %s: %s", destination, exc)
                raise StreamControlError(ErrorCode.JOIN_FAILED) from exc
            self.store.set_destination(destination)
            if self.store.active_transcode() is None:
                self.store.transition(SessionState.JOINED_IDLE)

        reported = self.transport.current_state().channel
        if not destination.same_channel(reported):
            logger.error("Session expects %s but transport reports %s", destination, reported)
            raise StreamControlError(
                ErrorCode.DESYNCHRONIZED,
                f"Session expects voice channel {destination} but the connection reports "
                f"{reported or 'no channel'}; disconnect and retry.",
            )

    async def _probe(self, stream_url: str) -> Tuple[StreamDescriptor, bool]:
        try:
            info = await self.engine.probe(stream_url)
        except ProbeError as exc:
            logger.error("Error fetching metadata for %s: %s", stream_url, exc)
            raise StreamControlError(ErrorCode.PROBE_FAILED) from exc

        video = info.first_video()
        if video is None:
            logger.error("No video stream found in %s", stream_url)
            raise StreamControlError(ErrorCode.NO_VIDEO_STREAM)
        return video, self.engine.has_audio(info)

    async def _start_transcode(self, stream_url: str, params: ResolvedStreamParams, include_audio: bool) -> None:
        try:
            target = await self.transport.create_stream(params)
            handle = await self.engine.start(stream_url, params, target, include_audio)
        except Exception as exc:  # noqa: BLE001
            logger.error("Error while starting stream for %s: %s", stream_url, exc)
            await self._stop_transport_stream()
            self.store.transition(SessionState.JOINED_IDLE)
            self._notify("stream_failed", f"Could not start {stream_url}: {exc}")
            raise StreamControlError(ErrorCode.TRANSCODE_START_FAILED) from exc

        self.store.set_active_transcode(handle)
        self._signal(True)
        self.store.transition(SessionState.STREAMING)
        logger.info("Started playing %s (transcode %s)", stream_url, handle.id)
        self._notify("stream_started", f"Streaming {stream_url}.")

        supervisor = asyncio.create_task(self._supervise(handle, stream_url))
        self._supervisors.add(supervisor)
        supervisor.add_done_callback(self._supervisors.discard)

    async def _supervise(self, handle: Any, stream_url: str) -> None:
        try:
            finished = await handle.wait()
        except TranscodeError as exc:
            logger.error("Error while playing %s: %s", stream_url, exc)
            outcome = "failed"
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error while supervising %s: %s", stream_url, exc)
            outcome = "failed"
        else:
            outcome = "finished" if finished else "canceled"

        # Switching/disconnecting paths own the teardown of the handle they replace.
        if self.store.state is not SessionState.STREAMING or not self.store.clear_active_transcode(handle):
            logger.info("Transcode %s ended after being superseded", handle.id)
            return

        logger.info("Transcode %s for %s %s", handle.id, stream_url, outcome)
        self._signal(False)
        self.store.transition(SessionState.JOINED_IDLE)
        self._notify(f"stream_{outcome}", f"Stream {stream_url} {outcome}.")

    async def _teardown_stream(self, handle: Any) -> List[Exception]:
        """Signal inactive, cancel ``handle`` with a bounded wait and close the transport stream."""
        errors: List[Exception] = []
        self._signal(False)
        if handle is not None:
            try:
                exited = await handle.stop(self.config.cancel_grace_seconds)
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to stop transcode %s: %s", handle.id, exc)
                errors.append(exc)
                exited = False
            if not exited:
                self.reaper.adopt(handle)
            self.store.clear_active_transcode(handle)
        error = await self._stop_transport_stream()
        if error is not None:
            errors.append(error)
        return errors

    async def _stop_transport_stream(self) -> Optional[Exception]:
        if not self.transport.current_state().is_streaming:
            return None
        try:
            await self.transport.stop_stream()
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to stop transport stream: %s", exc)
            return exc
        return None

    def _signal(self, active: bool) -> None:
        try:
            self.transport.set_speaking(active)
            self.transport.set_video_status(active)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to set speaking/video status to %s: %s", active, exc)

    def _notify(self, event: str, message: str) -> None:
        if not self.notifier.enabled:
            return
        asyncio.get_running_loop().run_in_executor(None, self.notifier.notify, event, message)
