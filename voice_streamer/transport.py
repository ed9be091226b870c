"""Voice transport interface and the loader for its concrete implementation."""

from __future__ import annotations

import importlib
import logging
from typing import Optional, Protocol, runtime_checkable

from .config import BotConfig
from .models import Destination, ResolvedStreamParams, StreamTarget, TransportState

logger = logging.getLogger(__name__)


@runtime_checkable
class VoiceTransport(Protocol):
    """Connection to the real-time voice/video network.

    Implementations own the wire protocol. ``join_voice`` must leave any
    previous channel and, for stage destinations, request to speak.
    """

    async def resolve_destination(self, network_id: str, channel_id: str) -> Optional[Destination]:
        ...

    async def join_voice(self, destination: Destination) -> None:
        ...

    async def leave_voice(self) -> None:
        ...

    def current_state(self) -> TransportState:
        ...

    async def create_stream(self, params: ResolvedStreamParams) -> StreamTarget:
        ...

    async def stop_stream(self) -> None:
        """Close the stream connection. Only called while ``current_state().is_streaming``."""
        ...

    def set_speaking(self, speaking: bool) -> None:
        ...

    def set_video_status(self, enabled: bool) -> None:
        ...


def load_transport(config: BotConfig) -> VoiceTransport:
    """Build the transport named by ``VOICE_TRANSPORT`` (``package.module:factory``).

    The factory is called with the loaded :class:`BotConfig`.
    """
    path = config.transport_factory
    if not path:
        raise RuntimeError("VOICE_TRANSPORT is not set; expected 'package.module:factory'.")
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise RuntimeError(f"VOICE_TRANSPORT must look like 'package.module:factory', got {path!r}.")

    factory = getattr(importlib.import_module(module_name), attr)
    transport = factory(config)
    if not isinstance(transport, VoiceTransport):
        raise TypeError(f"{path} did not return a VoiceTransport")
    logger.info("Loaded voice transport %s", path)
    return transport
