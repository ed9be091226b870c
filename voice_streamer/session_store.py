"""Mutable session record shared by the lifecycle controller and status readers."""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set

from .models import Destination

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 5.0


class SessionState(str, enum.Enum):
    IDLE = "idle"
    JOINED_IDLE = "joined_idle"
    STREAMING = "streaming"
    SWITCHING = "switching"
    DISCONNECTING = "disconnecting"


# IDLE -> JOINED_IDLE (join) | DISCONNECTING
# JOINED_IDLE -> JOINED_IDLE (join elsewhere) | STREAMING | SWITCHING | DISCONNECTING
# STREAMING -> SWITCHING (play while streaming) | JOINED_IDLE (transcode ended) | DISCONNECTING
# SWITCHING -> STREAMING | JOINED_IDLE (start failed)
# DISCONNECTING -> IDLE
TRANSITIONS: Dict[SessionState, Set[SessionState]] = {
    SessionState.IDLE: {SessionState.JOINED_IDLE, SessionState.DISCONNECTING},
    SessionState.JOINED_IDLE: {
        SessionState.JOINED_IDLE,
        SessionState.STREAMING,
        SessionState.SWITCHING,
        SessionState.DISCONNECTING,
    },
    SessionState.STREAMING: {
        SessionState.STREAMING,
        SessionState.SWITCHING,
        SessionState.JOINED_IDLE,
        SessionState.DISCONNECTING,
    },
    SessionState.SWITCHING: {SessionState.STREAMING, SessionState.JOINED_IDLE},
    SessionState.DISCONNECTING: {SessionState.IDLE},
}


class InvalidTransition(RuntimeError):
    pass


@dataclass
class CooldownGate:
    active: bool = False
    expires_at: float = 0.0


class SessionStore:
    """Owned record of destination, active transcode and the admission gate.

    Every mutation is a single step under ``_lock``: ``try_admit`` is a
    check-and-set and ``clear_active_transcode`` is a compare-and-clear, so a
    completion callback from a superseded transcode cannot clear its successor.
    """

    def __init__(
        self,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        time_fn: Optional[Callable[[], float]] = None,
    ) -> None:
        self._cooldown_seconds = cooldown_seconds
        self._time_fn = time_fn or time.monotonic
        self._lock = threading.Lock()
        self._gate = CooldownGate()
        self._destination: Optional[Destination] = None
        self._active_transcode: Any = None
        self._state = SessionState.IDLE

    def try_admit(self) -> bool:
        now = self._time_fn()
        with self._lock:
            if self._gate.active and now < self._gate.expires_at:
                return False
            self._gate.active = True
            self._gate.expires_at = now + self._cooldown_seconds
            return True

    def cooldown_remaining(self) -> float:
        now = self._time_fn()
        with self._lock:
            if not self._gate.active or now >= self._gate.expires_at:
                return 0.0
            return self._gate.expires_at - now

    @property
    def state(self) -> SessionState:
        return self._state

    def transition(self, new: SessionState) -> None:
        with self._lock:
            if new not in TRANSITIONS.get(self._state, set()):
                raise InvalidTransition(f"{self._state.value} -> {new.value}")
            if new != self._state:
                logger.info("Session state %s -> %s", self._state.value, new.value)
            self._state = new

    def current_destination(self) -> Optional[Destination]:
        return self._destination

    def set_destination(self, destination: Destination) -> None:
        with self._lock:
            self._destination = destination

    def clear_destination(self) -> None:
        with self._lock:
            self._destination = None

    def active_transcode(self) -> Any:
        return self._active_transcode

    def set_active_transcode(self, handle: Any) -> None:
        with self._lock:
            self._active_transcode = handle

    def clear_active_transcode(self, expected: Any = None) -> bool:
        """Clear the handle; with ``expected``, only if it is still the active one."""
        with self._lock:
            if expected is not None and self._active_transcode is not expected:
                return False
            self._active_transcode = None
            return True

    def snapshot(self) -> Dict[str, Any]:
        handle = self._active_transcode
        destination = self._destination
        return {
            "state": self._state.value,
            "destination": (
                {"guildId": destination.network_id, "channelId": destination.channel_id}
                if destination
                else None
            ),
            "active_transcode": getattr(handle, "id", None) if handle is not None else None,
            "cooldown_remaining": round(self.cooldown_remaining(), 3),
        }
