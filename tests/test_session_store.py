import pytest

from voice_streamer.models import Destination
from voice_streamer.session_store import InvalidTransition, SessionState, SessionStore


def test_admission_is_rejected_until_cooldown_expires(store, clock):
    assert store.try_admit() is True
    assert store.try_admit() is False

    clock.advance(4.9)
    assert store.try_admit() is False
    assert store.cooldown_remaining() == pytest.approx(0.1)

    clock.advance(0.1)
    assert store.cooldown_remaining() == 0.0
    assert store.try_admit() is True


def test_rejected_admission_does_not_extend_window(store, clock):
    store.try_admit()
    clock.advance(3)
    assert store.try_admit() is False
    clock.advance(2)
    assert store.try_admit() is True


def test_compare_and_clear_keeps_newer_handle(store):
    old, new = object(), object()
    store.set_active_transcode(old)
    store.set_active_transcode(new)

    assert store.clear_active_transcode(old) is False
    assert store.active_transcode() is new
    assert store.clear_active_transcode(new) is True
    assert store.active_transcode() is None


def test_unconditional_clear(store):
    store.set_active_transcode(object())
    assert store.clear_active_transcode() is True
    assert store.active_transcode() is None


def test_valid_lifecycle_transitions(store):
    for state in (
        SessionState.JOINED_IDLE,
        SessionState.STREAMING,
        SessionState.SWITCHING,
        SessionState.STREAMING,
        SessionState.DISCONNECTING,
        SessionState.IDLE,
    ):
        store.transition(state)
    assert store.state is SessionState.IDLE


def test_invalid_transition_raises(store):
    with pytest.raises(InvalidTransition):
        store.transition(SessionState.STREAMING)
    assert store.state is SessionState.IDLE


def test_snapshot_reports_destination_and_cooldown(store):
    store.try_admit()
    store.set_destination(Destination("guild-1", "voice-1"))
    store.transition(SessionState.JOINED_IDLE)

    snapshot = store.snapshot()

    assert snapshot["state"] == "joined_idle"
    assert snapshot["destination"] == {"guildId": "guild-1", "channelId": "voice-1"}
    assert snapshot["active_transcode"] is None
    assert snapshot["cooldown_remaining"] == 5.0

    store.clear_destination()
    assert store.snapshot()["destination"] is None
