"""Call lifecycle reducer tests.

Core path: IDLE -> CONNECTING -> ACTIVE -> ENDING -> ENDED -> IDLE.
Guards: rejected commands, late errors, connect failures, restart policy.
"""
import pytest

from voicecall.voice.call_events import (
    CallEnded,
    CallStarted,
    EndCall,
    ErrorRaised,
    GraceElapsed,
    Role,
    SetMute,
    SpeechStarted,
    StartCall,
    TranscriptFragment,
    TransportFailed,
    VolumeSample,
)
from voicecall.voice.call_reducer import CallPolicy, reduce_call
from voicecall.voice.call_state import CallSnapshot, CallState, make_initial_snapshot

# ── Helpers ──────────────────────────────────────────────────────────────

ASSISTANT_ID = "asst-001"


def _names(cmds):
    return [c.name for c in cmds]


def _run(signals, snapshot=None, policy=None):
    s = snapshot or make_initial_snapshot()
    cmds = []
    for signal in signals:
        if policy is None:
            s, cmds = reduce_call(s, signal)
        else:
            s, cmds = reduce_call(s, signal, policy)
    return s, cmds


def _active():
    s, _ = _run([StartCall(ASSISTANT_ID), CallStarted()])
    return s


def _ended():
    s, _ = _run([StartCall(ASSISTANT_ID), CallStarted(), EndCall(), CallEnded()])
    return s


# ── Core path ────────────────────────────────────────────────────────────

class TestCallLifecycle:

    def test_start_moves_idle_to_connecting(self):
        s1, cmds = reduce_call(make_initial_snapshot(), StartCall(ASSISTANT_ID))
        assert s1.state == CallState.CONNECTING
        assert s1.assistant_id == ASSISTANT_ID
        assert s1.seq == 1
        assert _names(cmds) == ["CancelIdleReset", "ResetTranscript", "StartTransport", "EmitUIState"]
        assert cmds[2].args == {"assistant_id": ASSISTANT_ID}
        assert cmds[3].args["state"] == "CONNECTING"

    def test_call_started_moves_connecting_to_active(self):
        s = _active()
        assert s.state == CallState.ACTIVE
        assert s.in_call is True

    def test_end_moves_active_to_ending(self):
        s, cmds = reduce_call(_active(), EndCall())
        assert s.state == CallState.ENDING
        assert _names(cmds) == ["StopTransport", "EmitUIState"]

    def test_call_ended_moves_ending_to_ended_and_schedules_reset(self):
        s, cmds = _run([EndCall(), CallEnded()], _active())
        assert s.state == CallState.ENDED
        assert s.reason == "call_ended"
        assert _names(cmds) == ["FinalizeTranscript", "ScheduleIdleReset", "EmitUIState"]
        assert cmds[1].args["delay_s"] == 2.0

    def test_remote_end_from_active(self):
        s, _ = reduce_call(_active(), CallEnded())
        assert s.state == CallState.ENDED
        assert s.reason == "remote_end"

    def test_grace_elapsed_returns_to_idle(self):
        s, cmds = reduce_call(_ended(), GraceElapsed())
        assert s.state == CallState.IDLE
        assert _names(cmds) == ["EmitUIState"]

    def test_full_cycle(self):
        s, _ = _run([
            StartCall(ASSISTANT_ID), CallStarted(), EndCall(), CallEnded(), GraceElapsed(),
        ])
        assert s.state == CallState.IDLE
        assert s.seq == 5

    def test_grace_delay_from_policy(self):
        policy = CallPolicy(grace_delay_s=0.5)
        _, cmds = _run([StartCall(ASSISTANT_ID), CallStarted(), CallEnded()], policy=policy)
        assert cmds[1].args["delay_s"] == 0.5


# ── Guards ───────────────────────────────────────────────────────────────

class TestCommandGuards:

    def test_end_while_idle_is_noop(self):
        s0 = make_initial_snapshot()
        s1, cmds = reduce_call(s0, EndCall())
        assert s1.state == CallState.IDLE
        assert "StopTransport" not in _names(cmds)
        assert cmds[0].name == "EmitDiagnostic"
        assert cmds[0].args["reason"] == "command_rejected"

    def test_double_start_is_rejected(self):
        s, cmds = _run([StartCall(ASSISTANT_ID), StartCall("other")])
        assert s.state == CallState.CONNECTING
        assert s.assistant_id == ASSISTANT_ID
        assert _names(cmds) == ["EmitDiagnostic"]

    def test_double_end_is_rejected(self):
        s, cmds = _run([EndCall(), EndCall()], _active())
        assert s.state == CallState.ENDING
        assert _names(cmds) == ["EmitDiagnostic"]

    def test_end_while_connecting(self):
        s, cmds = _run([StartCall(ASSISTANT_ID), EndCall()])
        assert s.state == CallState.ENDING
        assert "StopTransport" in _names(cmds)

    def test_mute_while_active(self):
        s, cmds = reduce_call(_active(), SetMute(True))
        assert s.muted is True
        assert s.state == CallState.ACTIVE
        assert cmds[0].name == "SetMuted"
        assert cmds[0].args == {"muted": True}

    def test_mute_while_idle_is_rejected(self):
        s, cmds = reduce_call(make_initial_snapshot(), SetMute(True))
        assert s.muted is False
        assert cmds[0].args["reason"] == "command_rejected"

    def test_new_call_resets_mute(self):
        s = reduce_call(_active(), SetMute(True))[0]
        s, _ = _run([EndCall(), CallEnded(), GraceElapsed(), StartCall(ASSISTANT_ID)], s)
        assert s.muted is False

    def test_start_while_ended_rejected_by_default(self):
        s, cmds = reduce_call(_ended(), StartCall(ASSISTANT_ID))
        assert s.state == CallState.ENDED
        assert cmds[0].args["reason"] == "command_rejected"

    def test_start_while_ended_with_restart_policy(self):
        policy = CallPolicy(restart_from_ended=True)
        s, cmds = reduce_call(_ended(), StartCall(ASSISTANT_ID), policy)
        assert s.state == CallState.CONNECTING
        assert cmds[0].name == "CancelIdleReset"


# ── Errors ───────────────────────────────────────────────────────────────

class TestErrors:

    def test_error_while_active_goes_errored(self):
        s, cmds = reduce_call(_active(), ErrorRaised("socket closed"))
        assert s.state == CallState.ERRORED
        assert s.last_error == "socket closed"
        assert _names(cmds) == ["StopTransport", "EmitUIState"]

    def test_connect_error_stops_transport(self):
        _, cmds = _run([StartCall(ASSISTANT_ID), TransportFailed("no mic")])
        assert _names(cmds) == ["StopTransport", "EmitUIState"]

    def test_error_while_ending_stops_transport(self):
        s, cmds = _run([EndCall(), ErrorRaised("hangup failed")], _active())
        assert s.state == CallState.ERRORED
        assert "StopTransport" in _names(cmds)

    def test_repeated_error_while_errored_does_not_stop_again(self):
        s, cmds = _run([ErrorRaised("first"), ErrorRaised("second")], _active())
        assert s.state == CallState.ERRORED
        assert s.last_error == "second"
        assert _names(cmds) == ["EmitUIState"]

    def test_connect_error_lands_in_idle_by_default(self):
        s, _ = _run([StartCall(ASSISTANT_ID), TransportFailed("no mic")])
        assert s.state == CallState.IDLE
        assert s.last_error == "no mic"
        assert s.reason == "connect_failed"

    def test_connect_error_state_is_configurable(self):
        policy = CallPolicy(connect_error_state=CallState.ERRORED)
        s, _ = _run([StartCall(ASSISTANT_ID), ErrorRaised("denied")], policy=policy)
        assert s.state == CallState.ERRORED

    @pytest.mark.parametrize("snapshot", [make_initial_snapshot(), _ended()])
    def test_late_error_is_ignored(self, snapshot):
        s, cmds = reduce_call(snapshot, ErrorRaised("late"))
        assert s.state == snapshot.state
        assert s.last_error is None
        assert cmds[0].args["reason"] == "late_error_ignored"

    def test_start_recovers_from_errored(self):
        s = reduce_call(_active(), ErrorRaised("x"))[0]
        s, _ = reduce_call(s, StartCall(ASSISTANT_ID))
        assert s.state == CallState.CONNECTING
        assert s.last_error is None

    def test_invalid_policy_rejected(self):
        with pytest.raises(ValueError):
            CallPolicy(connect_error_state=CallState.ACTIVE)
        with pytest.raises(ValueError):
            CallPolicy(grace_delay_s=-1)


# ── Invariants ───────────────────────────────────────────────────────────

class TestInvariants:

    @pytest.mark.parametrize("signal", [
        SpeechStarted(Role.USER),
        VolumeSample(0.3),
        TranscriptFragment(Role.USER, "hi", False),
    ])
    def test_content_signals_never_change_lifecycle(self, signal):
        s0 = _active()
        s1, cmds = reduce_call(s0, signal)
        assert s1.state == s0.state
        assert cmds == []

    def test_unlisted_pair_is_a_diagnosed_noop(self):
        s, cmds = reduce_call(make_initial_snapshot(), CallEnded())
        assert s.state == CallState.IDLE
        assert cmds[0].args["reason"] == "no_transition"

    def test_call_ended_while_connecting_is_noop(self):
        s, _ = _run([StartCall(ASSISTANT_ID), CallEnded()])
        assert s.state == CallState.CONNECTING

    def test_seq_increments_on_every_signal(self):
        s = make_initial_snapshot()
        seqs = []
        for signal in [EndCall(), StartCall(ASSISTANT_ID), VolumeSample(0.1), CallStarted()]:
            s, _ = reduce_call(s, signal)
            seqs.append(s.seq)
        assert seqs == [1, 2, 3, 4]

    def test_reducer_does_not_mutate_input(self):
        s0 = _active()
        before = s0.deterministic_hash()
        reduce_call(s0, EndCall())
        assert s0.deterministic_hash() == before

    def test_snapshot_to_dict(self):
        d = CallSnapshot().to_dict()
        assert d["state"] == "IDLE"
        assert d["seq"] == 0
