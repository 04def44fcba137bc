"""Pure reducer for the call lifecycle.

Contract:
    next_snapshot, commands = reduce_call(snapshot, signal, policy)

Rules:
    1. Reducer is pure -- no side effects, no clocks.
    2. Commands are side-effect intents only; the router executes them.
    3. seq advances on every signal, accepted or not.
    4. User commands outside their allowed states are rejected as no-ops
       (double-start / double-end from a racy caller are safe).
    5. Late errors in IDLE / ENDED are ignored.
    6. Content signals (speech, volume, transcript) never change lifecycle.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

from .call_events import (
    CallEnded,
    CallSignal,
    CallStarted,
    EndCall,
    ErrorRaised,
    GraceElapsed,
    SetMute,
    StartCall,
    TransportFailed,
    UserCommand,
    USER_COMMAND_TYPES,
)
from .call_state import CallSnapshot, CallState, ERROR_IMMUNE_STATES, IN_CALL_STATES
from .errors import InvalidCommand

DEFAULT_GRACE_DELAY_S = 2.0


@dataclass(frozen=True)
class Command:
    """Side-effect intent emitted by the reducer."""
    name: str
    args: dict


@dataclass(frozen=True)
class CallPolicy:
    """Configurable reducer behaviour.

    connect_error_state: where a failed connection lands (IDLE or ERRORED).
    restart_from_ended: accept StartCall while ENDED, cancelling the grace timer.
    """
    grace_delay_s: float = DEFAULT_GRACE_DELAY_S
    connect_error_state: CallState = CallState.IDLE
    restart_from_ended: bool = False

    def __post_init__(self):
        if self.connect_error_state not in (CallState.IDLE, CallState.ERRORED):
            raise ValueError(
                f"connect_error_state must be IDLE or ERRORED, got {self.connect_error_state}"
            )
        if self.grace_delay_s < 0:
            raise ValueError(f"grace_delay_s must be non-negative, got {self.grace_delay_s}")

    def start_allowed_in(self) -> frozenset[CallState]:
        allowed = {CallState.IDLE, CallState.ERRORED}
        if self.restart_from_ended:
            allowed.add(CallState.ENDED)
        return frozenset(allowed)


DEFAULT_POLICY = CallPolicy()

END_ALLOWED_IN: frozenset[CallState] = frozenset([CallState.ACTIVE, CallState.CONNECTING])
MUTE_ALLOWED_IN: frozenset[CallState] = frozenset([CallState.ACTIVE, CallState.CONNECTING])


# ── Transition Table ─────────────────────────────────────────────────────
#
# State              x Input               -> Next State       + Commands
# -----------------------------------------------------------------------
# IDLE|ERRORED         StartCall            -> CONNECTING       + CancelIdleReset, ResetTranscript,
#                                                                 StartTransport, EmitUIState
# CONNECTING           CallStarted          -> ACTIVE           + EmitUIState
# CONNECTING           ErrorRaised          -> IDLE|ERRORED     + StopTransport, EmitUIState  (policy)
# CONNECTING           TransportFailed      -> IDLE|ERRORED     + StopTransport, EmitUIState  (policy)
# CONNECTING|ACTIVE    EndCall              -> ENDING           + StopTransport, EmitUIState
# CONNECTING|ACTIVE    SetMute              -> (same)           + SetMuted
# ACTIVE|ENDING        CallEnded            -> ENDED            + FinalizeTranscript,
#                                                                 ScheduleIdleReset, EmitUIState
# ENDED                GraceElapsed         -> IDLE             + EmitUIState
# ENDED (opt-in)       StartCall            -> CONNECTING       + (as IDLE)
# ACTIVE|ENDING        ErrorRaised          -> ERRORED          + StopTransport, EmitUIState
# ERRORED              ErrorRaised          -> ERRORED          + EmitUIState
# IDLE|ENDED           ErrorRaised          -> (absorb)         + EmitDiagnostic
# ANY                  rejected command     -> (same)           + EmitDiagnostic
# ANY                  content signal       -> (same)           + (none)
# -----------------------------------------------------------------------


def _diagnostic(reason: str, **args) -> Command:
    return Command("EmitDiagnostic", {"reason": reason, **args})


def _ui(state: CallState) -> Command:
    return Command("EmitUIState", {"state": state.value})


def _guard(snapshot: CallSnapshot, command: UserCommand, allowed: frozenset[CallState]) -> None:
    if snapshot.state not in allowed:
        raise InvalidCommand(command.kind, snapshot.state.value)


def _reduce_command(
    s: CallSnapshot, command: UserCommand, policy: CallPolicy
) -> Tuple[CallSnapshot, List[Command]]:
    if isinstance(command, StartCall):
        _guard(s, command, policy.start_allowed_in())
        return (
            s.evolve(
                state=CallState.CONNECTING, muted=False, last_error=None,
                assistant_id=command.assistant_id, reason="user_start",
            ),
            [
                Command("CancelIdleReset", {}),
                Command("ResetTranscript", {}),
                Command("StartTransport", {"assistant_id": command.assistant_id}),
                _ui(CallState.CONNECTING),
            ],
        )

    if isinstance(command, EndCall):
        _guard(s, command, END_ALLOWED_IN)
        return (
            s.evolve(state=CallState.ENDING, last_error=None, reason="user_end"),
            [Command("StopTransport", {}), _ui(CallState.ENDING)],
        )

    _guard(s, command, MUTE_ALLOWED_IN)
    return s.evolve(muted=command.muted), [Command("SetMuted", {"muted": command.muted})]


def _reduce_error(
    s: CallSnapshot, message: str, policy: CallPolicy, kind: str
) -> Tuple[CallSnapshot, List[Command]]:
    if s.state in ERROR_IMMUNE_STATES:
        return s, [_diagnostic("late_error_ignored", signal=kind, state=s.state.value)]

    if s.state == CallState.CONNECTING:
        target = policy.connect_error_state
        reason = "connect_failed"
    else:
        target = CallState.ERRORED
        reason = "transport_error"
    commands = [_ui(target)]
    if s.state in IN_CALL_STATES:
        # Leaving a live call: release the SDK call and microphone.
        commands.insert(0, Command("StopTransport", {}))
    return s.evolve(state=target, last_error=message, reason=reason), commands


def reduce_call(
    snapshot: CallSnapshot,
    signal: CallSignal,
    policy: CallPolicy = DEFAULT_POLICY,
) -> Tuple[CallSnapshot, List[Command]]:
    """Pure reducer: (snapshot, signal) -> (next_snapshot, commands)."""
    s = snapshot.evolve(seq=snapshot.seq + 1)
    kind = getattr(signal, "kind", type(signal).__name__)

    # ── User commands (guarded) ──────────────────────────────────────
    if isinstance(signal, USER_COMMAND_TYPES):
        try:
            return _reduce_command(s, signal, policy)
        except InvalidCommand as exc:
            return s, [_diagnostic("command_rejected", command=exc.command, state=exc.state)]

    # ── Errors ───────────────────────────────────────────────────────
    if isinstance(signal, (ErrorRaised, TransportFailed)):
        return _reduce_error(s, signal.message, policy, kind)

    # ── Lifecycle acknowledgements ───────────────────────────────────
    if isinstance(signal, CallStarted):
        if s.state == CallState.CONNECTING:
            return (
                s.evolve(state=CallState.ACTIVE, last_error=None, reason="call_started"),
                [_ui(CallState.ACTIVE)],
            )

    elif isinstance(signal, CallEnded):
        if s.state in (CallState.ACTIVE, CallState.ENDING):
            reason = "remote_end" if s.state == CallState.ACTIVE else "call_ended"
            return (
                s.evolve(state=CallState.ENDED, last_error=None, reason=reason),
                [
                    Command("FinalizeTranscript", {}),
                    Command("ScheduleIdleReset", {"delay_s": policy.grace_delay_s}),
                    _ui(CallState.ENDED),
                ],
            )

    elif isinstance(signal, GraceElapsed):
        if s.state == CallState.ENDED:
            return (
                s.evolve(state=CallState.IDLE, reason="grace_elapsed"),
                [_ui(CallState.IDLE)],
            )

    else:
        # Content signals carry no lifecycle meaning.
        return s, []

    # ── Default: deterministic no-op ─────────────────────────────────
    return s, [_diagnostic("no_transition", signal=kind, state=s.state.value)]
