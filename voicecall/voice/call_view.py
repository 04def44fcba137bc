"""Read-only view model for the presentation layer."""
from __future__ import annotations

from typing import List, Optional, Sequence

from pydantic import BaseModel

from .call_events import Role
from .call_state import CallSnapshot, CallState
from .transcript import Turn, visible_turns

STATUS_TEXT = {
    CallState.IDLE: "Ready to connect",
    CallState.CONNECTING: "Connecting...",
    CallState.ACTIVE: "Listening...",
    CallState.ENDING: "Ending call...",
    CallState.ENDED: "Call ended",
    CallState.ERRORED: "Connection error",
}


class TurnView(BaseModel):
    id: str
    role: str
    text: str
    final: bool
    started_at: float


class CallView(BaseModel):
    state: str
    status_text: str
    in_call: bool
    muted: bool
    speaker: Optional[str] = None
    volume: float = 0.0
    last_error: Optional[str] = None
    seq: int = 0
    turns: List[TurnView] = []


def status_text(state: CallState, speaker: Optional[Role] = None, awaiting_reply: bool = False) -> str:
    if state == CallState.ACTIVE:
        if speaker == Role.ASSISTANT:
            return "Speaking..."
        if speaker is None and awaiting_reply:
            return "Thinking..."
    return STATUS_TEXT[state]


def build_view(
    snapshot: CallSnapshot,
    turns: Sequence[Turn],
    speaker: Optional[Role],
    volume: float,
    drop_empty_final: bool = True,
    awaiting_reply: bool = False,
) -> CallView:
    return CallView(
        state=snapshot.state.value,
        status_text=status_text(snapshot.state, speaker, awaiting_reply),
        in_call=snapshot.in_call,
        muted=snapshot.muted,
        speaker=speaker.value if speaker is not None else None,
        volume=volume,
        last_error=snapshot.last_error,
        seq=snapshot.seq,
        turns=[TurnView(**t.to_dict()) for t in visible_turns(turns, drop_empty_final)],
    )
