"""Transcript reconciler: folds transcript events into an ordered Turn sequence.

Contract:
    turns = apply(event, turns)

Rules:
    1. Same role as the last turn and that turn is open -> update it in place
       (text replaced, fragments are cumulative; final flag taken from fragment).
    2. Otherwise -> append a new Turn with a fresh id and the current time.
    3. Replayed history (TranscriptReplay) skips any fragment whose role and
       exact text match a final turn, held before the replay, at or after
       the replay cursor. Fragments appended by the replay never advance it.

Only the trailing turn is ever updated. Earlier turns are never rewritten,
except by finalize_open(), which flips open turns to final without touching
their text.
"""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, replace
from typing import Callable, Optional, Sequence, Tuple

from .call_events import Role, TranscriptFragment, TranscriptReplay

Clock = Callable[[], float]
IdFactory = Callable[[], str]


def new_turn_id() -> str:
    """Generate a fresh, never-reused turn identifier."""
    return f"turn_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class Turn:
    """One contiguous utterance by a single role, partial or final."""
    id: str
    role: Role
    text: str
    final: bool
    started_at: float

    @property
    def is_open(self) -> bool:
        return not self.final

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role.value,
            "text": self.text,
            "final": self.final,
            "started_at": self.started_at,
        }


Turns = Tuple[Turn, ...]


def _apply_fragment(
    fragment: TranscriptFragment,
    turns: Turns,
    clock: Clock,
    id_factory: IdFactory,
) -> Turns:
    if turns:
        last = turns[-1]
        if last.role == fragment.role and last.is_open:
            return turns[:-1] + (replace(last, text=fragment.text, final=fragment.final),)
    turn = Turn(
        id=id_factory(),
        role=fragment.role,
        text=fragment.text,
        final=fragment.final,
        started_at=clock(),
    )
    return turns + (turn,)


def _find_replayed(fragment: TranscriptFragment, turns: Turns, start: int, end: int) -> Optional[int]:
    for index in range(start, end):
        turn = turns[index]
        if turn.final and turn.role == fragment.role and turn.text == fragment.text:
            return index
    return None


def _apply_replay(
    replay: TranscriptReplay,
    turns: Turns,
    clock: Clock,
    id_factory: IdFactory,
) -> Turns:
    # Only turns held before the replay are dedup candidates; the cursor
    # moves past each match so a repeated utterance is matched at most once.
    known = len(turns)
    cursor = 0
    for fragment in replay.fragments:
        match = _find_replayed(fragment, turns, cursor, known)
        if match is not None:
            cursor = match + 1
            continue
        turns = _apply_fragment(fragment, turns, clock, id_factory)
    return turns


def apply(
    event: object,
    turns: Sequence[Turn],
    clock: Clock = time.time,
    id_factory: IdFactory = new_turn_id,
) -> Turns:
    """Pure transformation: (event, turns) -> turns.

    Events other than TranscriptFragment / TranscriptReplay return the
    sequence unchanged.
    """
    current = tuple(turns)
    if isinstance(event, TranscriptFragment):
        return _apply_fragment(event, current, clock, id_factory)
    if isinstance(event, TranscriptReplay):
        return _apply_replay(event, current, clock, id_factory)
    return current


def finalize_open(turns: Sequence[Turn]) -> Turns:
    """Mark every open turn final, text unchanged. Used on call end."""
    return tuple(turn if turn.final else replace(turn, final=True) for turn in turns)


def open_turns(turns: Sequence[Turn]) -> Turns:
    return tuple(turn for turn in turns if turn.is_open)


def visible_turns(turns: Sequence[Turn], drop_empty_final: bool = True) -> Turns:
    """Turns for display. Empty finalized turns are dropped here, not in apply()."""
    if not drop_empty_final:
        return tuple(turns)
    return tuple(turn for turn in turns if not (turn.final and not turn.text.strip()))
