"""Speaker activity tracker: who is currently producing partial speech.

Advisory state for live UI emphasis. It never influences turn boundaries.
"""
from __future__ import annotations

from typing import Optional

from .call_events import (
    Role,
    SpeechEnded,
    SpeechStarted,
    TranscriptFragment,
    TranscriptReplay,
)


def track_speaker(current: Optional[Role], event: object) -> Optional[Role]:
    """Pure step: (current, event) -> current.

    Set on SpeechStarted or a partial fragment; cleared on SpeechEnded or a
    final fragment, but only when the role matches the tracked one.
    """
    if isinstance(event, SpeechStarted):
        return event.role
    if isinstance(event, SpeechEnded):
        return None if event.role == current else current
    if isinstance(event, TranscriptFragment):
        if not event.final:
            return event.role
        return None if event.role == current else current
    if isinstance(event, TranscriptReplay):
        for fragment in event.fragments:
            current = track_speaker(current, fragment)
        return current
    return current


class SpeakerActivityTracker:
    """Holds the derived speaker flag for one call.

    awaiting_reply is set when speech ends and nobody else is speaking, and
    cleared as soon as someone starts speaking again.
    """

    def __init__(self) -> None:
        self._current: Optional[Role] = None
        self._awaiting_reply = False

    @property
    def current(self) -> Optional[Role]:
        return self._current

    @property
    def awaiting_reply(self) -> bool:
        return self._awaiting_reply

    def apply(self, event: object) -> Optional[Role]:
        self._current = track_speaker(self._current, event)
        if isinstance(event, SpeechEnded):
            self._awaiting_reply = self._current is None
        elif isinstance(event, SpeechStarted) or (
            isinstance(event, TranscriptFragment) and not event.final
        ):
            self._awaiting_reply = False
        return self._current

    def reset(self) -> None:
        self._current = None
        self._awaiting_reply = False
