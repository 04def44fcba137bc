"""Canonical event model for a voice call.

Every raw transport payload maps to exactly one CanonicalEvent. User
commands and internal signals share the reducer input type (CallSignal)
but never come out of the normalizer.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Optional, Tuple, Union


class Role(str, Enum):
    """Speaker role of a turn or speech signal."""
    USER = "user"
    ASSISTANT = "assistant"


# ── Canonical events (normalizer output) ─────────────────────────────────

@dataclass(frozen=True)
class CallStarted:
    kind: ClassVar[str] = "CALL_STARTED"


@dataclass(frozen=True)
class CallEnded:
    kind: ClassVar[str] = "CALL_ENDED"


@dataclass(frozen=True)
class SpeechStarted:
    role: Role
    kind: ClassVar[str] = "SPEECH_STARTED"


@dataclass(frozen=True)
class SpeechEnded:
    role: Role
    kind: ClassVar[str] = "SPEECH_ENDED"


@dataclass(frozen=True)
class VolumeSample:
    level: float
    kind: ClassVar[str] = "VOLUME_SAMPLE"

    def __post_init__(self):
        if not 0.0 <= self.level <= 1.0:
            raise ValueError(f"volume level must be within [0, 1], got {self.level}")


@dataclass(frozen=True)
class TranscriptFragment:
    """Cumulative utterance-so-far for one role, partial or final."""
    role: Role
    text: str
    final: bool = True
    kind: ClassVar[str] = "TRANSCRIPT_FRAGMENT"


@dataclass(frozen=True)
class TranscriptReplay:
    """Batch of prior turns replayed by the transport, in the order they were spoken.

    Every fragment is final. The reconciler deduplicates them against
    turns it already holds.
    """
    fragments: Tuple[TranscriptFragment, ...]
    kind: ClassVar[str] = "TRANSCRIPT_REPLAY"


@dataclass(frozen=True)
class ErrorRaised:
    message: str
    kind: ClassVar[str] = "ERROR_RAISED"


@dataclass(frozen=True)
class Unrecognized:
    """A payload no extraction rule could classify. Dropped after logging."""
    raw: Any = field(compare=False)
    reason: str = "unrecognized"
    kind: ClassVar[str] = "UNRECOGNIZED"


CanonicalEvent = Union[
    CallStarted,
    CallEnded,
    SpeechStarted,
    SpeechEnded,
    VolumeSample,
    TranscriptFragment,
    TranscriptReplay,
    ErrorRaised,
    Unrecognized,
]


# ── User commands ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StartCall:
    assistant_id: Optional[str] = None
    kind: ClassVar[str] = "START_CALL"


@dataclass(frozen=True)
class EndCall:
    kind: ClassVar[str] = "END_CALL"


@dataclass(frozen=True)
class SetMute:
    muted: bool
    kind: ClassVar[str] = "SET_MUTE"


UserCommand = Union[StartCall, EndCall, SetMute]


# ── Internal signals ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class GraceElapsed:
    """The Ended -> Idle grace timer fired."""
    kind: ClassVar[str] = "GRACE_ELAPSED"


@dataclass(frozen=True)
class TransportFailed:
    """An outbound transport request failed (raised or awaitable errored)."""
    message: str
    kind: ClassVar[str] = "TRANSPORT_FAILED"


CallSignal = Union[CanonicalEvent, UserCommand, GraceElapsed, TransportFailed]

USER_COMMAND_TYPES = (StartCall, EndCall, SetMute)
