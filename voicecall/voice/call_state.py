"""Call lifecycle state model.

CallState is the finite set of phases a call can be in.
CallSnapshot is the immutable state record produced by the call reducer.
"""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional


class CallState(str, Enum):
    """Call lifecycle states."""
    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    ACTIVE = "ACTIVE"
    ENDING = "ENDING"
    ENDED = "ENDED"
    ERRORED = "ERRORED"


# States in which the transport is (or may be) carrying a call.
IN_CALL_STATES: frozenset[CallState] = frozenset([
    CallState.CONNECTING,
    CallState.ACTIVE,
    CallState.ENDING,
])

# Late errors are ignored here: the call is already over or never began.
ERROR_IMMUNE_STATES: frozenset[CallState] = frozenset([
    CallState.IDLE,
    CallState.ENDED,
])


@dataclass(frozen=True)
class CallSnapshot:
    """Immutable snapshot of call lifecycle state at a given sequence point.

    seq counts every signal the reducer has processed, accepted or not.
    last_error holds the most recent transport error message until the
    next transition into a non-error state.
    """
    state: CallState = CallState.IDLE
    seq: int = 0
    muted: bool = False
    last_error: Optional[str] = None
    assistant_id: Optional[str] = None
    reason: Optional[str] = None

    @property
    def in_call(self) -> bool:
        return self.state in IN_CALL_STATES

    def deterministic_hash(self) -> str:
        """Hash of all fields, for replay verification."""
        fields = {
            "state": self.state.value,
            "seq": self.seq,
            "muted": self.muted,
            "last_error": self.last_error,
            "assistant_id": self.assistant_id,
            "reason": self.reason,
        }
        canonical = json.dumps(fields, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def evolve(self, **kwargs) -> CallSnapshot:
        """Create a new snapshot with updated fields."""
        return replace(self, **kwargs)

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "seq": self.seq,
            "muted": self.muted,
            "last_error": self.last_error,
            "assistant_id": self.assistant_id,
            "reason": self.reason,
        }


def make_initial_snapshot() -> CallSnapshot:
    """Create the IDLE snapshot for a fresh session."""
    return CallSnapshot(state=CallState.IDLE, seq=0)
