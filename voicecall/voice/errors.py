"""Error taxonomy for the voice call core.

None of these are fatal. MalformedEvent and InvalidCommand are recovered
where they are raised; TransportError is surfaced as the call's last error.
"""
from __future__ import annotations

from typing import Any, Optional


class VoiceCallError(Exception):
    """Base class for voice call core errors."""


class MalformedEvent(VoiceCallError):
    """Raised when an inbound payload has no recognizable shape."""

    def __init__(self, reason: str, raw: Any = None):
        self.reason = reason
        self.raw = raw
        super().__init__(reason)


class TransportError(VoiceCallError):
    """Raised by a voice transport when an outbound request fails."""

    def __init__(self, message: str, operation: str = "", cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        super().__init__(message)

    @classmethod
    def wrap(cls, exc: BaseException, operation: str) -> "TransportError":
        if isinstance(exc, TransportError):
            return exc
        message = str(exc) or type(exc).__name__
        return cls(message, operation=operation, cause=exc)


class InvalidCommand(VoiceCallError):
    """Raised when a user command is not allowed in the current call state."""

    def __init__(self, command: str, state: str):
        self.command = command
        self.state = state
        super().__init__(f"{command} not allowed in state {state}")
