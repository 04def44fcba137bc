"""Voice transport seam.

The transport is the external SDK handle (audio, network, assistant
session). The core only issues fire-and-forget requests to it; outcomes
come back later as inbound raw events.

Any method may return None or an awaitable. The call router schedules
awaitables on the running loop and feeds failures back as TransportFailed.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, runtime_checkable

from .errors import TransportError

logger = logging.getLogger("voicecall.transport")

RawEventSink = Callable[[Dict[str, Any]], Any]


@runtime_checkable
class VoiceTransport(Protocol):
    """Outbound interface to the voice-transport collaborator."""

    def start(self, assistant_id: str) -> Optional[Awaitable[Any]]: ...

    def stop(self) -> Optional[Awaitable[Any]]: ...

    def set_muted(self, muted: bool) -> Optional[Awaitable[Any]]: ...


@dataclass
class TransportRequest:
    """One outbound request, as recorded by RecordingTransport."""
    operation: str
    args: Dict[str, Any] = field(default_factory=dict)
    ts: float = field(default_factory=time.time)


class RecordingTransport:
    """In-process transport that records requests instead of placing calls.

    Used by tests and by the HTTP app when no SDK bridge is injected.
    With auto_ack, start/stop answer through ``emit`` with the raw events a
    real SDK would send (call-start / call-end). ``fail_start_with`` makes
    start() raise TransportError with that message.
    """

    def __init__(
        self,
        emit: Optional[RawEventSink] = None,
        auto_ack: bool = False,
        fail_start_with: Optional[str] = None,
    ) -> None:
        self.requests: List[TransportRequest] = []
        self._emit = emit
        self.auto_ack = auto_ack
        self.fail_start_with = fail_start_with

    def bind(self, emit: RawEventSink) -> None:
        """Attach the inbound event sink (usually CallSession.ingest)."""
        self._emit = emit

    @property
    def operations(self) -> List[str]:
        return [r.operation for r in self.requests]

    def start(self, assistant_id: str) -> None:
        self.requests.append(TransportRequest("start", {"assistant_id": assistant_id}))
        if self.fail_start_with is not None:
            raise TransportError(self.fail_start_with, operation="start")
        self._ack({"type": "call-start"})

    def stop(self) -> None:
        self.requests.append(TransportRequest("stop"))
        self._ack({"type": "call-end"})

    def set_muted(self, muted: bool) -> None:
        self.requests.append(TransportRequest("set_muted", {"muted": muted}))

    def _ack(self, raw: Dict[str, Any]) -> None:
        if self.auto_ack and self._emit is not None:
            logger.debug("recording transport ack %s", raw["type"])
            self._emit(raw)
