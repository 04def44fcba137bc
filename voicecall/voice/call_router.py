"""Call router: single-consumer ingestion for one voice call client.

Wires together:
    - raw payload -> normalize -> CanonicalEvent
    - CallSnapshot + signal -> reduce_call -> (snapshot, commands)
    - transcript reconciliation and speaker tracking (fan-out)
    - command execution against the voice transport
    - the Ended -> Idle grace timer

Every raw event, user command and internal signal goes through one inbox
and is processed strictly in arrival order. A callback that re-enters
ingest() while a signal is being processed is queued behind it, never
interleaved.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

from voicecall.shared.config import VoiceCallConfig

from . import transcript
from .call_events import (
    CallSignal,
    EndCall,
    GraceElapsed,
    Role,
    SetMute,
    StartCall,
    TranscriptFragment,
    TranscriptReplay,
    TransportFailed,
    Unrecognized,
    VolumeSample,
)
from .call_reducer import Command, reduce_call
from .call_state import CallSnapshot, CallState, IN_CALL_STATES, make_initial_snapshot
from .call_view import CallView, build_view
from .diagnostics import DiagnosticsSink
from .errors import TransportError
from .grace_timer import GraceTimer, TimerFactory, schedule_later
from .normalizer import normalize
from .speaker_activity import SpeakerActivityTracker
from .transport import VoiceTransport

logger = logging.getLogger("voicecall.call_router")

Listener = Callable[[CallView], None]


@dataclass(frozen=True)
class _RawEvent:
    payload: Any


class CallSession:
    """Drives one call client's derived state from transport events and user intents.

    Usage:
        session = CallSession(transport, config)
        session.start_call("assistant-id")
        session.ingest({"type": "call-start"})
        session.ingest({"type": "transcript", "role": "user", "transcript": "hi"})
        view = session.view()
    """

    def __init__(
        self,
        transport: VoiceTransport,
        config: Optional[VoiceCallConfig] = None,
        diagnostics: Optional[DiagnosticsSink] = None,
        timer_factory: TimerFactory = schedule_later,
        clock: transcript.Clock = time.time,
        id_factory: transcript.IdFactory = transcript.new_turn_id,
    ) -> None:
        self._config = config or VoiceCallConfig()
        self._policy = self._config.call_policy()
        self._transport = transport
        self._diagnostics = diagnostics or DiagnosticsSink(
            capacity=self._config.diagnostics.capacity,
            jsonl_path=self._config.diagnostics.jsonl_path,
        )
        self._timer = GraceTimer(self._on_grace_elapsed, factory=timer_factory)
        self._clock = clock
        self._id_factory = id_factory

        # Derived state, one owner each.
        self._snapshot: CallSnapshot = make_initial_snapshot()
        self._turns: transcript.Turns = ()
        self._speaker = SpeakerActivityTracker()
        self._volume = 0.0

        self._lock = threading.Lock()
        self._inbox: Deque[Any] = deque()
        self._draining = False
        self._closed = False
        self._listeners: List[Listener] = []
        self._pending: Set[asyncio.Future] = set()
        self._processed = 0
        self._dropped = 0

    # ── Inbound ──────────────────────────────────────────────────────

    def ingest(self, raw: Any) -> Optional[bool]:
        """Feed one raw transport payload.

        Returns True if it was processed, False if it was dropped as
        unrecognized, None if it was queued behind an in-flight dispatch.
        """
        return self._submit(_RawEvent(raw))

    # ── User commands ────────────────────────────────────────────────

    def start_call(self, assistant_id: Optional[str] = None) -> Optional[bool]:
        """Request a new call. True if accepted, False if rejected, None if queued."""
        assistant_id = assistant_id or self._config.transport.assistant_id
        if not assistant_id:
            logger.warning("start_call rejected: no assistant id given or configured")
            self._diagnostics.record("router", "missing_assistant_id")
            return False
        return self._submit(StartCall(assistant_id=assistant_id))

    def end_call(self) -> Optional[bool]:
        return self._submit(EndCall())

    def set_muted(self, muted: bool) -> Optional[bool]:
        return self._submit(SetMute(muted=bool(muted)))

    # ── Presentation ─────────────────────────────────────────────────

    def view(self, drop_empty_final: bool = True) -> CallView:
        return build_view(
            self._snapshot, self._turns, self._speaker.current, self._volume, drop_empty_final,
            awaiting_reply=self._speaker.awaiting_reply,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a view listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def snapshot(self) -> CallSnapshot:
        return self._snapshot

    @property
    def state(self) -> CallState:
        return self._snapshot.state

    @property
    def turns(self) -> transcript.Turns:
        return self._turns

    @property
    def speaker(self) -> Optional[Role]:
        return self._speaker.current

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def diagnostics(self) -> DiagnosticsSink:
        return self._diagnostics

    @property
    def grace_timer_armed(self) -> bool:
        return self._timer.armed

    def get_stats(self) -> Dict[str, Any]:
        return {
            "state": self._snapshot.state.value,
            "seq": self._snapshot.seq,
            "processed": self._processed,
            "dropped": self._dropped,
            "turns": len(self._turns),
            "grace_timer_armed": self._timer.armed,
            "diagnostics": self._diagnostics.count(),
        }

    def close(self) -> None:
        """Cancel the grace timer and stop any call still in progress."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._inbox.clear()
        self._timer.cancel()
        if self._snapshot.in_call:
            self._call_transport("stop")
        for future in list(self._pending):
            future.cancel()
        logger.info("call session closed state=%s", self._snapshot.state.value)

    # ── Single-consumer queue ────────────────────────────────────────

    def _submit(self, item: Any) -> Optional[bool]:
        with self._lock:
            if self._closed:
                logger.debug("session closed, dropping %s", type(item).__name__)
                return None
            self._inbox.append(item)
            if self._draining:
                return None
            self._draining = True

        outcome: Optional[bool] = None
        while True:
            with self._lock:
                if not self._inbox:
                    self._draining = False
                    break
                current = self._inbox.popleft()
            try:
                result = self._process(current)
            except Exception:
                # One bad signal must not wedge the queue.
                logger.exception("call router: failed processing %s", type(current).__name__)
                result = False
            if current is item:
                outcome = result
        return outcome

    def _process(self, item: Any) -> bool:
        if isinstance(item, _RawEvent):
            signal = normalize(item.payload)
            if isinstance(signal, Unrecognized):
                self._dropped += 1
                self._diagnostics.record_unrecognized(signal)
                logger.debug("dropped unrecognized event reason=%s", signal.reason)
                return False
        else:
            signal = item

        accepted = self._apply(signal)
        self._processed += 1
        self._notify()
        return accepted

    def _apply(self, signal: CallSignal) -> bool:
        before = self._snapshot
        snapshot, commands = reduce_call(before, signal, self._policy)
        self._snapshot = snapshot

        self._apply_content(signal, snapshot.state)

        rejected = False
        for cmd in commands:
            if cmd.name == "EmitDiagnostic" and cmd.args.get("reason") == "command_rejected":
                rejected = True
            self._execute(cmd, before)
        return not rejected

    def _apply_content(self, signal: CallSignal, state: CallState) -> None:
        if state not in IN_CALL_STATES:
            if isinstance(signal, (TranscriptFragment, TranscriptReplay)):
                self._diagnostics.record("router", "transcript_frozen", {"state": state.value})
            return
        if isinstance(signal, (TranscriptFragment, TranscriptReplay)):
            self._turns = transcript.apply(signal, self._turns, self._clock, self._id_factory)
        elif isinstance(signal, VolumeSample):
            self._volume = signal.level
        self._speaker.apply(signal)

    # ── Command execution ────────────────────────────────────────────

    def _execute(self, cmd: Command, before: CallSnapshot) -> None:
        name = cmd.name
        if name == "StartTransport":
            self._call_transport("start", cmd.args["assistant_id"])
        elif name == "StopTransport":
            self._call_transport("stop")
        elif name == "SetMuted":
            self._call_transport("set_muted", cmd.args["muted"])
        elif name == "ResetTranscript":
            self._turns = ()
            self._speaker.reset()
            self._volume = 0.0
        elif name == "FinalizeTranscript":
            self._turns = transcript.finalize_open(self._turns)
            self._speaker.reset()
            self._volume = 0.0
        elif name == "ScheduleIdleReset":
            self._timer.arm(cmd.args["delay_s"])
        elif name == "CancelIdleReset":
            self._timer.cancel()
        elif name == "EmitUIState":
            logger.info(
                "transition OK  %s -> %s  seq=%d  reason=%s",
                before.state.value, cmd.args["state"], self._snapshot.seq, self._snapshot.reason,
            )
        elif name == "EmitDiagnostic":
            self._diagnostics.record_reducer(cmd.args)
            logger.debug("reducer diagnostic %s", cmd.args)
        else:
            logger.warning("unknown command %s", name)

    def _call_transport(self, operation: str, *args: Any) -> None:
        try:
            result = getattr(self._transport, operation)(*args)
        except Exception as exc:
            self._transport_failed(operation, exc)
            return
        if inspect.isawaitable(result):
            self._schedule(operation, result)

    def _schedule(self, operation: str, awaitable: Awaitable[Any]) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            self._transport_failed(
                operation, TransportError("no running event loop for async transport", operation)
            )
            return
        future = asyncio.ensure_future(awaitable)
        self._pending.add(future)
        future.add_done_callback(lambda f: self._on_transport_done(operation, f))

    def _on_transport_done(self, operation: str, future: asyncio.Future) -> None:
        self._pending.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self._transport_failed(operation, exc)

    def _transport_failed(self, operation: str, exc: BaseException) -> None:
        error = TransportError.wrap(exc, operation)
        if operation != "start":
            # stop / set_muted are idempotent requests; failures never escalate.
            logger.warning("transport %s failed (ignored): %s", operation, error)
            self._diagnostics.record("router", "transport_request_failed", {"operation": operation})
            return
        logger.warning("transport start failed: %s", error)
        self._submit(TransportFailed(message=str(error)))

    # ── Timer + listeners ────────────────────────────────────────────

    def _on_grace_elapsed(self) -> None:
        self._submit(GraceElapsed())

    def _notify(self) -> None:
        if not self._listeners:
            return
        view = self.view()
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception as e:
                logger.warning("view listener %s failed: %s", getattr(listener, "__name__", listener), e)
