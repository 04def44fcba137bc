"""Shared fixtures for voicecall tests.

Deterministic collaborators for the call router: a manual timer factory,
a stepping clock and counter-based turn ids.
"""
import itertools
from typing import Callable, List

import pytest

from voicecall.shared.config import VoiceCallConfig
from voicecall.voice.call_router import CallSession
from voicecall.voice.diagnostics import DiagnosticsSink
from voicecall.voice.transport import RecordingTransport


class FakeHandle:
    def __init__(self, delay_s: float, callback: Callable[[], None]):
        self.delay_s = delay_s
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimers:
    """Timer factory that stores callbacks for manual firing."""

    def __init__(self):
        self.handles: List[FakeHandle] = []

    def __call__(self, delay_s, callback):
        handle = FakeHandle(delay_s, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> List[FakeHandle]:
        return [h for h in self.handles if not h.cancelled]

    def fire_all(self) -> int:
        fired = 0
        for handle in list(self.pending):
            handle.callback()
            fired += 1
        return fired


class StepClock:
    def __init__(self, start: float = 1000.0, step: float = 1.0):
        self.now = start
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


def counter_ids(prefix: str = "turn"):
    counter = itertools.count(1)
    return lambda: f"{prefix}_{next(counter)}"


@pytest.fixture
def timers():
    return FakeTimers()


@pytest.fixture
def config():
    return VoiceCallConfig.from_dict(
        {"transport": {"assistant_id": "asst-default"}}, environ={}
    )


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def make_session(timers, config):
    """Build a CallSession with deterministic collaborators."""

    def _make(transport=None, cfg=None, auto_ack=False, **transport_kwargs):
        transport = transport or RecordingTransport(auto_ack=auto_ack, **transport_kwargs)
        session = CallSession(
            transport,
            cfg or config,
            diagnostics=DiagnosticsSink(capacity=50),
            timer_factory=timers,
            clock=StepClock(),
            id_factory=counter_ids(),
        )
        transport.bind(session.ingest)
        return session, transport

    return _make
