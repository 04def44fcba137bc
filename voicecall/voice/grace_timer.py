"""Cancellable one-shot timer for the Ended -> Idle grace delay.

Scheduling never blocks. Inside a running asyncio loop the timer uses
loop.call_later; otherwise a daemon threading.Timer.

Usage:
    timer = GraceTimer(on_elapsed)
    timer.arm(2.0)      # (re)schedule
    timer.cancel()      # -> True if a pending timer was cancelled
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, Optional, Protocol

logger = logging.getLogger("voicecall.grace_timer")


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def schedule_later(delay_s: float, callback: Callable[[], None]) -> TimerHandle:
    """Default timer factory: asyncio when a loop is running, else a thread."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        timer = threading.Timer(delay_s, callback)
        timer.daemon = True
        timer.start()
        return timer
    return loop.call_later(delay_s, callback)


class GraceTimer:
    """One pending timer at most; re-arming replaces the pending one."""

    def __init__(self, callback: Callable[[], None], factory: TimerFactory = schedule_later) -> None:
        self._callback = callback
        self._factory = factory
        self._lock = threading.Lock()
        self._handle: Optional[TimerHandle] = None
        self._generation = 0

    @property
    def armed(self) -> bool:
        with self._lock:
            return self._handle is not None

    def arm(self, delay_s: float) -> None:
        with self._lock:
            previous, self._handle = self._handle, None
            self._generation += 1
            generation = self._generation
        if previous is not None:
            previous.cancel()

        handle = self._factory(delay_s, lambda: self._fire(generation))
        with self._lock:
            stale = generation != self._generation
            if not stale:
                self._handle = handle
        if stale:
            handle.cancel()
            return
        logger.debug("grace timer armed delay_s=%.2f generation=%d", delay_s, generation)

    def cancel(self) -> bool:
        with self._lock:
            handle, self._handle = self._handle, None
            self._generation += 1
        if handle is None:
            return False
        handle.cancel()
        logger.debug("grace timer cancelled")
        return True

    def _fire(self, generation: int) -> None:
        with self._lock:
            # A cancel or re-arm raced the firing thread; drop the stale fire.
            if generation != self._generation or self._handle is None:
                return
            self._handle = None
        self._callback()
